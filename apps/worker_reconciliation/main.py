"""
Worker Reconciliation: периодический проход reconciliation_job.

Один проход доводит зависшие ending, закрывает брошенные active сессии
и повторно ставит pending пост-обработку. Ошибка прохода не останавливает
воркер: следующий проход начнётся через RECONCILIATION_INTERVAL_SEC.
"""

from __future__ import annotations

import signal
import threading

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.logging import get_project_logger, setup_logging
from meeting_lifecycle.jobs.reconciliation_job import ReconcileResult
from meeting_lifecycle.jobs.reconciliation_job import run as run_reconciliation

log = get_project_logger("worker.reconciliation")

MIN_INTERVAL_SEC = 5

_stop = threading.Event()


def run_once() -> ReconcileResult | None:
    """Один проход; None, если reconciliation выключен или проход упал."""
    try:
        return run_reconciliation(limit=int(get_settings().reconciliation_limit), source="worker")
    except Exception as e:
        log.error("worker_reconciliation_pass_failed", extra={"payload": {"err": str(e)[:300]}})
        return None


def request_stop(signum: int | None = None, frame=None) -> None:
    _stop.set()


def main() -> None:
    setup_logging(service="worker-reconciliation")
    signal.signal(signal.SIGTERM, request_stop)
    signal.signal(signal.SIGINT, request_stop)

    s = get_settings()
    interval = max(MIN_INTERVAL_SEC, int(s.reconciliation_interval_sec))
    log.info(
        "worker_reconciliation_started",
        extra={"payload": {"enabled": bool(s.reconciliation_enabled), "interval_sec": interval}},
    )
    while not _stop.is_set():
        run_once()
        _stop.wait(interval)
    log.info("worker_reconciliation_stopped")


if __name__ == "__main__":
    main()
