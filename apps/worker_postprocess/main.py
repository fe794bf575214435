"""
Worker Postprocess: читает q:postprocess и строит summary завершённых сессий.

Исход каждой записи stream:
- summary построен (или задача уже неактуальна) -> ack
- битая задача -> лог + ack
- ошибка обработки -> задача переставлена/ушла в DLQ -> ack
- не удалось переставить (Redis) -> без ack, запись остаётся в PEL группы
  и забирается повторно через POSTPROCESS_CLAIM_IDLE_SEC
"""

from __future__ import annotations

import signal
import threading
from contextlib import suppress

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger, setup_logging
from meeting_lifecycle.common.metrics import POSTPROCESS_TASKS_TOTAL
from meeting_lifecycle.contracts.queue_events import PostprocessQueueEvent
from meeting_lifecycle.queue.dispatcher import GROUP_POSTPROCESS, Q_POSTPROCESS
from meeting_lifecycle.queue.retry import RetryPolicy, requeue_or_dead_letter
from meeting_lifecycle.queue.streams import StreamMessage, ack_task, consumer_name, read_task
from meeting_lifecycle.services.postprocessing import process_meeting

log = get_project_logger("worker.postprocess")

_stop = threading.Event()


def retry_policy() -> RetryPolicy:
    s = get_settings()
    return RetryPolicy(
        max_attempts=int(s.postprocess_max_attempts),
        backoff_sec=float(s.postprocess_retry_backoff_sec),
    )


def handle_message(msg: StreamMessage) -> bool:
    """True, если запись stream можно ack-нуть."""
    try:
        event = PostprocessQueueEvent.from_payload(msg.payload or {})
    except AppError as e:
        log.warning(
            "worker_postprocess_invalid_task",
            extra={"payload": {"entry_id": msg.entry_id, "err": e.message, "task": msg.payload}},
        )
        return True

    try:
        outcome = process_meeting(event.meeting_id)
    except Exception as e:
        log.error(
            "worker_postprocess_error",
            extra={
                "payload": {
                    "meeting_id": event.meeting_id,
                    "attempts": event.attempts,
                    "err": str(e)[:200],
                }
            },
        )
        error = str(e)
    else:
        log.info(
            "worker_postprocess_done",
            extra={"payload": {"meeting_id": event.meeting_id, "outcome": outcome}},
        )
        return True

    try:
        requeued = requeue_or_dead_letter(Q_POSTPROCESS, event, retry_policy(), error=error)
    except Exception as e:
        log.error(
            "worker_postprocess_requeue_failed",
            extra={"payload": {"meeting_id": event.meeting_id, "err": str(e)[:200]}},
        )
        return False

    POSTPROCESS_TASKS_TOTAL.labels(result="retry" if requeued else "dead_letter").inc()
    return True


def run_loop(*, block_ms: int = 5000) -> None:
    consumer = consumer_name("worker-postprocess")
    claim_idle_ms = max(0, int(get_settings().postprocess_claim_idle_sec)) * 1000
    log.info(
        "worker_postprocess_started",
        extra={
            "payload": {"queue": Q_POSTPROCESS, "group": GROUP_POSTPROCESS, "consumer": consumer}
        },
    )
    while not _stop.is_set():
        msg = read_task(
            stream=Q_POSTPROCESS,
            group=GROUP_POSTPROCESS,
            consumer=consumer,
            block_ms=block_ms,
            claim_idle_ms=claim_idle_ms,
        )
        if msg is None or not handle_message(msg):
            continue
        with suppress(Exception):
            ack_task(stream=Q_POSTPROCESS, group=GROUP_POSTPROCESS, entry_id=msg.entry_id)


def request_stop(signum: int | None = None, frame=None) -> None:
    _stop.set()


def main() -> None:
    setup_logging(service="worker-postprocess")
    signal.signal(signal.SIGTERM, request_stop)
    signal.signal(signal.SIGINT, request_stop)
    while not _stop.is_set():
        try:
            run_loop()
        except Exception as e:
            # Redis недоступен и т.п.: пауза и переподключение
            log.error("worker_postprocess_loop_failed", extra={"payload": {"err": str(e)[:200]}})
            _stop.wait(2)
    log.info("worker_postprocess_stopped")


if __name__ == "__main__":
    main()
