"""
Prometheus-метрики жизненного цикла встреч.

Доменные счётчики инкрементируются сервисами (start/leave/finalize/
пост-обработка/reconciliation). Gauge'и состояния (сессии по статусам,
глубина очередей) пересчитываются при каждом scrape /metrics.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from .logging import get_project_logger

log = get_project_logger("metrics")

_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30)

# HTTP
REQUESTS_TOTAL = Counter(
    "meetings_requests_total", "HTTP запросы", ["service", "route", "method", "status"]
)
HTTP_REQUEST_SECONDS = Histogram(
    "meetings_http_request_seconds",
    "Длительность HTTP запроса",
    ["service", "route", "method"],
    buckets=_LATENCY_BUCKETS,
)

# Жизненный цикл сессии
SESSIONS_STARTED_TOTAL = Counter(
    "meetings_sessions_started_total", "start_or_join по исходу", ["result"]  # created|joined
)
PARTICIPANT_LEAVES_TOTAL = Counter(
    "meetings_participant_leaves_total",
    "Выходы участников по исходу",
    ["result"],  # counted|should_finalize|ignored|already_handled
)
FINALIZE_TOTAL = Counter(
    "meetings_finalize_total",
    "Вызовы finalize по триггеру и исходу",
    ["trigger", "result"],  # finalized|deleted|already_handled|preempted
)
MEETINGS_BY_STATUS = Gauge("meetings_sessions", "Сессии по статусу", ["status"])

# Пост-обработка
POSTPROCESS_DISPATCH_TOTAL = Counter(
    "meetings_postprocess_dispatch_total",
    "Передача в пост-обработку",
    ["result"],  # ok|inline|failed
)
POSTPROCESS_TASKS_TOTAL = Counter(
    "meetings_postprocess_tasks_total",
    "Задачи пост-обработки по исходу",
    ["result"],  # completed|fallback|skipped|error|retry|dead_letter
)
STAGE_SECONDS = Histogram(
    "meetings_stage_seconds", "Длительность стадий обработки", ["stage"], buckets=_LATENCY_BUCKETS
)
QUEUE_DEPTH = Gauge("meetings_queue_depth", "Длина Redis stream", ["queue"])

# Reconciliation
RECONCILE_RUNS_TOTAL = Counter(
    "meetings_reconcile_runs_total", "Проходы reconciliation", ["source", "result"]
)
RECONCILE_LAST_RUN = Gauge(
    "meetings_reconcile_last_run",
    "Исправлено сессий в последнем проходе",
    ["kind"],  # stale_ending|abandoned|redispatched|failed
)

SCRAPE_ERRORS_TOTAL = Counter(
    "meetings_metrics_scrape_errors_total", "Ошибки пересчёта gauge при scrape", ["source"]
)


@contextmanager
def track_stage_latency(stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        STAGE_SECONDS.labels(stage=stage).observe(time.perf_counter() - started)


def record_reconcile_result(*, source: str, **counts: int) -> None:
    result = "failed" if counts.get("failed") else "ok"
    RECONCILE_RUNS_TOTAL.labels(source=source, result=result).inc()
    for kind, value in counts.items():
        RECONCILE_LAST_RUN.labels(kind=kind).set(max(0, int(value)))


def refresh_lifecycle_metrics() -> None:
    from meeting_lifecycle.domain.enums import MeetingStatus
    from meeting_lifecycle.storage.db import db_session
    from meeting_lifecycle.storage.repositories import MeetingRepository

    try:
        with db_session() as session:
            counts = MeetingRepository(session).count_by_status()
    except Exception as e:
        SCRAPE_ERRORS_TOTAL.labels(source="db").inc()
        log.warning(
            "metrics_refresh_failed", extra={"payload": {"source": "db", "err": str(e)[:200]}}
        )
        return
    for status in MeetingStatus:
        MEETINGS_BY_STATUS.labels(status=status.value).set(counts.get(status, 0))


def refresh_queue_metrics() -> None:
    from meeting_lifecycle.queue.dispatcher import Q_POSTPROCESS
    from meeting_lifecycle.queue.redis import redis_client
    from meeting_lifecycle.queue.streams import stream_dlq_name

    try:
        r = redis_client()
        for queue in (Q_POSTPROCESS, stream_dlq_name(Q_POSTPROCESS)):
            QUEUE_DEPTH.labels(queue=queue).set(int(r.xlen(queue)))
    except Exception as e:
        SCRAPE_ERRORS_TOTAL.labels(source="redis").inc()
        log.warning(
            "metrics_refresh_failed", extra={"payload": {"source": "redis", "err": str(e)[:200]}}
        )


def setup_metrics_endpoint(app: FastAPI, *, service: str) -> None:
    """HTTP-метрики по шаблону маршрута (не по сырому пути) и GET /metrics."""

    @app.middleware("http")
    async def observe_http(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        # scope["route"] заполняется роутингом, поэтому читаем после call_next
        route = getattr(request.scope.get("route"), "path", None) or "unmatched"
        labels = {"service": service, "route": route, "method": request.method}
        REQUESTS_TOTAL.labels(**labels, status=str(response.status_code)).inc()
        HTTP_REQUEST_SECONDS.labels(**labels).observe(time.perf_counter() - started)
        return response

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        refresh_lifecycle_metrics()
        refresh_queue_metrics()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
