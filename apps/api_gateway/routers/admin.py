"""
Админка для операторов и cron: только service-авторизация.

- POST /v1/admin/reconcile: внеочередной проход reconciliation
- GET  /v1/admin/queues/health: длина stream, PEL группы и DLQ пост-обработки
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from apps.api_gateway.deps import service_auth_dep
from meeting_lifecycle.jobs.reconciliation_job import ReconcileResult
from meeting_lifecycle.jobs.reconciliation_job import run as run_reconciliation
from meeting_lifecycle.queue.dispatcher import GROUP_POSTPROCESS, Q_POSTPROCESS
from meeting_lifecycle.queue.redis import redis_client
from meeting_lifecycle.queue.streams import stream_dlq_name

router = APIRouter(prefix="/admin", dependencies=[Depends(service_auth_dep)])


class QueueHealthItem(BaseModel):
    queue: str
    group: str
    depth: int = 0
    pending: int = 0
    dlq_depth: int = 0
    error: str | None = None


class QueueHealthResponse(BaseModel):
    queues: list[QueueHealthItem]


class ReconcileResponse(BaseModel):
    enabled: bool = True
    scanned: int = 0
    stale_ending: int = 0
    abandoned: int = 0
    occupied: int = 0
    redispatched: int = 0
    stale_processing: int = 0
    failed: int = 0


@router.post("/reconcile", response_model=ReconcileResponse)
def admin_reconcile(limit: int | None = Query(default=None, ge=1, le=1000)) -> ReconcileResponse:
    res: ReconcileResult | None = run_reconciliation(limit=limit, source="admin")
    if res is None:
        return ReconcileResponse(enabled=False)
    return ReconcileResponse(
        scanned=res.scanned,
        stale_ending=res.stale_ending,
        abandoned=res.abandoned,
        occupied=res.occupied,
        redispatched=res.redispatched,
        stale_processing=res.stale_processing,
        failed=res.failed,
    )


def _stream_health(queue: str, group: str) -> QueueHealthItem:
    """Каждая метрика читается отдельно: сбой одной не скрывает остальные."""
    item = QueueHealthItem(queue=queue, group=group)
    errors: list[str] = []
    probes = {
        "depth": lambda r: r.xlen(queue),
        "pending": lambda r: (r.xpending(queue, group) or {}).get("pending", 0),
        "dlq_depth": lambda r: r.xlen(stream_dlq_name(queue)),
    }
    for name, probe in probes.items():
        try:
            setattr(item, name, int(probe(redis_client())))
        except Exception as e:
            errors.append(f"{name}: {str(e)[:160]}")
    item.error = "; ".join(errors) or None
    return item


@router.get("/queues/health", response_model=QueueHealthResponse)
def admin_queues_health() -> QueueHealthResponse:
    return QueueHealthResponse(queues=[_stream_health(Q_POSTPROCESS, GROUP_POSTPROCESS)])
