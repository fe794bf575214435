"""
Reconciliation job.

Назначение:
- ни одна сессия не остаётся в ending навсегда (процесс упал между claim и persist)
- брошенные active сессии (клиенты не прислали leave/end) закрываются, если
  медиа-транспорт подтверждает пустую комнату
- ended сессии, зависшие в processing_status=pending, ставятся в очередь повторно
- processing дольше RECONCILE_PROCESSING_STALE_SEC (воркер упал) переводится в failed;
  failed с неисчерпанными попытками ставится в очередь повторно

Каждая сессия обрабатывается независимо: ошибка одной не останавливает проход.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.metrics import record_reconcile_result
from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.connectors.base import RoomOccupancyProbe, build_occupancy_probe
from meeting_lifecycle.domain.enums import FinalizeTrigger, ProcessingStatus
from meeting_lifecycle.services.end_arbiter import force_finalize
from meeting_lifecycle.services.finalize_service import EndPayload, complete_claimed, finalize
from meeting_lifecycle.services.postprocessing import trigger_postprocessing
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.repositories import MeetingRepository

log = get_project_logger()


@dataclass
class ReconcileResult:
    scanned: int = 0
    stale_ending: int = 0
    abandoned: int = 0
    occupied: int = 0
    redispatched: int = 0
    stale_processing: int = 0
    failed: int = 0


def _complete_stale_ending(now: datetime, limit: int, result: ReconcileResult) -> None:
    s = get_settings()
    cutoff = now - timedelta(seconds=max(0, int(s.reconcile_ending_stale_sec)))
    with db_session() as session:
        ids = MeetingRepository(session).list_stale_ending(claimed_before=cutoff, limit=limit)

    for meeting_id in ids:
        result.scanned += 1
        try:
            res = complete_claimed(meeting_id, EndPayload(), trigger=FinalizeTrigger.reconciliation)
        except Exception as e:
            result.failed += 1
            log.error(
                "reconcile_stale_ending_failed",
                extra={"payload": {"meeting_id": meeting_id, "err": str(e)[:300]}},
            )
            continue
        if res.finalized:
            result.stale_ending += 1


def _close_abandoned(
    now: datetime, limit: int, probe: RoomOccupancyProbe, result: ReconcileResult
) -> None:
    s = get_settings()
    cutoff = now - timedelta(seconds=max(0, int(s.reconcile_abandoned_after_sec)))
    with db_session() as session:
        candidates = [
            (m.id, m.room_name)
            for m in MeetingRepository(session).list_idle_active(inactive_before=cutoff, limit=limit)
        ]

    for meeting_id, room_name in candidates:
        result.scanned += 1
        try:
            try:
                empty = probe.room_occupancy(room_name).is_empty
            except AppError as e:
                log.warning(
                    "reconcile_occupancy_probe_failed",
                    extra={"payload": {"room_name": room_name, "code": e.code, "err": e.message}},
                )
                if not s.reconcile_force_on_probe_error:
                    result.failed += 1
                    continue
                empty = True

            if not empty:
                result.occupied += 1
                continue

            if not force_finalize(meeting_id).should_finalize:
                continue
            res = finalize(meeting_id, EndPayload(), trigger=FinalizeTrigger.reconciliation)
        except Exception as e:
            result.failed += 1
            log.error(
                "reconcile_abandoned_failed",
                extra={"payload": {"meeting_id": meeting_id, "err": str(e)[:300]}},
            )
            continue
        if res.finalized:
            result.abandoned += 1


def _redispatch_pending(now: datetime, limit: int, result: ReconcileResult) -> None:
    s = get_settings()
    cutoff = now - timedelta(seconds=max(0, int(s.reconcile_pending_redispatch_sec)))
    with db_session() as session:
        pending = [
            (m.id, m.room_name)
            for m in MeetingRepository(session).list_pending_processing(
                ended_before=cutoff, limit=limit
            )
        ]

    for meeting_id, room_name in pending:
        result.scanned += 1
        if trigger_postprocessing(meeting_id, room_name, [], []):
            result.redispatched += 1
        else:
            result.failed += 1


def _retry_stale_processing(now: datetime, limit: int, result: ReconcileResult) -> None:
    s = get_settings()
    cutoff = now - timedelta(seconds=max(0, int(s.reconcile_processing_stale_sec)))
    max_attempts = max(1, int(s.postprocess_max_attempts))
    with db_session() as session:
        stale = [
            (m.id, m.room_name, m.processing_status, m.processing_attempts)
            for m in MeetingRepository(session).list_stale_processing(
                started_before=cutoff, max_attempts=max_attempts, limit=limit
            )
        ]

    for meeting_id, room_name, status, attempts in stale:
        result.scanned += 1
        if status == ProcessingStatus.processing:
            with db_session() as session:
                expired = MeetingRepository(session).expire_processing(
                    meeting_id, started_before=cutoff
                )
            if not expired:
                continue
            log.warning(
                "reconcile_processing_expired",
                extra={"payload": {"meeting_id": meeting_id, "attempts": attempts}},
            )
            if attempts >= max_attempts:
                result.failed += 1
                continue

        if trigger_postprocessing(meeting_id, room_name, [], []):
            result.stale_processing += 1
        else:
            result.failed += 1


def run(
    *,
    limit: int | None = None,
    source: str = "job",
    probe: RoomOccupancyProbe | None = None,
    now: datetime | None = None,
) -> ReconcileResult | None:
    settings = get_settings()
    if not settings.reconciliation_enabled:
        log.info("reconciliation_job_skipped", extra={"payload": {"reason": "disabled"}})
        return None

    reconcile_limit = max(1, int(limit if limit is not None else settings.reconciliation_limit))
    now = now or utc_now()
    log.info(
        "reconciliation_job_started",
        extra={"payload": {"limit": reconcile_limit, "source": source}},
    )

    result = ReconcileResult()
    _complete_stale_ending(now, reconcile_limit, result)
    _close_abandoned(now, reconcile_limit, probe or build_occupancy_probe(), result)
    _redispatch_pending(now, reconcile_limit, result)
    _retry_stale_processing(now, reconcile_limit, result)

    record_reconcile_result(
        source=source,
        stale_ending=result.stale_ending,
        abandoned=result.abandoned,
        redispatched=result.redispatched,
        stale_processing=result.stale_processing,
        failed=result.failed,
    )
    log.info(
        "reconciliation_job_finished",
        extra={
            "payload": {
                "scanned": result.scanned,
                "stale_ending": result.stale_ending,
                "abandoned": result.abandoned,
                "occupied": result.occupied,
                "redispatched": result.redispatched,
                "stale_processing": result.stale_processing,
                "failed": result.failed,
            }
        },
    )
    return result
