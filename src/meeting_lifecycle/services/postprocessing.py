"""
Пост-обработка завершённой сессии (summary).

- trigger_postprocessing: быстрая постановка задачи после finalize;
  ошибка постановки логируется и не откатывает finalize
- process_meeting: сама обработка (воркер или inline); захват через условный
  UPDATE processing_status, поэтому повторная/дублирующая задача — no-op
"""

from __future__ import annotations

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.metrics import (
    POSTPROCESS_DISPATCH_TOTAL,
    POSTPROCESS_TASKS_TOTAL,
    track_stage_latency,
)
from meeting_lifecycle.common.time import as_utc, utc_now
from meeting_lifecycle.processing.summary import build_summary
from meeting_lifecycle.processing.transcripts import TranscriptLine, dedupe_lines
from meeting_lifecycle.queue.dispatcher import enqueue_postprocess
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.repositories import (
    MeetingRepository,
    ParticipantRepository,
    TranscriptRecordRepository,
)

log = get_project_logger()


def _inline_mode() -> bool:
    return (get_settings().queue_mode or "").strip().lower() == "inline"


def trigger_postprocessing(
    meeting_id: str,
    room_name: str,
    transcripts: list[TranscriptLine],
    participants: list[str],
) -> bool:
    """
    True — задача принята (или выполнена inline), False — не удалось передать.
    """
    try:
        if _inline_mode():
            process_meeting(meeting_id)
            POSTPROCESS_DISPATCH_TOTAL.labels(result="inline").inc()
            return True

        enqueue_postprocess(
            meeting_id=meeting_id,
            room_name=room_name,
            transcript_count=len(transcripts),
            participants=participants,
        )
        POSTPROCESS_DISPATCH_TOTAL.labels(result="ok").inc()
        return True
    except Exception as e:
        POSTPROCESS_DISPATCH_TOTAL.labels(result="failed").inc()
        log.error(
            "postprocess_dispatch_failed",
            extra={
                "payload": {
                    "meeting_id": meeting_id,
                    "room_name": room_name,
                    "err": str(e)[:300],
                }
            },
        )
        return False


def process_meeting(meeting_id: str) -> str:
    """
    Возвращает исход: completed | fallback | skipped.
    Неожиданные ошибки помечают сессию failed и пробрасываются (ретрай воркера).
    """
    with db_session() as session:
        mrepo = MeetingRepository(session)
        if mrepo.claim_processing(meeting_id, at=utc_now()) == 0:
            POSTPROCESS_TASKS_TOTAL.labels(result="skipped").inc()
            log.info("postprocess_skipped", extra={"payload": {"meeting_id": meeting_id}})
            return "skipped"

        meeting = mrepo.get(meeting_id)
        meeting_type = meeting.type if meeting is not None else "Meeting"
        lines = [
            TranscriptLine(speaker=r.speaker, text=r.text, timestamp=as_utc(r.timestamp))
            for r in TranscriptRecordRepository(session).list_by_meeting(meeting_id)
        ]
        participants = [
            p.name or p.identity for p in ParticipantRepository(session).list_by_meeting(meeting_id)
        ]

    try:
        with track_stage_latency("summary"):
            cleaned = dedupe_lines(lines, window_sec=int(get_settings().transcript_dedupe_window_sec))
            summary = build_summary(
                meeting_type=meeting_type, lines=cleaned, participants=participants
            )
        with db_session() as session:
            MeetingRepository(session).complete_processing(
                meeting_id, summary=summary, at=utc_now()
            )
    except Exception as e:
        with db_session() as session:
            MeetingRepository(session).fail_processing(meeting_id, error=str(e))
        POSTPROCESS_TASKS_TOTAL.labels(result="error").inc()
        log.error(
            "postprocess_failed",
            extra={"payload": {"meeting_id": meeting_id, "err": str(e)[:300]}},
        )
        raise

    outcome = "fallback" if summary.get("fallback") else "completed"
    POSTPROCESS_TASKS_TOTAL.labels(result=outcome).inc()
    log.info(
        "postprocess_completed",
        extra={
            "payload": {
                "meeting_id": meeting_id,
                "outcome": outcome,
                "lines": len(lines),
                "lines_deduped": len(cleaned),
            }
        },
    )
    return outcome
