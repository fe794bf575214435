"""
Idempotency Guard: finalize выполняется ровно один раз на сессию.

Шаги:
1) claim: UPDATE status active -> ending (отдельная транзакция);
   rowcount == 0 -> already_handled
2) persist: транскрипт/участники/ended_at и ending -> ended одной транзакцией,
   либо удаление пустой сессии
3) после commit: передача в пост-обработку (ошибка не ломает finalize)

Сессия, зависшая в ending между шагами 1 и 2, доводится complete_claimed
из reconciliation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from meeting_lifecycle.common.errors import ConflictError, NotFoundError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.metrics import FINALIZE_TOTAL
from meeting_lifecycle.common.time import as_utc, minutes_between, utc_now
from meeting_lifecycle.domain.enums import FinalizeTrigger, MeetingStatus
from meeting_lifecycle.processing.transcripts import TranscriptLine
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.models import MeetingParticipant
from meeting_lifecycle.storage.repositories import (
    MeetingRepository,
    ParticipantRepository,
    RoomRepository,
    TranscriptRecordRepository,
)

from .postprocessing import trigger_postprocessing

log = get_project_logger()


@dataclass
class ParticipantInput:
    identity: str
    name: str | None = None
    joined_at: datetime | None = None
    left_at: datetime | None = None


@dataclass
class EndPayload:
    """
    transcripts=None: использовать записи, накопленные за сессию.
    transcripts=[]: сессия пустая и будет удалена.
    """

    transcripts: list[TranscriptLine] | None = None
    participants: list[ParticipantInput] = field(default_factory=list)
    ended_at: datetime | None = None


@dataclass
class FinalizeResult:
    meeting_id: str
    finalized: bool
    deleted: bool = False
    already_handled: bool = False
    preempted: bool = False
    postprocess_dispatched: bool | None = None


@dataclass
class _Persisted:
    room_name: str
    deleted: bool
    transcripts: list[TranscriptLine]
    participants: list[str]


def _already_handled(meeting_id: str, trigger: FinalizeTrigger) -> FinalizeResult:
    FINALIZE_TOTAL.labels(trigger=trigger.value, result="already_handled").inc()
    log.info(
        "meeting_finalize_already_handled",
        extra={"payload": {"meeting_id": meeting_id, "trigger": trigger.value}},
    )
    return FinalizeResult(meeting_id=meeting_id, finalized=False, already_handled=True)


def _preempted(meeting_id: str, trigger: FinalizeTrigger) -> FinalizeResult:
    FINALIZE_TOTAL.labels(trigger=trigger.value, result="preempted").inc()
    log.warning(
        "meeting_finalize_preempted",
        extra={"payload": {"meeting_id": meeting_id, "trigger": trigger.value}},
    )
    return FinalizeResult(
        meeting_id=meeting_id, finalized=False, already_handled=True, preempted=True
    )


def finalize(
    meeting_id: str,
    payload: EndPayload | None = None,
    *,
    trigger: FinalizeTrigger = FinalizeTrigger.end_request,
) -> FinalizeResult:
    payload = payload or EndPayload()

    with db_session() as session:
        mrepo = MeetingRepository(session)
        claimed = mrepo.claim_for_finalize(meeting_id, at=utc_now()) == 1
        exists = claimed or mrepo.read_state(meeting_id) is not None

    if not exists:
        raise NotFoundError("Сессия не найдена", {"meeting_id": meeting_id})
    if not claimed:
        return _already_handled(meeting_id, trigger)

    log.info(
        "meeting_finalize_claimed",
        extra={"payload": {"meeting_id": meeting_id, "trigger": trigger.value}},
    )
    return complete_claimed(meeting_id, payload, trigger=trigger, claimed_here=True)


def complete_claimed(
    meeting_id: str,
    payload: EndPayload,
    *,
    trigger: FinalizeTrigger,
    claimed_here: bool = False,
) -> FinalizeResult:
    """
    Доводит сессию в статусе ending до ended (или удаляет пустую).
    Повторный вызов для уже завершённой сессии -> already_handled.

    claimed_here: claim сделал этот же вызов. Если сессию к этому моменту уже
    довёл reconciliation (claim завис дольше RECONCILE_ENDING_STALE_SEC),
    payload вызывающего не сохранён: результат preempted.
    """
    persisted = _persist(meeting_id, payload)
    if persisted is None:
        if claimed_here:
            return _preempted(meeting_id, trigger)
        return _already_handled(meeting_id, trigger)

    if persisted.deleted:
        FINALIZE_TOTAL.labels(trigger=trigger.value, result="deleted").inc()
        log.info(
            "meeting_deleted_empty",
            extra={"payload": {"meeting_id": meeting_id, "trigger": trigger.value}},
        )
        return FinalizeResult(meeting_id=meeting_id, finalized=True, deleted=True)

    FINALIZE_TOTAL.labels(trigger=trigger.value, result="finalized").inc()
    log.info(
        "meeting_finalized",
        extra={
            "payload": {
                "meeting_id": meeting_id,
                "room_name": persisted.room_name,
                "trigger": trigger.value,
                "transcripts": len(persisted.transcripts),
                "participants": len(persisted.participants),
            }
        },
    )
    dispatched = trigger_postprocessing(
        meeting_id, persisted.room_name, persisted.transcripts, persisted.participants
    )
    return FinalizeResult(
        meeting_id=meeting_id,
        finalized=True,
        deleted=False,
        postprocess_dispatched=dispatched,
    )


def _persist(meeting_id: str, payload: EndPayload) -> _Persisted | None:
    for attempt in range(1, 3):
        try:
            return _persist_once(meeting_id, payload)
        except IntegrityError:
            # участник из payload вставлен параллельным join
            log.info(
                "meeting_finalize_persist_race",
                extra={"payload": {"meeting_id": meeting_id, "attempt": attempt}},
            )
    raise ConflictError("Не удалось завершить сессию", {"meeting_id": meeting_id})


def _persist_once(meeting_id: str, payload: EndPayload) -> _Persisted | None:
    with db_session() as session:
        mrepo = MeetingRepository(session)
        prepo = ParticipantRepository(session)
        trepo = TranscriptRecordRepository(session)
        rrepo = RoomRepository(session)

        meeting = mrepo.get(meeting_id)
        if meeting is None or meeting.status != MeetingStatus.ending:
            return None
        room_name = meeting.room_name
        started_at = as_utc(meeting.started_at)

        if payload.transcripts is not None:
            lines = list(payload.transcripts)
        else:
            lines = [
                TranscriptLine(speaker=r.speaker, text=r.text, timestamp=as_utc(r.timestamp))
                for r in trepo.list_by_meeting(meeting_id)
            ]

        if not lines:
            if mrepo.delete_claimed(meeting_id) == 0:
                return None
            rrepo.set_active(room_name, is_active=False)
            return _Persisted(room_name=room_name, deleted=True, transcripts=[], participants=[])

        ended_at = as_utc(payload.ended_at) or utc_now()
        if ended_at < started_at:
            ended_at = started_at

        if (
            mrepo.complete_finalize(
                meeting_id,
                ended_at=ended_at,
                duration_min=minutes_between(started_at, ended_at),
            )
            == 0
        ):
            session.rollback()
            return None

        if payload.transcripts is not None:
            trepo.replace_all(
                meeting_id,
                [{"speaker": ln.speaker, "text": ln.text, "timestamp": ln.timestamp} for ln in lines],
            )

        prepo.close_open(meeting_id, at=ended_at)
        known = {p.identity for p in prepo.list_by_meeting(meeting_id)}
        for p in payload.participants:
            if p.identity in known:
                continue
            prepo.add(
                MeetingParticipant(
                    meeting_id=meeting_id,
                    identity=p.identity,
                    name=p.name,
                    is_host=False,
                    joined_at=as_utc(p.joined_at) or started_at,
                    left_at=as_utc(p.left_at) or ended_at,
                )
            )
            known.add(p.identity)

        rrepo.set_active(room_name, is_active=False)
        participants = [p.name or p.identity for p in prepo.list_by_meeting(meeting_id)]
        return _Persisted(
            room_name=room_name, deleted=False, transcripts=lines, participants=participants
        )
