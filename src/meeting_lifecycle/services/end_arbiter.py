"""
End-of-Meeting Arbiter: нужно ли завершать сессию после выхода участника.

- record_leave: left_at участника + условный декремент счётчика одной
  транзакцией; should_finalize получает только вызов, который довёл счётчик до 0
- force_finalize: внешний сигнал "комната пуста" важнее счётчика
- handle_occupancy_signal / handle_participant_left: входы от медиа-транспорта
"""

from __future__ import annotations

from dataclasses import dataclass

from meeting_lifecycle.common.errors import NotFoundError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.metrics import PARTICIPANT_LEAVES_TOTAL
from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.domain.enums import FinalizeTrigger, MeetingStatus
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.repositories import MeetingRepository, ParticipantRepository

from .finalize_service import EndPayload, FinalizeResult, finalize
from .session_registry import get_active_session

log = get_project_logger()


@dataclass
class LeaveDecision:
    meeting_id: str
    active_participant_count: int
    should_finalize: bool
    already_handled: bool = False


@dataclass
class OccupancyOutcome:
    room_name: str
    meeting_id: str | None
    action: str  # no_session|ignored|finalized|deleted|already_handled
    finalize: FinalizeResult | None = None


def _decision(
    meeting_id: str, count: int, *, should_finalize: bool, already_handled: bool, result: str
) -> LeaveDecision:
    PARTICIPANT_LEAVES_TOTAL.labels(result=result).inc()
    return LeaveDecision(
        meeting_id=meeting_id,
        active_participant_count=max(0, count),
        should_finalize=should_finalize,
        already_handled=already_handled,
    )


def record_leave(meeting_id: str, participant_identity: str) -> LeaveDecision:
    identity = (participant_identity or "").strip()
    now = utc_now()

    with db_session() as session:
        mrepo = MeetingRepository(session)
        prepo = ParticipantRepository(session)

        state = mrepo.read_state(meeting_id)
        if state is None:
            raise NotFoundError("Сессия не найдена", {"meeting_id": meeting_id})
        status, count = state
        if status != MeetingStatus.active:
            return _decision(
                meeting_id, count, should_finalize=False, already_handled=True, result="already_handled"
            )

        if prepo.mark_left(meeting_id, identity, at=now) == 0:
            # неизвестный участник или повторный выход
            log.info(
                "participant_leave_ignored",
                extra={"payload": {"meeting_id": meeting_id, "identity": identity}},
            )
            return _decision(
                meeting_id, count, should_finalize=False, already_handled=False, result="ignored"
            )

        decremented = mrepo.decrement_participants(meeting_id, at=now) == 1
        status, count = mrepo.read_state(meeting_id)

    if status != MeetingStatus.active:
        return _decision(
            meeting_id, count, should_finalize=False, already_handled=True, result="already_handled"
        )

    should_finalize = decremented and count == 0
    log.info(
        "participant_left",
        extra={
            "payload": {
                "meeting_id": meeting_id,
                "identity": identity,
                "active_participant_count": count,
                "should_finalize": should_finalize,
            }
        },
    )
    return _decision(
        meeting_id,
        count,
        should_finalize=should_finalize,
        already_handled=False,
        result="should_finalize" if should_finalize else "counted",
    )


def force_finalize(meeting_id: str) -> LeaveDecision:
    """
    Авторитетный сигнал "комната пуста": should_finalize для любой active сессии.
    """
    with db_session() as session:
        state = MeetingRepository(session).read_state(meeting_id)
    if state is None:
        raise NotFoundError("Сессия не найдена", {"meeting_id": meeting_id})
    status, count = state
    if status != MeetingStatus.active:
        return LeaveDecision(
            meeting_id=meeting_id,
            active_participant_count=count,
            should_finalize=False,
            already_handled=True,
        )
    log.info(
        "meeting_force_finalize",
        extra={"payload": {"meeting_id": meeting_id, "active_participant_count": count}},
    )
    return LeaveDecision(meeting_id=meeting_id, active_participant_count=count, should_finalize=True)


def _outcome(room_name: str, result: FinalizeResult) -> OccupancyOutcome:
    if result.already_handled:
        action = "already_handled"
    elif result.deleted:
        action = "deleted"
    else:
        action = "finalized"
    return OccupancyOutcome(
        room_name=room_name, meeting_id=result.meeting_id, action=action, finalize=result
    )


def handle_occupancy_signal(
    room_name: str,
    room_confirmed_empty: bool,
    *,
    trigger: FinalizeTrigger = FinalizeTrigger.occupancy_signal,
) -> OccupancyOutcome:
    """
    Сигнал занятости от медиа-транспорта. Пустая комната -> force_finalize + finalize
    по накопленным записям транскрипта.
    """
    meeting = get_active_session(room_name)
    if meeting is None:
        return OccupancyOutcome(room_name=room_name, meeting_id=None, action="no_session")
    if not room_confirmed_empty:
        return OccupancyOutcome(room_name=room_name, meeting_id=meeting.id, action="ignored")

    decision = force_finalize(meeting.id)
    if not decision.should_finalize:
        return OccupancyOutcome(room_name=room_name, meeting_id=meeting.id, action="already_handled")
    return _outcome(room_name, finalize(meeting.id, EndPayload(), trigger=trigger))


def handle_participant_left(room_name: str, identity: str) -> OccupancyOutcome:
    """
    participant_left от LiveKit: record_leave, и finalize, если этот выход последний.
    """
    meeting = get_active_session(room_name)
    if meeting is None:
        return OccupancyOutcome(room_name=room_name, meeting_id=None, action="no_session")

    decision = record_leave(meeting.id, identity)
    if decision.already_handled:
        return OccupancyOutcome(room_name=room_name, meeting_id=meeting.id, action="already_handled")
    if not decision.should_finalize:
        return OccupancyOutcome(room_name=room_name, meeting_id=meeting.id, action="ignored")
    return _outcome(
        room_name, finalize(meeting.id, EndPayload(), trigger=FinalizeTrigger.participant_left)
    )
