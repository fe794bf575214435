"""
Session Registry: комната -> текущая сессия встречи.

start_or_join:
- ищет открытую (active/ending) сессию комнаты и присоединяет участника
- иначе создаёт новую; гонку двух "первых" разрешает UNIQUE на
  meetings.active_room_key (проигравший INSERT получает IntegrityError
  и присоединяется к победителю)
- счётчик участников растёт только вместе со вставкой/переоткрытием строки
  участника в той же транзакции, поэтому повтор запроса не считает дважды
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ConflictError, NotFoundError, ValidationError
from meeting_lifecycle.common.ids import new_meeting_id
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.metrics import SESSIONS_STARTED_TOTAL
from meeting_lifecycle.common.time import as_utc, utc_now
from meeting_lifecycle.domain.enums import MeetingStatus
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.models import Meeting, MeetingParticipant, MeetingRoom
from meeting_lifecycle.storage.repositories import (
    MeetingRepository,
    ParticipantRepository,
    RoomRepository,
)

from .usage_service import ensure_within_quota

log = get_project_logger()


@dataclass
class ParticipantState:
    identity: str
    name: str | None
    is_host: bool
    joined_at: datetime
    left_at: datetime | None = None


@dataclass
class StartOrJoinResult:
    meeting_id: str
    was_newly_created: bool
    started_at: datetime
    status: MeetingStatus
    participants: list[ParticipantState] = field(default_factory=list)


@dataclass
class _RoomInfo:
    id: str
    room_name: str
    title: str
    type: str


def participant_states(rows: list[MeetingParticipant]) -> list[ParticipantState]:
    return [
        ParticipantState(
            identity=p.identity,
            name=p.name,
            is_host=bool(p.is_host),
            joined_at=as_utc(p.joined_at),
            left_at=as_utc(p.left_at),
        )
        for p in rows
    ]


def _load_room(room_name: str) -> _RoomInfo:
    with db_session() as session:
        room: MeetingRoom | None = RoomRepository(session).get_by_name(room_name)
        if room is None:
            raise NotFoundError("Комната не найдена", {"room_name": room_name})
        return _RoomInfo(id=room.id, room_name=room.room_name, title=room.title, type=room.type)


def _find_open_meeting_id(room_name: str) -> str | None:
    with db_session() as session:
        m = MeetingRepository(session).get_open_by_room(room_name)
        return m.id if m is not None else None


def _create(room: _RoomInfo, identity: str, name: str | None) -> StartOrJoinResult:
    """
    Одна транзакция: сессия + первый участник (host), count = 1.
    IntegrityError пробрасывается: в комнате уже есть открытая сессия.
    """
    now = utc_now()
    with db_session() as session:
        mrepo = MeetingRepository(session)
        meeting = Meeting(
            id=new_meeting_id(),
            room_id=room.id,
            room_name=room.room_name,
            title=room.title,
            type=room.type,
            status=MeetingStatus.active,
            active_room_key=room.room_name,
            started_at=now,
            last_activity_at=now,
            active_participant_count=1,
        )
        mrepo.insert(meeting)
        host = MeetingParticipant(
            meeting_id=meeting.id,
            identity=identity,
            name=name,
            is_host=True,
            joined_at=now,
        )
        ParticipantRepository(session).add(host)
        RoomRepository(session).set_active(room.room_name, is_active=True, at=now)

        return StartOrJoinResult(
            meeting_id=meeting.id,
            was_newly_created=True,
            started_at=now,
            status=MeetingStatus.active,
            participants=participant_states([host]),
        )


def _attach(meeting_id: str, identity: str, name: str | None) -> StartOrJoinResult | None:
    """
    Присоединяет участника к открытой сессии.
    None: сессия успела завершиться (вызывающий повторяет поиск/создание).
    """
    for _ in range(2):
        now = utc_now()
        try:
            with db_session() as session:
                mrepo = MeetingRepository(session)
                prepo = ParticipantRepository(session)

                # первым UPDATE берём блокировку строки сессии
                if mrepo.touch_open(meeting_id, at=now) == 0:
                    return None

                existing = prepo.get(meeting_id, identity)
                counted = False
                if existing is None:
                    prepo.add(
                        MeetingParticipant(
                            meeting_id=meeting_id,
                            identity=identity,
                            name=name,
                            is_host=False,
                            joined_at=now,
                        )
                    )
                    counted = True
                elif prepo.reopen(meeting_id, identity) == 1:
                    counted = True

                if counted:
                    mrepo.increment_participants(meeting_id, at=now)

                meeting = mrepo.get(meeting_id)
                return StartOrJoinResult(
                    meeting_id=meeting.id,
                    was_newly_created=False,
                    started_at=as_utc(meeting.started_at),
                    status=meeting.status,
                    participants=participant_states(prepo.list_by_meeting(meeting_id)),
                )
        except IntegrityError:
            # тот же участник вставлен параллельным запросом: повторяем, строка уже есть
            log.info(
                "meeting_participant_insert_race",
                extra={"payload": {"meeting_id": meeting_id, "identity": identity}},
            )
    raise ConflictError(
        "Не удалось присоединить участника", {"meeting_id": meeting_id, "identity": identity}
    )


def start_or_join(
    room_name: str,
    participant_identity: str,
    *,
    account_id: str | None = None,
    participant_name: str | None = None,
) -> StartOrJoinResult:
    room_name = (room_name or "").strip()
    identity = (participant_identity or "").strip()
    if not room_name:
        raise ValidationError("room_name обязателен")
    if not identity:
        raise ValidationError("participant_identity обязателен")

    room = _load_room(room_name)
    attempts = max(1, int(get_settings().start_or_join_max_attempts))

    for attempt in range(1, attempts + 1):
        open_id = _find_open_meeting_id(room_name)
        if open_id is not None:
            joined = _attach(open_id, identity, participant_name)
            if joined is not None:
                SESSIONS_STARTED_TOTAL.labels(result="joined").inc()
                log.info(
                    "meeting_session_joined",
                    extra={
                        "payload": {
                            "meeting_id": joined.meeting_id,
                            "room_name": room_name,
                            "identity": identity,
                        }
                    },
                )
                return joined
            continue

        ensure_within_quota(account_id)
        try:
            created = _create(room, identity, participant_name)
        except IntegrityError:
            log.info(
                "meeting_session_create_race_lost",
                extra={"payload": {"room_name": room_name, "attempt": attempt}},
            )
            continue

        SESSIONS_STARTED_TOTAL.labels(result="created").inc()
        log.info(
            "meeting_session_created",
            extra={
                "payload": {
                    "meeting_id": created.meeting_id,
                    "room_name": room_name,
                    "identity": identity,
                }
            },
        )
        return created

    log.warning(
        "meeting_start_or_join_exhausted",
        extra={"payload": {"room_name": room_name, "attempts": attempts}},
    )
    raise ConflictError(
        "Сессия комнаты меняется слишком быстро, повторите запрос",
        {"room_name": room_name, "attempts": attempts},
    )


def get_active_session(room_name: str) -> Meeting | None:
    """
    Текущая открытая (active/ending) сессия комнаты или None.
    """
    with db_session() as session:
        return MeetingRepository(session).get_open_by_room((room_name or "").strip())
