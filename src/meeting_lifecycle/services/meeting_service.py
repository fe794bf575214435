"""
Сервисный слой: комнаты, транскрипт во время сессии, чтение сессий.

Назначение:
- создание/получение комнат (статическая конфигурация)
- дозапись транскрипта в открытую сессию
- детали сессии (polling статуса summary) и история комнаты
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ConflictError, NotFoundError, ValidationError
from meeting_lifecycle.common.ids import new_room_id
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.time import as_utc, utc_now
from meeting_lifecycle.domain.enums import MeetingStatus, ProcessingStatus
from meeting_lifecycle.processing.transcripts import TranscriptLine
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.models import Meeting, MeetingRoom
from meeting_lifecycle.storage.repositories import (
    MeetingRepository,
    ParticipantRepository,
    RoomRepository,
    TranscriptRecordRepository,
)

from .session_registry import ParticipantState, participant_states

log = get_project_logger()


@dataclass
class RoomView:
    room_id: str
    room_name: str
    title: str
    type: str
    description: str | None
    owner_id: str | None
    is_active: bool
    last_meeting_at: datetime | None
    created_at: datetime


@dataclass
class MeetingView:
    meeting_id: str
    room_name: str
    title: str | None
    type: str
    status: MeetingStatus
    started_at: datetime
    ended_at: datetime | None
    duration_min: int | None
    active_participant_count: int
    processing_status: ProcessingStatus
    summary: dict[str, Any] | None
    transcript_count: int = 0
    participants: list[ParticipantState] = field(default_factory=list)


def _room_view(room: MeetingRoom) -> RoomView:
    return RoomView(
        room_id=room.id,
        room_name=room.room_name,
        title=room.title,
        type=room.type,
        description=room.description,
        owner_id=room.owner_id,
        is_active=bool(room.is_active),
        last_meeting_at=as_utc(room.last_meeting_at),
        created_at=as_utc(room.created_at),
    )


def _meeting_view(session, meeting: Meeting) -> MeetingView:
    transcripts = TranscriptRecordRepository(session).list_by_meeting(meeting.id)
    return MeetingView(
        meeting_id=meeting.id,
        room_name=meeting.room_name,
        title=meeting.title,
        type=meeting.type,
        status=meeting.status,
        started_at=as_utc(meeting.started_at),
        ended_at=as_utc(meeting.ended_at),
        duration_min=meeting.duration_min,
        active_participant_count=int(meeting.active_participant_count),
        processing_status=meeting.processing_status,
        summary=meeting.summary,
        transcript_count=len(transcripts),
        participants=participant_states(ParticipantRepository(session).list_by_meeting(meeting.id)),
    )


# =============================================================================
# ROOMS
# =============================================================================
def create_room(
    *,
    room_name: str,
    title: str,
    owner_id: str | None,
    type: str = "Meeting",
    description: str | None = None,
) -> RoomView:
    room_name = (room_name or "").strip()
    if not room_name:
        raise ValidationError("room_name обязателен")
    try:
        with db_session() as session:
            room = MeetingRoom(
                id=new_room_id(),
                room_name=room_name,
                title=title.strip(),
                type=(type or "Meeting").strip() or "Meeting",
                description=description,
                owner_id=owner_id,
                is_active=False,
                created_at=utc_now(),
            )
            RoomRepository(session).add(room)
            view = _room_view(room)
    except IntegrityError as e:
        raise ConflictError("Комната уже существует", {"room_name": room_name}) from e

    log.info(
        "room_created",
        extra={"payload": {"room_id": view.room_id, "room_name": room_name, "owner_id": owner_id}},
    )
    return view


def get_room(room_name: str) -> RoomView:
    with db_session() as session:
        room = RoomRepository(session).get_by_name(room_name)
        if room is None:
            raise NotFoundError("Комната не найдена", {"room_name": room_name})
        return _room_view(room)


def list_rooms(owner_id: str, *, limit: int = 100) -> list[RoomView]:
    with db_session() as session:
        return [_room_view(r) for r in RoomRepository(session).list_by_owner(owner_id, limit=limit)]


# =============================================================================
# TRANSCRIPTS
# =============================================================================
def append_transcripts(meeting_id: str, lines: list[TranscriptLine]) -> int:
    """
    Дозапись транскрипта в открытую сессию. Для ended сессии -> ConflictError.
    """
    max_batch = int(get_settings().transcript_append_max_batch)
    if not lines:
        return 0
    if len(lines) > max_batch:
        raise ValidationError(
            "Слишком много записей в одном запросе", {"max_batch": max_batch, "got": len(lines)}
        )

    with db_session() as session:
        mrepo = MeetingRepository(session)
        if mrepo.touch_open(meeting_id, at=utc_now()) == 0:
            if mrepo.read_state(meeting_id) is None:
                raise NotFoundError("Сессия не найдена", {"meeting_id": meeting_id})
            raise ConflictError("Сессия уже завершена", {"meeting_id": meeting_id})
        appended = TranscriptRecordRepository(session).append_many(
            meeting_id,
            [{"speaker": ln.speaker, "text": ln.text, "timestamp": ln.timestamp} for ln in lines],
        )

    log.info(
        "transcripts_appended",
        extra={"payload": {"meeting_id": meeting_id, "count": appended}},
    )
    return appended


# =============================================================================
# READ
# =============================================================================
def get_meeting(meeting_id: str) -> MeetingView:
    with db_session() as session:
        meeting = MeetingRepository(session).get(meeting_id)
        if meeting is None:
            raise NotFoundError("Сессия не найдена", {"meeting_id": meeting_id})
        return _meeting_view(session, meeting)


def get_active_meeting(room_name: str) -> MeetingView | None:
    with db_session() as session:
        meeting = MeetingRepository(session).get_open_by_room(room_name)
        if meeting is None:
            return None
        return _meeting_view(session, meeting)


def list_history(room_name: str, *, limit: int = 20) -> list[MeetingView]:
    with db_session() as session:
        return [
            _meeting_view(session, m)
            for m in MeetingRepository(session).list_history(room_name, limit=limit)
        ]
