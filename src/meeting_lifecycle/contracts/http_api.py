"""
HTTP API контракты (Pydantic-модели).

Назначение:
- валидация входа/выхода на уровне FastAPI
- стабильные структуры для клиентов
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .versions import HTTP_API_VERSION


# =============================================================================
# ОБЩИЕ СТРУКТУРЫ
# =============================================================================
class TranscriptItem(BaseModel):
    speaker: str = Field(min_length=1, max_length=256)
    text: str = Field(min_length=1)
    timestamp: datetime | None = None


class ParticipantItem(BaseModel):
    identity: str = Field(min_length=1, max_length=256)
    name: str | None = None
    joined_at: datetime | None = None
    left_at: datetime | None = None


class ParticipantView(BaseModel):
    identity: str
    name: str | None = None
    is_host: bool = False
    joined_at: datetime
    left_at: datetime | None = None


# =============================================================================
# ЗАПРОСЫ
# =============================================================================
class MeetingStartRequest(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    room_name: str = Field(min_length=1, max_length=128)
    participant_identity: str = Field(min_length=1, max_length=256)
    participant_name: str | None = None


class MeetingLeaveRequest(BaseModel):
    participant_identity: str = Field(min_length=1, max_length=256)


class MeetingEndRequest(BaseModel):
    """
    transcripts=None -> берутся записи, накопленные за сессию;
    transcripts=[] -> пустая сессия (удаляется).
    """

    transcripts: list[TranscriptItem] | None = None
    participants: list[ParticipantItem] = Field(default_factory=list)
    ended_at: datetime | None = None


class TranscriptAppendRequest(BaseModel):
    records: list[TranscriptItem] = Field(min_length=1)


class OccupancySignalRequest(BaseModel):
    room_name: str = Field(min_length=1, max_length=128)
    room_confirmed_empty: bool


class RoomCreateRequest(BaseModel):
    room_name: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
    title: str = Field(min_length=1, max_length=256)
    type: str = Field(default="Meeting", max_length=128)
    description: str | None = None


# =============================================================================
# ОТВЕТЫ
# =============================================================================
class MeetingStartResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    meeting_id: str
    was_newly_created: bool
    started_at: datetime
    status: str
    participants: list[ParticipantView] = Field(default_factory=list)


class MeetingLeaveResponse(BaseModel):
    meeting_id: str
    active_participant_count: int
    should_finalize: bool
    already_handled: bool = False


class MeetingEndResponse(BaseModel):
    meeting_id: str
    finalized: bool
    deleted: bool
    already_handled: bool
    preempted: bool = False
    postprocess_dispatched: bool | None = None


class TranscriptAppendResponse(BaseModel):
    meeting_id: str
    appended: int


class MeetingGetResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    meeting_id: str
    room_name: str
    title: str | None = None
    type: str
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_min: int | None = None
    active_participant_count: int
    participants: list[ParticipantView] = Field(default_factory=list)
    transcript_count: int = 0
    processing_status: str
    summary: dict[str, Any] | None = None


class ActiveMeetingResponse(BaseModel):
    room_name: str
    active: bool
    meeting: MeetingGetResponse | None = None


class MeetingHistoryResponse(BaseModel):
    room_name: str
    meetings: list[MeetingGetResponse] = Field(default_factory=list)


class RoomResponse(BaseModel):
    room_id: str
    room_name: str
    title: str
    type: str
    description: str | None = None
    owner_id: str | None = None
    is_active: bool
    last_meeting_at: datetime | None = None
    created_at: datetime


class RoomListResponse(BaseModel):
    rooms: list[RoomResponse] = Field(default_factory=list)


class UsageResponse(BaseModel):
    plan: str
    unlimited: bool
    current_count: int
    limit: int | None = None
    remaining: int | None = None
    exceeded: bool


class OccupancySignalResponse(BaseModel):
    room_name: str
    meeting_id: str | None = None
    action: str
    finalized: bool = False
    deleted: bool = False
    already_handled: bool = False
