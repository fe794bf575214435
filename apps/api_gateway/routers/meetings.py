"""
HTTP роуты жизненного цикла сессии встречи.

- POST /v1/meetings/start
- POST /v1/meetings/{meeting_id}/leave
- POST /v1/meetings/{meeting_id}/end
- POST /v1/meetings/{meeting_id}/transcripts
- GET  /v1/meetings/{meeting_id}
- POST /v1/meetings/occupancy (service)

Авторизация: Depends(auth_dep) / Depends(service_auth_dep)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from apps.api_gateway.deps import account_id_of, app_error_to_http, auth_dep, service_auth_dep
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.security import AuthContext
from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.contracts.http_api import (
    MeetingEndRequest,
    MeetingEndResponse,
    MeetingGetResponse,
    MeetingLeaveRequest,
    MeetingLeaveResponse,
    MeetingStartRequest,
    MeetingStartResponse,
    OccupancySignalRequest,
    OccupancySignalResponse,
    ParticipantView,
    TranscriptAppendRequest,
    TranscriptAppendResponse,
    TranscriptItem,
)
from meeting_lifecycle.processing.transcripts import TranscriptLine
from meeting_lifecycle.services import meeting_service
from meeting_lifecycle.services.end_arbiter import handle_occupancy_signal, record_leave
from meeting_lifecycle.services.finalize_service import EndPayload, ParticipantInput, finalize
from meeting_lifecycle.services.meeting_service import MeetingView
from meeting_lifecycle.services.session_registry import ParticipantState, start_or_join

router = APIRouter()


def participant_views(states: list[ParticipantState]) -> list[ParticipantView]:
    return [
        ParticipantView(
            identity=p.identity,
            name=p.name,
            is_host=p.is_host,
            joined_at=p.joined_at,
            left_at=p.left_at,
        )
        for p in states
    ]


def meeting_response(view: MeetingView) -> MeetingGetResponse:
    return MeetingGetResponse(
        meeting_id=view.meeting_id,
        room_name=view.room_name,
        title=view.title,
        type=view.type,
        status=view.status.value,
        started_at=view.started_at,
        ended_at=view.ended_at,
        duration_min=view.duration_min,
        active_participant_count=view.active_participant_count,
        participants=participant_views(view.participants),
        transcript_count=view.transcript_count,
        processing_status=view.processing_status.value,
        summary=view.summary,
    )


def _lines(items: list[TranscriptItem]) -> list[TranscriptLine]:
    now = utc_now()
    return [
        TranscriptLine(speaker=i.speaker, text=i.text, timestamp=i.timestamp or now) for i in items
    ]


@router.post("/meetings/start", response_model=MeetingStartResponse)
def start_meeting(
    req: MeetingStartRequest,
    ctx: AuthContext = Depends(auth_dep),
) -> MeetingStartResponse:
    try:
        res = start_or_join(
            req.room_name,
            req.participant_identity,
            account_id=account_id_of(ctx),
            participant_name=req.participant_name,
        )
    except AppError as e:
        raise app_error_to_http(e) from e

    return MeetingStartResponse(
        meeting_id=res.meeting_id,
        was_newly_created=res.was_newly_created,
        started_at=res.started_at,
        status=res.status.value,
        participants=participant_views(res.participants),
    )


@router.post("/meetings/occupancy", response_model=OccupancySignalResponse)
def occupancy_signal(
    req: OccupancySignalRequest,
    _ctx: AuthContext = Depends(service_auth_dep),
) -> OccupancySignalResponse:
    try:
        outcome = handle_occupancy_signal(req.room_name, req.room_confirmed_empty)
    except AppError as e:
        raise app_error_to_http(e) from e

    fin = outcome.finalize
    return OccupancySignalResponse(
        room_name=outcome.room_name,
        meeting_id=outcome.meeting_id,
        action=outcome.action,
        finalized=bool(fin and fin.finalized),
        deleted=bool(fin and fin.deleted),
        already_handled=outcome.action == "already_handled",
    )


@router.post("/meetings/{meeting_id}/leave", response_model=MeetingLeaveResponse)
def leave_meeting(
    meeting_id: str,
    req: MeetingLeaveRequest,
    _ctx: AuthContext = Depends(auth_dep),
) -> MeetingLeaveResponse:
    try:
        decision = record_leave(meeting_id, req.participant_identity)
    except AppError as e:
        raise app_error_to_http(e) from e

    return MeetingLeaveResponse(
        meeting_id=decision.meeting_id,
        active_participant_count=decision.active_participant_count,
        should_finalize=decision.should_finalize,
        already_handled=decision.already_handled,
    )


@router.post("/meetings/{meeting_id}/end", response_model=MeetingEndResponse)
def end_meeting(
    meeting_id: str,
    req: MeetingEndRequest,
    _ctx: AuthContext = Depends(auth_dep),
) -> MeetingEndResponse:
    payload = EndPayload(
        transcripts=_lines(req.transcripts) if req.transcripts is not None else None,
        participants=[
            ParticipantInput(
                identity=p.identity, name=p.name, joined_at=p.joined_at, left_at=p.left_at
            )
            for p in req.participants
        ],
        ended_at=req.ended_at,
    )
    try:
        res = finalize(meeting_id, payload)
    except AppError as e:
        raise app_error_to_http(e) from e

    return MeetingEndResponse(
        meeting_id=res.meeting_id,
        finalized=res.finalized,
        deleted=res.deleted,
        already_handled=res.already_handled,
        preempted=res.preempted,
        postprocess_dispatched=res.postprocess_dispatched,
    )


@router.post("/meetings/{meeting_id}/transcripts", response_model=TranscriptAppendResponse)
def append_transcripts(
    meeting_id: str,
    req: TranscriptAppendRequest,
    _ctx: AuthContext = Depends(auth_dep),
) -> TranscriptAppendResponse:
    try:
        appended = meeting_service.append_transcripts(meeting_id, _lines(req.records))
    except AppError as e:
        raise app_error_to_http(e) from e
    return TranscriptAppendResponse(meeting_id=meeting_id, appended=appended)


@router.get("/meetings/{meeting_id}", response_model=MeetingGetResponse)
def get_meeting(
    meeting_id: str,
    _ctx: AuthContext = Depends(auth_dep),
) -> MeetingGetResponse:
    try:
        view = meeting_service.get_meeting(meeting_id)
    except AppError as e:
        raise app_error_to_http(e) from e
    return meeting_response(view)
