"""
HTTP роуты комнат и квоты.

- POST /v1/rooms
- GET  /v1/rooms
- GET  /v1/rooms/{room_name}
- GET  /v1/rooms/{room_name}/active
- GET  /v1/rooms/{room_name}/history
- GET  /v1/usage
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from apps.api_gateway.deps import account_id_of, app_error_to_http, auth_dep
from apps.api_gateway.routers.meetings import meeting_response
from meeting_lifecycle.common.errors import AppError, ValidationError
from meeting_lifecycle.common.security import AuthContext
from meeting_lifecycle.contracts.http_api import (
    ActiveMeetingResponse,
    MeetingHistoryResponse,
    RoomCreateRequest,
    RoomListResponse,
    RoomResponse,
    UsageResponse,
)
from meeting_lifecycle.services import meeting_service
from meeting_lifecycle.services.meeting_service import RoomView
from meeting_lifecycle.services.usage_service import get_usage

router = APIRouter()


def _room_response(view: RoomView) -> RoomResponse:
    return RoomResponse(
        room_id=view.room_id,
        room_name=view.room_name,
        title=view.title,
        type=view.type,
        description=view.description,
        owner_id=view.owner_id,
        is_active=view.is_active,
        last_meeting_at=view.last_meeting_at,
        created_at=view.created_at,
    )


@router.post("/rooms", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_room(
    req: RoomCreateRequest,
    ctx: AuthContext = Depends(auth_dep),
) -> RoomResponse:
    try:
        view = meeting_service.create_room(
            room_name=req.room_name,
            title=req.title,
            owner_id=account_id_of(ctx),
            type=req.type,
            description=req.description,
        )
    except AppError as e:
        raise app_error_to_http(e) from e
    return _room_response(view)


@router.get("/rooms", response_model=RoomListResponse)
def list_rooms(
    limit: int = Query(default=100, ge=1, le=500),
    ctx: AuthContext = Depends(auth_dep),
) -> RoomListResponse:
    account_id = account_id_of(ctx)
    if account_id is None:
        return RoomListResponse(rooms=[])
    try:
        views = meeting_service.list_rooms(account_id, limit=limit)
    except AppError as e:
        raise app_error_to_http(e) from e
    return RoomListResponse(rooms=[_room_response(v) for v in views])


@router.get("/rooms/{room_name}", response_model=RoomResponse)
def get_room(
    room_name: str,
    _ctx: AuthContext = Depends(auth_dep),
) -> RoomResponse:
    try:
        return _room_response(meeting_service.get_room(room_name))
    except AppError as e:
        raise app_error_to_http(e) from e


@router.get("/rooms/{room_name}/active", response_model=ActiveMeetingResponse)
def get_active_meeting(
    room_name: str,
    _ctx: AuthContext = Depends(auth_dep),
) -> ActiveMeetingResponse:
    try:
        view = meeting_service.get_active_meeting(room_name)
    except AppError as e:
        raise app_error_to_http(e) from e
    return ActiveMeetingResponse(
        room_name=room_name,
        active=view is not None,
        meeting=meeting_response(view) if view is not None else None,
    )


@router.get("/rooms/{room_name}/history", response_model=MeetingHistoryResponse)
def get_history(
    room_name: str,
    limit: int = Query(default=20, ge=1, le=100),
    _ctx: AuthContext = Depends(auth_dep),
) -> MeetingHistoryResponse:
    try:
        views = meeting_service.list_history(room_name, limit=limit)
    except AppError as e:
        raise app_error_to_http(e) from e
    return MeetingHistoryResponse(
        room_name=room_name, meetings=[meeting_response(v) for v in views]
    )


@router.get("/usage", response_model=UsageResponse)
def usage(ctx: AuthContext = Depends(auth_dep)) -> UsageResponse:
    account_id = account_id_of(ctx)
    if account_id is None:
        raise app_error_to_http(ValidationError("Квота есть только у пользовательских аккаунтов"))
    try:
        info = get_usage(account_id)
    except AppError as e:
        raise app_error_to_http(e) from e
    return UsageResponse(
        plan=info.plan,
        unlimited=info.unlimited,
        current_count=info.current_count,
        limit=info.limit,
        remaining=info.remaining,
        exceeded=info.exceeded,
    )
