"""
Webhook LiveKit.

- POST /v1/webhooks/livekit
Авторизация: подпись LiveKit (JWT в Authorization), а не API-ключ.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Request
from starlette.concurrency import run_in_threadpool

from apps.api_gateway.deps import app_error_to_http
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.connectors.livekit.webhook import receive
from meeting_lifecycle.services.livekit_events import handle_webhook

log = get_project_logger()

router = APIRouter()


@router.post("/webhooks/livekit")
async def livekit_webhook(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict[str, Any]:
    body = await request.body()
    try:
        event = receive(body, authorization)
    except AppError as e:
        log.warning(
            "livekit_webhook_rejected",
            extra={"payload": {"code": e.code, "reason": e.message}},
        )
        raise app_error_to_http(e) from e

    try:
        # БД, запрос в LiveKit и inline summary не должны занимать event loop
        outcome = await run_in_threadpool(handle_webhook, event)
    except AppError as e:
        raise app_error_to_http(e) from e

    return {
        "ok": True,
        "event": outcome.event,
        "room_name": outcome.room_name,
        "meeting_id": outcome.meeting_id,
        "action": outcome.action,
        "duplicate": outcome.duplicate,
    }
