"""
Проверка и разбор webhook-событий LiveKit.

Подпись:
- Authorization: JWT (HS256) подписан LIVEKIT_API_SECRET, iss == LIVEKIT_API_KEY
- claim sha256 == base64(SHA-256(сырого тела запроса))
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any

import jwt

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import UnauthorizedError, ValidationError


@dataclass
class WebhookEvent:
    id: str
    event: str
    room_name: str | None = None
    participant_identity: str | None = None
    participant_name: str | None = None
    created_at: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def body_sha256(body: bytes) -> str:
    return base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def _token_from_header(authorization: str | None) -> str:
    token = (authorization or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    if not token:
        raise UnauthorizedError("Нет подписи webhook (Authorization)")
    return token


def verify_webhook(body: bytes, authorization: str | None) -> dict[str, Any]:
    """
    Проверяет подпись и возвращает claims токена. UnauthorizedError при любой ошибке.
    """
    s = get_settings()
    api_key = (s.livekit_api_key or "").strip()
    api_secret = (s.livekit_api_secret or "").strip()
    if not api_key or not api_secret:
        raise UnauthorizedError("LiveKit webhook не настроен")

    token = _token_from_header(authorization)
    try:
        claims = jwt.decode(
            token,
            api_secret,
            algorithms=["HS256"],
            issuer=api_key,
            options={"require": ["iss"]},
            leeway=int(s.jwt_clock_skew_sec),
        )
    except jwt.PyJWTError as e:
        raise UnauthorizedError("Невалидная подпись webhook", {"reason": str(e)[:200]}) from e

    expected = body_sha256(body)
    if not hmac.compare_digest(str(claims.get("sha256") or ""), expected):
        raise UnauthorizedError("Хэш тела webhook не совпадает")
    return claims


def parse_event(body: bytes) -> WebhookEvent:
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Тело webhook не JSON") from e
    if not isinstance(data, dict) or not data.get("event"):
        raise ValidationError("В webhook нет поля event")

    room = data.get("room") if isinstance(data.get("room"), dict) else {}
    participant = data.get("participant") if isinstance(data.get("participant"), dict) else {}
    created_at = data.get("createdAt")
    return WebhookEvent(
        id=str(data.get("id") or ""),
        event=str(data["event"]),
        room_name=(room.get("name") or None),
        participant_identity=(participant.get("identity") or None),
        participant_name=(participant.get("name") or None),
        created_at=int(created_at) if str(created_at or "").isdigit() else None,
        raw=data,
    )


def receive(body: bytes, authorization: str | None) -> WebhookEvent:
    verify_webhook(body, authorization)
    return parse_event(body)
