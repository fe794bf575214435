"""
Идентификаторы комнат, сессий и событий очереди.

Формат <prefix>_<UTC YYYYMMDDHHMMSS>_<hex>: сортируются по времени создания
и читаются в логах без обращения к БД.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime

MEETING_PREFIX = "mtg"
ROOM_PREFIX = "room"


def _new_id(prefix: str, *, entropy_bytes: int = 5) -> str:
    return f"{prefix}_{datetime.now(UTC):%Y%m%d%H%M%S}_{secrets.token_hex(entropy_bytes)}"


def new_meeting_id() -> str:
    return _new_id(MEETING_PREFIX)


def new_room_id() -> str:
    return _new_id(ROOM_PREFIX)


def new_event_id(prefix: str = "evt") -> str:
    return _new_id(prefix, entropy_bytes=6)
