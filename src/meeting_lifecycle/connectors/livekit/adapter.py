"""
Адаптер LiveKit RoomService (Twirp поверх HTTP).

Назначение:
- ListParticipants для проверки "комната действительно пуста"
- access token (JWT HS256, grant video.roomAdmin) подписывается API secret
"""

from __future__ import annotations

import time
from typing import Any

import jwt
import requests

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ErrCode, ProviderError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.connectors.base import RoomOccupancy, RoomOccupancyProbe

log = get_project_logger()

_TWIRP_PREFIX = "/twirp/livekit.RoomService"


def _http_base(url: str) -> str:
    url = url.rstrip("/")
    if url.startswith("wss://"):
        return "https://" + url[len("wss://") :]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://") :]
    return url


class LiveKitRoomService(RoomOccupancyProbe):
    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout_sec: int | None = None,
    ) -> None:
        s = get_settings()
        self.base_url = _http_base(url or s.livekit_url or "")
        self.api_key = (api_key or s.livekit_api_key or "").strip()
        self.api_secret = (api_secret or s.livekit_api_secret or "").strip()
        self.timeout_sec = int(timeout_sec if timeout_sec is not None else s.livekit_timeout_sec)
        self.token_ttl_sec = int(s.livekit_token_ttl_sec)

    def _access_token(self, room_name: str) -> str:
        now = int(time.time())
        claims = {
            "iss": self.api_key,
            "sub": "meeting-lifecycle",
            "nbf": now,
            "exp": now + self.token_ttl_sec,
            "video": {"roomAdmin": True, "room": room_name},
        }
        return jwt.encode(claims, self.api_secret, algorithm="HS256")

    def _request(self, method: str, *, room_name: str, payload: dict[str, Any]) -> dict:
        if not self.base_url or not self.api_key or not self.api_secret:
            raise ProviderError(
                ErrCode.TRANSPORT_PROVIDER_ERROR,
                "LIVEKIT_URL / LIVEKIT_API_KEY / LIVEKIT_API_SECRET не настроены",
            )

        url = f"{self.base_url}{_TWIRP_PREFIX}/{method}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._access_token(room_name)}",
        }
        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=self.timeout_sec)
        except requests.RequestException as e:
            raise ProviderError(
                ErrCode.TRANSPORT_PROVIDER_ERROR,
                "Ошибка обращения к LiveKit API",
                details={"err": str(e)[:300], "method": method},
            ) from e

        if resp.status_code == 404:
            # twirp not_found: комнаты нет, значит в ней никого нет
            return {}
        if resp.status_code >= 400:
            raise ProviderError(
                ErrCode.TRANSPORT_PROVIDER_ERROR,
                "LiveKit вернул ошибку",
                details={"status": resp.status_code, "text_head": resp.text[:300]},
            )
        if not resp.content:
            return {}
        try:
            data = resp.json()
            return data if isinstance(data, dict) else {}
        except ValueError:
            return {}

    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        data = self._request("ListParticipants", room_name=room_name, payload={"room": room_name})
        participants = data.get("participants")
        if not isinstance(participants, list):
            participants = []
        identities = [
            str(p.get("identity"))
            for p in participants
            if isinstance(p, dict) and p.get("identity")
        ]
        log.info(
            "livekit_room_occupancy",
            extra={"payload": {"room_name": room_name, "participant_count": len(participants)}},
        )
        return RoomOccupancy(
            room_name=room_name, participant_count=len(participants), identities=identities
        )
