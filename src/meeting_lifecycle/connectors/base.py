"""
Базовые интерфейсы коннекторов (интеграции с внешними системами).

Назначение:
- стандартизировать адаптеры к медиа-транспорту (LiveKit)
- отделить "как спрашиваем занятость комнаты" от "что делаем с сессией"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class RoomOccupancy:
    """
    Снимок занятости комнаты по данным медиа-транспорта.
    """

    room_name: str
    participant_count: int
    identities: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.participant_count <= 0


class RoomOccupancyProbe(Protocol):
    """
    Контракт коннектора медиа-транспорта.
    """

    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        """Текущие участники комнаты. ProviderError при недоступности."""
        ...


def build_occupancy_probe() -> RoomOccupancyProbe:
    """
    LIVEKIT_PROVIDER=livekit|livekit_mock.
    """
    from meeting_lifecycle.common.config import get_settings

    provider = (get_settings().livekit_provider or "").strip().lower()
    if provider == "livekit":
        from .livekit.adapter import LiveKitRoomService

        return LiveKitRoomService()

    from .livekit.mock import MockLiveKitRoomService

    return MockLiveKitRoomService()
