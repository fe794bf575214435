"""
Mock LiveKit для dev/тестов.

Назначение:
- гонять reconciliation без реального медиа-сервера
- число участников задаётся LIVEKIT_MOCK_PARTICIPANT_COUNT
"""

from __future__ import annotations

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.connectors.base import RoomOccupancy, RoomOccupancyProbe


class MockLiveKitRoomService(RoomOccupancyProbe):
    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        count = max(0, int(get_settings().livekit_mock_participant_count))
        return RoomOccupancy(
            room_name=room_name,
            participant_count=count,
            identities=[f"mock-{i}" for i in range(count)],
        )
