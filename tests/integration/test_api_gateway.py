from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from apps.api_gateway.main import app
from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.connectors.base import RoomOccupancy

from tests.helpers import sign_webhook as sign

USER = {"X-API-Key": "user-key"}
OTHER = {"X-API-Key": "other-key"}
SERVICE = {"X-API-Key": "svc-key"}


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def api_room(client) -> dict:
    resp = client.post(
        "/v1/rooms",
        json={"room_name": "standup-1", "title": "Daily standup", "type": "Standup"},
        headers=USER,
    )
    assert resp.status_code == 201
    return resp.json()


def _start(client, identity: str) -> dict:
    resp = client.post(
        "/v1/meetings/start",
        json={"room_name": "standup-1", "participant_identity": identity},
        headers=USER,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client) -> None:
    assert client.get("/health").json() == {"ok": True}


def test_metrics_endpoint(client, api_room, monkeypatch) -> None:
    monkeypatch.setattr("meeting_lifecycle.common.metrics.refresh_queue_metrics", lambda: None)
    _start(client, "alice")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "meetings_requests_total" in resp.text
    assert 'meetings_sessions{status="active"} 1.0' in resp.text
    assert 'route="/v1/meetings/start"' in resp.text


def test_full_meeting_lifecycle(client, api_room) -> None:
    assert api_room["owner_id"] == "acc_1"
    assert api_room["is_active"] is False

    alice = _start(client, "alice")
    bob = _start(client, "bob")
    assert alice["was_newly_created"] is True
    assert bob["was_newly_created"] is False
    assert bob["meeting_id"] == alice["meeting_id"]
    meeting_id = alice["meeting_id"]

    active = client.get("/v1/rooms/standup-1/active", headers=USER).json()
    assert active["active"] is True
    assert active["meeting"]["meeting_id"] == meeting_id
    assert active["meeting"]["active_participant_count"] == 2

    resp = client.post(
        f"/v1/meetings/{meeting_id}/transcripts",
        json={"records": [{"speaker": "alice", "text": "Status: done"}]},
        headers=USER,
    )
    assert resp.json() == {"meeting_id": meeting_id, "appended": 1}

    left = client.post(
        f"/v1/meetings/{meeting_id}/leave", json={"participant_identity": "alice"}, headers=USER
    ).json()
    assert left["should_finalize"] is False
    left = client.post(
        f"/v1/meetings/{meeting_id}/leave", json={"participant_identity": "bob"}, headers=USER
    ).json()
    assert left["should_finalize"] is True
    assert left["active_participant_count"] == 0

    ended = client.post(f"/v1/meetings/{meeting_id}/end", json={}, headers=USER).json()
    assert ended["finalized"] is True
    assert ended["deleted"] is False
    assert ended["postprocess_dispatched"] is True

    again = client.post(f"/v1/meetings/{meeting_id}/end", json={}, headers=USER).json()
    assert again["already_handled"] is True

    meeting = client.get(f"/v1/meetings/{meeting_id}", headers=USER).json()
    assert meeting["status"] == "ended"
    assert meeting["type"] == "Standup"
    assert meeting["transcript_count"] == 1
    assert meeting["processing_status"] == "completed"
    assert meeting["summary"]["content"]

    history = client.get("/v1/rooms/standup-1/history", headers=USER).json()
    assert [m["meeting_id"] for m in history["meetings"]] == [meeting_id]
    assert client.get("/v1/rooms/standup-1/active", headers=USER).json()["active"] is False


def test_end_with_empty_transcripts_deletes(client, api_room) -> None:
    meeting_id = _start(client, "alice")["meeting_id"]
    ended = client.post(
        f"/v1/meetings/{meeting_id}/end", json={"transcripts": []}, headers=USER
    ).json()
    assert ended["deleted"] is True

    resp = client.get(f"/v1/meetings/{meeting_id}", headers=USER)
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


def test_requires_api_key(client) -> None:
    resp = client.post(
        "/v1/meetings/start", json={"room_name": "standup-1", "participant_identity": "a"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "unauthorized"


def test_unknown_room_is_404(client) -> None:
    resp = client.post(
        "/v1/meetings/start",
        json={"room_name": "nope", "participant_identity": "alice"},
        headers=USER,
    )
    assert resp.status_code == 404


def test_invalid_room_name_rejected(client) -> None:
    resp = client.post("/v1/rooms", json={"room_name": "bad name!", "title": "x"}, headers=USER)
    assert resp.status_code == 422


def test_duplicate_room_is_409(client, api_room) -> None:
    resp = client.post("/v1/rooms", json={"room_name": "standup-1", "title": "x"}, headers=OTHER)
    assert resp.status_code == 409


def test_list_rooms_for_caller(client, api_room) -> None:
    client.post("/v1/rooms", json={"room_name": "other-room", "title": "x"}, headers=OTHER)
    mine = client.get("/v1/rooms", headers=USER).json()
    assert [r["room_name"] for r in mine["rooms"]] == ["standup-1"]
    assert client.get("/v1/rooms", headers=SERVICE).json() == {"rooms": []}


def test_usage_and_quota(client, api_room, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "meeting_monthly_limit_free", 1)
    usage = client.get("/v1/usage", headers=USER).json()
    assert usage == {
        "plan": "free",
        "unlimited": False,
        "current_count": 0,
        "limit": 1,
        "remaining": 1,
        "exceeded": False,
    }

    meeting_id = _start(client, "alice")["meeting_id"]
    client.post(
        f"/v1/meetings/{meeting_id}/end",
        json={"transcripts": [{"speaker": "alice", "text": "hi"}]},
        headers=USER,
    )
    resp = client.post(
        "/v1/meetings/start",
        json={"room_name": "standup-1", "participant_identity": "alice"},
        headers=USER,
    )
    assert resp.status_code == 402
    assert resp.json()["detail"]["code"] == "limit_exceeded"

    assert client.get("/v1/usage", headers=SERVICE).status_code == 400


def test_occupancy_signal_requires_service(client, api_room) -> None:
    meeting_id = _start(client, "alice")["meeting_id"]
    body = {"room_name": "standup-1", "room_confirmed_empty": True}

    assert client.post("/v1/meetings/occupancy", json=body, headers=USER).status_code == 403

    resp = client.post("/v1/meetings/occupancy", json=body, headers=SERVICE).json()
    assert resp["meeting_id"] == meeting_id
    assert resp["action"] == "deleted"
    assert resp["deleted"] is True


def test_livekit_webhook(client, api_room) -> None:
    meeting_id = _start(client, "alice")["meeting_id"]
    client.post(
        f"/v1/meetings/{meeting_id}/transcripts",
        json={"records": [{"speaker": "alice", "text": "bye"}]},
        headers=USER,
    )
    body = json.dumps(
        {
            "id": "EV_42",
            "event": "participant_left",
            "room": {"name": "standup-1"},
            "participant": {"identity": "alice"},
        }
    ).encode()

    bad = client.post(
        "/v1/webhooks/livekit", content=body, headers={"Authorization": "garbage"}
    )
    assert bad.status_code == 401

    ok = client.post("/v1/webhooks/livekit", content=body, headers={"Authorization": sign(body)})
    assert ok.status_code == 200
    assert ok.json()["action"] == "finalized"
    assert ok.json()["meeting_id"] == meeting_id

    dup = client.post("/v1/webhooks/livekit", content=body, headers={"Authorization": sign(body)})
    assert dup.json()["duplicate"] is True


class _SlowProbe:
    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        time.sleep(1.0)
        return RoomOccupancy(room_name=room_name, participant_count=1)


def test_livekit_webhook_does_not_block_other_requests(client, api_room, monkeypatch) -> None:
    _start(client, "alice")
    _start(client, "bob")
    monkeypatch.setattr(
        "meeting_lifecycle.services.livekit_events.build_occupancy_probe", lambda: _SlowProbe()
    )
    body = json.dumps(
        {
            "id": "EV_SLOW",
            "event": "participant_left",
            "room": {"name": "standup-1"},
            "participant": {"identity": "bob"},
        }
    ).encode()

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            headers = {"Authorization": sign(body)}
            webhook = asyncio.create_task(
                ac.post("/v1/webhooks/livekit", content=body, headers=headers)
            )
            await asyncio.sleep(0.2)
            started = time.perf_counter()
            health = await ac.get("/health")
            elapsed = time.perf_counter() - started
            return await webhook, health, elapsed

    webhook, health, elapsed = asyncio.run(scenario())
    assert webhook.status_code == 200
    assert webhook.json()["action"] == "ignored"
    assert health.status_code == 200
    assert elapsed < 0.5


class _FakeRedis:
    def xlen(self, stream: str) -> int:
        return 1 if stream.endswith(":dlq") else 4

    def xpending(self, stream: str, group: str) -> dict[str, int]:
        return {"pending": 2}


def test_admin_queue_health(client, monkeypatch) -> None:
    monkeypatch.setattr("apps.api_gateway.routers.admin.redis_client", lambda: _FakeRedis())
    assert client.get("/v1/admin/queues/health", headers=USER).status_code == 403

    resp = client.get("/v1/admin/queues/health", headers=SERVICE).json()
    assert resp == {
        "queues": [
            {
                "queue": "q:postprocess",
                "group": "g:postprocess",
                "depth": 4,
                "pending": 2,
                "dlq_depth": 1,
                "error": None,
            }
        ]
    }


def test_admin_reconcile(client) -> None:
    resp = client.post("/v1/admin/reconcile", headers=SERVICE)
    assert resp.status_code == 200
    assert resp.json()["failed"] == 0
