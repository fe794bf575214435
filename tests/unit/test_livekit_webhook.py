from __future__ import annotations

import json

import pytest

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import UnauthorizedError, ValidationError
from meeting_lifecycle.connectors.livekit.webhook import (
    body_sha256,
    parse_event,
    receive,
    verify_webhook,
)

from tests.helpers import sign_webhook as sign


def _body(**kw) -> bytes:
    data = {
        "id": "EV_1",
        "event": "participant_left",
        "room": {"name": "standup-1", "sid": "RM_1"},
        "participant": {"identity": "alice", "name": "Alice"},
        "createdAt": "1767225600",
    }
    data.update(kw)
    return json.dumps(data).encode("utf-8")


def test_receive_valid_signature() -> None:
    body = _body()
    event = receive(body, sign(body))
    assert event.id == "EV_1"
    assert event.event == "participant_left"
    assert event.room_name == "standup-1"
    assert event.participant_identity == "alice"
    assert event.participant_name == "Alice"
    assert event.created_at == 1767225600


def test_bearer_prefix_accepted() -> None:
    body = _body()
    claims = verify_webhook(body, f"Bearer {sign(body)}")
    assert claims["sha256"] == body_sha256(body)


def test_missing_header_rejected() -> None:
    with pytest.raises(UnauthorizedError):
        verify_webhook(_body(), None)


def test_wrong_secret_rejected() -> None:
    body = _body()
    with pytest.raises(UnauthorizedError):
        verify_webhook(body, sign(body, secret="not-the-livekit-secret-0123456789"))


def test_wrong_issuer_rejected() -> None:
    body = _body()
    with pytest.raises(UnauthorizedError):
        verify_webhook(body, sign(body, key="someone-else"))


def test_tampered_body_rejected() -> None:
    body = _body()
    token = sign(body)
    with pytest.raises(UnauthorizedError):
        verify_webhook(_body(event="room_finished"), token)


def test_not_configured_rejected(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "livekit_api_secret", None)
    body = _body()
    with pytest.raises(UnauthorizedError):
        verify_webhook(body, "token")


def test_parse_event_requires_event_field() -> None:
    with pytest.raises(ValidationError):
        parse_event(b'{"id": "x"}')
    with pytest.raises(ValidationError):
        parse_event(b"not json")


def test_parse_event_without_room_or_participant() -> None:
    event = parse_event(b'{"event": "room_started"}')
    assert event.id == ""
    assert event.room_name is None
    assert event.participant_identity is None
    assert event.created_at is None
