from __future__ import annotations

import pytest

from meeting_lifecycle.common.errors import ErrCode, ProviderError
from meeting_lifecycle.connectors.base import RoomOccupancy
from meeting_lifecycle.connectors.livekit.webhook import WebhookEvent
from meeting_lifecycle.domain.enums import MeetingStatus
from meeting_lifecycle.services.livekit_events import handle_event, handle_webhook
from meeting_lifecycle.services.meeting_service import append_transcripts, get_meeting
from meeting_lifecycle.services.session_registry import start_or_join

from tests.helpers import lines


class _Probe:
    def __init__(self, count: int = 0, fail: bool = False) -> None:
        self.count = count
        self.fail = fail

    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        if self.fail:
            raise ProviderError(ErrCode.TRANSPORT_PROVIDER_ERROR, "down")
        return RoomOccupancy(room_name=room_name, participant_count=self.count)


def _event(event: str, identity: str | None = None, event_id: str = "EV_1") -> WebhookEvent:
    return WebhookEvent(
        id=event_id, event=event, room_name="standup-1", participant_identity=identity
    )


def test_last_participant_left_finalizes(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    append_transcripts(s1, lines(("alice", "bye")))

    outcome = handle_webhook(_event("participant_left", "alice"), probe=_Probe(count=5))
    assert outcome.action == "finalized"
    assert outcome.meeting_id == s1
    assert get_meeting(s1).status == MeetingStatus.ended


def test_participant_left_with_others_consults_transport(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    start_or_join("standup-1", "bob")

    kept = handle_webhook(_event("participant_left", "alice", "EV_1"), probe=_Probe(count=1))
    assert kept.action == "ignored"
    assert get_meeting(s1).status == MeetingStatus.active

    # bob пропал без leave, транспорт говорит: комната пуста
    append_transcripts(s1, lines(("bob", "x")))
    gone = handle_webhook(_event("participant_left", "carol", "EV_2"), probe=_Probe(count=0))
    assert gone.action == "finalized"
    assert get_meeting(s1).status == MeetingStatus.ended


def test_probe_error_keeps_session(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    start_or_join("standup-1", "bob")
    outcome = handle_webhook(_event("participant_left", "alice"), probe=_Probe(fail=True))
    assert outcome.action == "ignored"
    assert get_meeting(s1).status == MeetingStatus.active


def test_room_finished_forces_finalize(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    start_or_join("standup-1", "bob")
    append_transcripts(s1, lines(("alice", "x")))

    outcome = handle_webhook(_event("room_finished"), probe=_Probe())
    assert outcome.action == "finalized"
    assert get_meeting(s1).status == MeetingStatus.ended


def test_duplicate_delivery_is_ignored(room) -> None:
    start_or_join("standup-1", "alice")
    start_or_join("standup-1", "bob")

    first = handle_webhook(_event("participant_left", "alice"), probe=_Probe(count=1))
    dup = handle_webhook(_event("participant_left", "alice"), probe=_Probe(count=1))
    assert first.duplicate is False
    assert dup.duplicate is True
    assert dup.action == "duplicate"


def test_failed_handling_releases_dedupe_key(monkeypatch, room) -> None:
    start_or_join("standup-1", "alice")

    def boom(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr("meeting_lifecycle.services.livekit_events.handle_participant_left", boom)
    with pytest.raises(RuntimeError):
        handle_webhook(_event("participant_left", "alice"), probe=_Probe())

    monkeypatch.undo()
    retry = handle_webhook(_event("participant_left", "alice"), probe=_Probe())
    assert retry.duplicate is False
    assert retry.action == "deleted"


def test_informational_events() -> None:
    assert handle_event(_event("participant_joined", "alice"), probe=_Probe()).action == "logged"
    assert handle_event(_event("track_published"), probe=_Probe()).action == "unhandled"
    assert handle_event(_event("participant_left"), probe=_Probe()).action == "ignored"


def test_event_for_room_without_session(room) -> None:
    outcome = handle_webhook(_event("room_finished"), probe=_Probe())
    assert outcome.action == "no_session"
