from __future__ import annotations

from datetime import timedelta

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ErrCode, ProviderError
from meeting_lifecycle.common.time import utc_now
from meeting_lifecycle.connectors.base import RoomOccupancy
from meeting_lifecycle.domain.enums import MeetingStatus, ProcessingStatus
from meeting_lifecycle.jobs.reconciliation_job import run
from meeting_lifecycle.services.finalize_service import EndPayload, finalize
from meeting_lifecycle.services.meeting_service import append_transcripts, create_room, get_meeting
from meeting_lifecycle.services.session_registry import start_or_join
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.repositories import MeetingRepository

from tests.helpers import lines


class _Probe:
    def __init__(self, counts: dict[str, int] | None = None, failing: set[str] | None = None) -> None:
        self.counts = counts or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    def room_occupancy(self, room_name: str) -> RoomOccupancy:
        self.calls.append(room_name)
        if room_name in self.failing:
            raise ProviderError(ErrCode.TRANSPORT_PROVIDER_ERROR, "livekit down")
        return RoomOccupancy(room_name=room_name, participant_count=self.counts.get(room_name, 0))


def _later():
    return utc_now() + timedelta(hours=1)


def test_stale_ending_is_completed(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    append_transcripts(s1, lines(("alice", "before crash")))
    with db_session() as session:
        MeetingRepository(session).claim_for_finalize(s1, at=utc_now())

    res = run(probe=_Probe(), now=_later())
    assert res.stale_ending == 1
    assert res.failed == 0
    view = get_meeting(s1)
    assert view.status == MeetingStatus.ended
    assert view.processing_status == ProcessingStatus.completed


def test_fresh_sessions_are_left_alone(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    probe = _Probe()
    res = run(probe=probe)
    assert res.scanned == 0
    assert probe.calls == []
    assert get_meeting(s1).status == MeetingStatus.active


def test_abandoned_empty_room_is_finalized(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    start_or_join("standup-1", "bob")
    append_transcripts(s1, lines(("bob", "gone without leave")))

    res = run(probe=_Probe({"standup-1": 0}), now=_later())
    assert res.abandoned == 1
    assert get_meeting(s1).status == MeetingStatus.ended


def test_occupied_room_is_kept(room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    res = run(probe=_Probe({"standup-1": 2}), now=_later())
    assert res.occupied == 1
    assert res.abandoned == 0
    assert get_meeting(s1).status == MeetingStatus.active


def test_probe_failure_isolated_per_session(room) -> None:
    create_room(room_name="retro", title="Retro", owner_id="acc_1")
    s1 = start_or_join("standup-1", "alice").meeting_id
    s2 = start_or_join("retro", "bob").meeting_id
    append_transcripts(s2, lines(("bob", "retro notes")))

    res = run(probe=_Probe(failing={"standup-1"}), now=_later())
    assert res.failed == 1
    assert res.abandoned == 1
    assert get_meeting(s1).status == MeetingStatus.active
    assert get_meeting(s2).status == MeetingStatus.ended


def test_probe_failure_can_force(monkeypatch, room) -> None:
    monkeypatch.setattr(get_settings(), "reconcile_force_on_probe_error", True)
    s1 = start_or_join("standup-1", "alice").meeting_id
    append_transcripts(s1, lines(("alice", "x")))

    res = run(probe=_Probe(failing={"standup-1"}), now=_later())
    assert res.abandoned == 1
    assert get_meeting(s1).status == MeetingStatus.ended


def test_pending_postprocessing_is_redispatched(monkeypatch, room) -> None:
    def boom(meeting_id: str) -> str:
        raise RuntimeError("queue down")

    monkeypatch.setattr("meeting_lifecycle.services.postprocessing.process_meeting", boom)
    s1 = start_or_join("standup-1", "alice").meeting_id
    finalize(s1, EndPayload(transcripts=lines(("alice", "x"))))
    assert get_meeting(s1).processing_status == ProcessingStatus.pending

    monkeypatch.undo()
    res = run(probe=_Probe(), now=_later())
    assert res.redispatched == 1
    assert get_meeting(s1).processing_status == ProcessingStatus.completed


def test_disabled_job_returns_none(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "reconciliation_enabled", False)
    assert run(probe=_Probe()) is None


def _ended_without_summary(monkeypatch) -> str:
    def boom(meeting_id: str) -> str:
        raise RuntimeError("queue down")

    monkeypatch.setattr("meeting_lifecycle.services.postprocessing.process_meeting", boom)
    s1 = start_or_join("standup-1", "alice").meeting_id
    finalize(s1, EndPayload(transcripts=lines(("alice", "x"))))
    monkeypatch.undo()
    return s1


def _claim(meeting_id: str, *, fail: bool) -> None:
    with db_session() as session:
        repo = MeetingRepository(session)
        assert repo.claim_processing(meeting_id, at=utc_now()) == 1
        if fail:
            repo.fail_processing(meeting_id, error="llm down")


def test_stuck_processing_is_expired_and_retried(monkeypatch, room) -> None:
    s1 = _ended_without_summary(monkeypatch)
    _claim(s1, fail=False)

    fresh = run(probe=_Probe())
    assert fresh.stale_processing == 0
    assert get_meeting(s1).processing_status == ProcessingStatus.processing

    res = run(probe=_Probe(), now=_later())
    assert res.stale_processing == 1
    assert res.failed == 0
    assert get_meeting(s1).processing_status == ProcessingStatus.completed


def test_failed_processing_below_cap_is_retried(monkeypatch, room) -> None:
    s1 = _ended_without_summary(monkeypatch)
    _claim(s1, fail=True)
    assert get_meeting(s1).processing_status == ProcessingStatus.failed

    res = run(probe=_Probe(), now=_later())
    assert res.stale_processing == 1
    assert get_meeting(s1).processing_status == ProcessingStatus.completed


def test_failed_processing_at_cap_is_left_alone(monkeypatch, room) -> None:
    s1 = _ended_without_summary(monkeypatch)
    for _ in range(get_settings().postprocess_max_attempts):
        _claim(s1, fail=True)

    res = run(probe=_Probe(), now=_later())
    assert res.stale_processing == 0
    assert res.scanned == 0
    assert get_meeting(s1).processing_status == ProcessingStatus.failed


def test_stuck_processing_at_cap_becomes_failed(monkeypatch, room) -> None:
    s1 = _ended_without_summary(monkeypatch)
    for _ in range(get_settings().postprocess_max_attempts - 1):
        _claim(s1, fail=True)
    _claim(s1, fail=False)

    res = run(probe=_Probe(), now=_later())
    assert res.stale_processing == 0
    assert res.failed == 1
    with db_session() as session:
        meeting = MeetingRepository(session).get(s1)
        assert meeting.processing_status == ProcessingStatus.failed
        assert meeting.processing_error == "processing timed out"
