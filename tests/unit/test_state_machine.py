from meeting_lifecycle.domain.enums import MeetingStatus
from meeting_lifecycle.domain.state_machine import is_open, next_status_after, transition


def test_transition_active_to_ending():
    r = transition(MeetingStatus.active, MeetingStatus.ending)
    assert r.ok is True
    assert r.status == MeetingStatus.ending


def test_transition_ending_to_ended():
    r = transition(MeetingStatus.ending, MeetingStatus.ended)
    assert r.ok is True
    assert r.status == MeetingStatus.ended


def test_transition_backward_rejected():
    r = transition(MeetingStatus.ended, MeetingStatus.active)
    assert r.ok is False
    assert r.status == MeetingStatus.ended
    assert r.reason == "backward_transition"


def test_transition_skip_rejected():
    r = transition(MeetingStatus.active, MeetingStatus.ended)
    assert r.ok is False
    assert r.reason == "skip_transition"


def test_transition_same_status_is_noop():
    r = transition(MeetingStatus.ending, MeetingStatus.ending)
    assert r.ok is False
    assert r.reason == "already_in_status"


def test_next_status_and_open():
    assert next_status_after(MeetingStatus.active) == MeetingStatus.ending
    assert next_status_after(MeetingStatus.ended) is None
    assert is_open(MeetingStatus.active) is True
    assert is_open(MeetingStatus.ending) is True
    assert is_open(MeetingStatus.ended) is False
