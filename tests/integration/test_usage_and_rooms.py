from __future__ import annotations

import pytest

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import (
    ConflictError,
    NotFoundError,
    UsageLimitError,
    ValidationError,
)
from meeting_lifecycle.domain.enums import MeetingStatus, SubscriptionStatus
from meeting_lifecycle.services.finalize_service import EndPayload, finalize
from meeting_lifecycle.services.meeting_service import (
    append_transcripts,
    create_room,
    get_active_meeting,
    list_history,
    list_rooms,
)
from meeting_lifecycle.services.session_registry import start_or_join
from meeting_lifecycle.services.usage_service import get_usage
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.models import Account
from meeting_lifecycle.storage.repositories import AccountRepository

from tests.helpers import lines


@pytest.fixture()
def limit_two(monkeypatch):
    s = get_settings()
    monkeypatch.setattr(s, "usage_limits_enabled", True)
    monkeypatch.setattr(s, "meeting_monthly_limit_free", 2)
    return s


def _run_session(room_name: str, account_id: str | None = "acc_1") -> str:
    s = start_or_join(room_name, "alice", account_id=account_id).meeting_id
    finalize(s, EndPayload(transcripts=lines(("alice", "x"))))
    return s


def test_free_plan_limit_blocks_new_sessions(limit_two, room) -> None:
    _run_session("standup-1")
    _run_session("standup-1")

    usage = get_usage("acc_1")
    assert usage.plan == "free"
    assert usage.current_count == 2
    assert usage.remaining == 0
    assert usage.exceeded is True

    with pytest.raises(UsageLimitError):
        start_or_join("standup-1", "alice", account_id="acc_1")


def test_limit_does_not_block_joining_open_session(limit_two, room) -> None:
    _run_session("standup-1")
    start_or_join("standup-1", "alice", account_id="acc_1")
    # квота исчерпана, но присоединение к открытой сессии разрешено
    res = start_or_join("standup-1", "bob", account_id="acc_1")
    assert res.was_newly_created is False


def test_active_subscription_is_unlimited(limit_two, room) -> None:
    with db_session() as session:
        AccountRepository(session).save(
            Account(id="acc_1", name="Acme", subscription_status=SubscriptionStatus.active)
        )
    for _ in range(3):
        _run_session("standup-1")
    usage = get_usage("acc_1")
    assert usage.unlimited is True
    assert usage.limit is None


def test_service_caller_skips_quota(limit_two, room) -> None:
    for _ in range(3):
        _run_session("standup-1", account_id=None)


def test_create_room_duplicate_conflicts(room) -> None:
    with pytest.raises(ConflictError):
        create_room(room_name="standup-1", title="Again", owner_id="acc_2")


def test_list_rooms_by_owner(room) -> None:
    create_room(room_name="retro", title="Retro", owner_id="acc_1")
    create_room(room_name="other", title="Other", owner_id="acc_2")
    assert {r.room_name for r in list_rooms("acc_1")} == {"standup-1", "retro"}


def test_append_transcripts_rules(monkeypatch, room) -> None:
    s1 = start_or_join("standup-1", "alice").meeting_id
    assert append_transcripts(s1, lines(("alice", "a"), ("alice", "b"))) == 2
    assert append_transcripts(s1, []) == 0

    monkeypatch.setattr(get_settings(), "transcript_append_max_batch", 1)
    with pytest.raises(ValidationError):
        append_transcripts(s1, lines(("a", "1"), ("a", "2")))
    monkeypatch.undo()

    finalize(s1)
    with pytest.raises(ConflictError):
        append_transcripts(s1, lines(("alice", "late")))
    with pytest.raises(NotFoundError):
        append_transcripts("mtg_missing", lines(("alice", "x")))


def test_history_lists_ended_sessions_newest_first(room) -> None:
    first = _run_session("standup-1")
    second = _run_session("standup-1")
    start_or_join("standup-1", "alice")

    history = list_history("standup-1")
    assert [m.meeting_id for m in history] == [second, first]
    assert all(m.status == MeetingStatus.ended for m in history)

    active = get_active_meeting("standup-1")
    assert active is not None
    assert active.status == MeetingStatus.active
