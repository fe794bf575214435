from __future__ import annotations

import pytest
import redis

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError, ErrCode
from meeting_lifecycle.queue.idempotency import InlineKeyStore, check_and_set, release


@pytest.fixture()
def queue_mode(monkeypatch):
    def _set(mode: str) -> None:
        monkeypatch.setattr(get_settings(), "queue_mode", mode)

    return _set


def test_check_and_set_inline_mode(queue_mode) -> None:
    queue_mode("inline")
    assert check_and_set("scope", "m-1", "k-1") is True
    assert check_and_set("scope", "m-1", "k-1") is False
    assert check_and_set("scope", "m-2", "k-1") is True


def test_release_allows_reprocessing(queue_mode) -> None:
    queue_mode("inline")
    assert check_and_set("scope", "m-1", "k-2") is True
    release("scope", "m-1", "k-2")
    assert check_and_set("scope", "m-1", "k-2") is True


def test_inline_store_purges_expired_keys(monkeypatch) -> None:
    clock = [100.0]
    monkeypatch.setattr("meeting_lifecycle.queue.idempotency.time.monotonic", lambda: clock[0])
    store = InlineKeyStore(purge_threshold=2)
    assert store.add("a", 10)
    assert store.add("b", 10)
    clock[0] = 200.0
    # просроченный ключ снова принимается
    assert store.add("a", 10)
    assert store.add("c", 10)
    assert set(store._expires) == {"a", "c"}


class _FakeRedis:
    def __init__(self, *, down: bool = False) -> None:
        self.keys: dict[str, str] = {}
        self.ttl: dict[str, int] = {}
        self.down = down

    def set(self, *, name: str, value: str, nx: bool, ex: int):
        if self.down:
            raise redis.ConnectionError("connection refused")
        if nx and name in self.keys:
            return None
        self.keys[name] = value
        self.ttl[name] = ex
        return True

    def delete(self, key: str) -> int:
        return 1 if self.keys.pop(key, None) is not None else 0


def test_check_and_set_redis_mode(queue_mode, monkeypatch) -> None:
    fake = _FakeRedis()
    queue_mode("redis")
    monkeypatch.setattr("meeting_lifecycle.queue.idempotency.redis_client", lambda: fake)

    assert check_and_set("livekit_webhook", "room", "evt-1", ttl_sec=60) is True
    assert check_and_set("livekit_webhook", "room", "evt-1", ttl_sec=60) is False
    assert fake.ttl["idem:livekit_webhook:room:evt-1"] == 60

    release("livekit_webhook", "room", "evt-1")
    assert "idem:livekit_webhook:room:evt-1" not in fake.keys


def test_redis_outage_is_app_error(queue_mode, monkeypatch) -> None:
    queue_mode("redis")
    monkeypatch.setattr(
        "meeting_lifecycle.queue.idempotency.redis_client", lambda: _FakeRedis(down=True)
    )
    with pytest.raises(AppError) as ei:
        check_and_set("livekit_webhook", "room", "evt-1")
    assert ei.value.code == ErrCode.REDIS_ERROR
