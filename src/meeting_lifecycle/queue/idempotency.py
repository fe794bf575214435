"""
Дедупликация повторных доставок (webhook LiveKit шлёт одно событие до
нескольких раз).

Ключ idem:<scope>:<entity>:<key> ставится SET NX EX в Redis; в
QUEUE_MODE=inline хранится в памяти процесса. Ключ только отсекает дубли:
обработчики сами идемпотентны (условные UPDATE), поэтому при ошибке
обработки ключ снимается через release().
"""

from __future__ import annotations

import threading
import time

import redis

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError, ErrCode

from .redis import redis_client

DEFAULT_TTL_SEC = 24 * 60 * 60


class InlineKeyStore:
    """SET NX с TTL в памяти процесса; просроченные ключи чистятся при росте."""

    def __init__(self, purge_threshold: int = 20_000) -> None:
        self._expires: dict[str, float] = {}
        self._lock = threading.Lock()
        self._purge_threshold = purge_threshold

    def add(self, key: str, ttl_sec: int) -> bool:
        now = time.monotonic()
        with self._lock:
            if self._expires.get(key, 0.0) > now:
                return False
            self._expires[key] = now + max(1, ttl_sec)
            if len(self._expires) > self._purge_threshold:
                self._expires = {k: exp for k, exp in self._expires.items() if exp > now}
            return True

    def discard(self, key: str) -> None:
        with self._lock:
            self._expires.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._expires.clear()


_inline_keys = InlineKeyStore()


def _key(scope: str, entity_id: str, idem_key: str) -> str:
    return f"idem:{scope}:{entity_id}:{idem_key}"


def _inline() -> bool:
    return (get_settings().queue_mode or "").strip().lower() == "inline"


def _redis_unavailable(e: redis.RedisError) -> AppError:
    return AppError(ErrCode.REDIS_ERROR, "Redis недоступен", {"err": str(e)[:200]})


def check_and_set(
    scope: str, entity_id: str, idem_key: str, ttl_sec: int = DEFAULT_TTL_SEC
) -> bool:
    """True: ключ новый, событие нужно обработать. False: дубль."""
    key = _key(scope, entity_id, idem_key)
    if _inline():
        return _inline_keys.add(key, int(ttl_sec))
    try:
        return bool(redis_client().set(name=key, value="1", nx=True, ex=int(ttl_sec)))
    except redis.RedisError as e:
        raise _redis_unavailable(e) from e


def release(scope: str, entity_id: str, idem_key: str) -> None:
    key = _key(scope, entity_id, idem_key)
    if _inline():
        _inline_keys.discard(key)
        return
    try:
        redis_client().delete(key)
    except redis.RedisError as e:
        raise _redis_unavailable(e) from e


def reset_inline_keys() -> None:
    _inline_keys.clear()
