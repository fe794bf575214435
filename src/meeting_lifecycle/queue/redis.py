"""
Подключение к Redis (streams пост-обработки, ключи идемпотентности вебхуков).

Таймауты короткие: недоступный Redis должен быстро превращаться в ошибку
постановки задачи, а не подвешивать finalize.
"""

from __future__ import annotations

from functools import lru_cache

import redis

from meeting_lifecycle.common.config import get_settings


@lru_cache(maxsize=1)
def redis_client() -> redis.Redis:
    s = get_settings()
    timeout = float(s.redis_socket_timeout_sec)
    return redis.Redis.from_url(
        s.redis_url,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        health_check_interval=30,
    )
