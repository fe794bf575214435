"""
Redis Streams: постановка, чтение через consumer group, ack.

Назначение:
- payload кладётся в поле "payload" как JSON
- consumer group создаётся лениво (MKSTREAM)
- DLQ для stream — отдельный stream <queue>:dlq
- записи без ack (воркер упал, requeue не удался) забираются XAUTOCLAIM
"""

from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass
from typing import Any

import redis

from meeting_lifecycle.common.logging import get_project_logger

from .redis import redis_client

log = get_project_logger()
_GROUPS_READY: set[tuple[str, str]] = set()


@dataclass
class StreamMessage:
    entry_id: str
    payload: dict[str, Any]


def stream_dlq_name(stream: str) -> str:
    return f"{stream}:dlq"


def consumer_name(service: str) -> str:
    return f"{service}:{socket.gethostname()}:{os.getpid()}"


def enqueue(stream: str, payload: dict[str, Any]) -> str:
    """
    XADD задачи. Возвращает entry_id.
    """
    r = redis_client()
    return str(r.xadd(stream, {"payload": json.dumps(payload, ensure_ascii=False)}))


def ensure_group(stream: str, group: str) -> None:
    if (stream, group) in _GROUPS_READY:
        return
    r = redis_client()
    try:
        r.xgroup_create(name=stream, groupname=group, id="0", mkstream=True)
        log.info("stream_group_created", extra={"payload": {"stream": stream, "group": group}})
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise
    _GROUPS_READY.add((stream, group))


def _to_message(stream: str, entry_id, fields) -> StreamMessage:
    raw = (fields or {}).get("payload") or "{}"
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        log.warning(
            "stream_payload_invalid",
            extra={"payload": {"stream": stream, "entry_id": entry_id, "raw": raw[:200]}},
        )
        payload = {}
    return StreamMessage(entry_id=str(entry_id), payload=payload)


def _claim_idle(
    r, *, stream: str, group: str, consumer: str, idle_ms: int
) -> StreamMessage | None:
    """
    XAUTOCLAIM: забирает запись, которую другой consumer (или этот же) прочитал,
    но не ack-нул за idle_ms.
    """
    resp = r.xautoclaim(stream, group, consumer, min_idle_time=idle_ms, start_id="0-0", count=1)
    entries = resp[1] if resp and len(resp) > 1 else []
    for entry_id, fields in entries:
        if fields is None:
            # запись удалена из stream, в PEL остался только id
            r.xack(stream, group, entry_id)
            continue
        log.info(
            "stream_entry_reclaimed",
            extra={"payload": {"stream": stream, "entry_id": entry_id, "consumer": consumer}},
        )
        return _to_message(stream, entry_id, fields)
    return None


def read_task(
    *,
    stream: str,
    group: str,
    consumer: str,
    block_ms: int = 5000,
    claim_idle_ms: int | None = None,
) -> StreamMessage | None:
    """
    Одна задача группы: сначала зависшая в PEL дольше claim_idle_ms (если задан),
    затем новая. None, если за block_ms ничего не пришло.
    """
    ensure_group(stream, group)
    r = redis_client()
    if claim_idle_ms:
        reclaimed = _claim_idle(
            r, stream=stream, group=group, consumer=consumer, idle_ms=int(claim_idle_ms)
        )
        if reclaimed is not None:
            return reclaimed

    resp = r.xreadgroup(group, consumer, {stream: ">"}, count=1, block=block_ms)
    if not resp:
        return None

    _stream, entries = resp[0]
    if not entries:
        return None
    entry_id, fields = entries[0]
    return _to_message(stream, entry_id, fields)


def ack_task(*, stream: str, group: str, entry_id: str) -> None:
    r = redis_client()
    r.xack(stream, group, entry_id)
