"""
Постановка задач пост-обработки в Redis Streams.

Имена stream и consumer group общие для API (producer) и worker_postprocess.
"""

from __future__ import annotations

from meeting_lifecycle.common.ids import new_event_id
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.contracts.queue_events import PostprocessQueueEvent

from .streams import enqueue

log = get_project_logger()

Q_POSTPROCESS = "q:postprocess"
GROUP_POSTPROCESS = "g:postprocess"


def enqueue_postprocess(
    *,
    meeting_id: str,
    room_name: str,
    transcript_count: int,
    participants: list[str],
) -> str:
    """Возвращает event_id поставленной задачи; ошибка Redis пробрасывается."""
    event = PostprocessQueueEvent(
        event_id=new_event_id("pp"),
        meeting_id=meeting_id,
        room_name=room_name,
        transcript_count=transcript_count,
        participants=participants,
    )
    entry_id = enqueue(Q_POSTPROCESS, event.to_payload())
    log.info(
        "postprocess_enqueued",
        extra={
            "payload": {"meeting_id": meeting_id, "event_id": event.event_id, "entry_id": entry_id}
        },
    )
    return event.event_id
