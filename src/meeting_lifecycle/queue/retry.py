"""
Повтор упавших задач пост-обработки.

Задача переставляется в конец stream с attempts+1; исчерпав попытки,
уходит в <queue>:dlq вместе с последней ошибкой.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.contracts.queue_events import PostprocessQueueEvent

from .streams import enqueue, stream_dlq_name

log = get_project_logger()


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_sec: float = 1.0
    max_backoff_sec: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Экспоненциальная пауза перед попыткой attempt (1, 2, 4 ... * backoff_sec)."""
        if self.backoff_sec <= 0:
            return 0.0
        return min(self.max_backoff_sec, self.backoff_sec * 2 ** max(0, attempt - 1))


def requeue_or_dead_letter(
    queue_name: str,
    event: PostprocessQueueEvent,
    policy: RetryPolicy,
    *,
    error: str | None = None,
) -> bool:
    """
    True, если задача снова в очереди; False, если она отправлена в DLQ.
    Ошибка Redis пробрасывается: вызывающий не должен ack-ать исходную запись.
    """
    event.attempts += 1
    event.last_error = (error or "")[:300] or None
    fields = {
        "queue": queue_name,
        "meeting_id": event.meeting_id,
        "attempts": event.attempts,
        "max_attempts": policy.max_attempts,
    }

    if event.attempts >= policy.max_attempts:
        enqueue(stream_dlq_name(queue_name), event.to_payload())
        log.warning("task_dead_lettered", extra={"payload": {**fields, "err": event.last_error}})
        return False

    delay = policy.delay_for(event.attempts)
    if delay:
        time.sleep(delay)
    enqueue(queue_name, event.to_payload())
    log.warning("task_requeued", extra={"payload": {**fields, "delay_sec": delay}})
    return True
