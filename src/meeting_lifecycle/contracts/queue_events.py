"""
Задачи очереди пост-обработки.

В stream уходит только ссылка на сессию и немного контекста для логов:
транскрипт к моменту постановки уже сохранён finalize, воркер читает его из БД.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from meeting_lifecycle.common.errors import ValidationError

from .versions import QUEUE_SCHEMA_VERSION, SUPPORTED_QUEUE_SCHEMAS


@dataclass
class PostprocessQueueEvent:
    event_id: str
    meeting_id: str
    room_name: str = ""
    transcript_count: int = 0
    participants: list[str] = field(default_factory=list)
    attempts: int = 0
    last_error: str | None = None
    schema_version: str = QUEUE_SCHEMA_VERSION
    queue: str = "postprocess"

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PostprocessQueueEvent:
        """
        Разбор задачи из stream. Битая задача -> ValidationError
        (воркер её ack-ает, повторять бессмысленно).
        """
        schema = payload.get("schema_version") or QUEUE_SCHEMA_VERSION
        if schema not in SUPPORTED_QUEUE_SCHEMAS:
            raise ValidationError("Неподдерживаемая версия задачи", {"schema_version": schema})
        meeting_id = str(payload.get("meeting_id") or "").strip()
        if not meeting_id:
            raise ValidationError("В задаче нет meeting_id")
        try:
            attempts = int(payload.get("attempts") or 0)
            transcript_count = int(payload.get("transcript_count") or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError("Некорректные числовые поля задачи") from e
        return cls(
            event_id=str(payload.get("event_id") or ""),
            meeting_id=meeting_id,
            room_name=str(payload.get("room_name") or ""),
            transcript_count=transcript_count,
            participants=[str(p) for p in payload.get("participants") or []],
            attempts=attempts,
            last_error=payload.get("last_error"),
            schema_version=schema,
        )
