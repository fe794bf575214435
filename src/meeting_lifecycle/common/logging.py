"""
Логирование сервисов жизненного цикла встреч.

Все процессы (api-gateway, воркеры) пишут в stdout одной строкой на событие.
Формат выбирается LOG_FORMAT: json для прода, text для локального запуска.
Имя события передаётся сообщением, поля события через extra={"payload": {...}}.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from meeting_lifecycle.common.config import get_settings

ROOT_LOGGER = "meeting-lifecycle"

# шумные библиотечные логгеры, которым хватает WARNING
_QUIET_LOGGERS = ("sqlalchemy.engine", "urllib3", "httpx", "alembic.runtime.migration")


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись; service/env берутся из настроек процесса."""

    def __init__(self, *, service: str, env: str) -> None:
        super().__init__()
        self._static = {"service": service, "env": env}

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        doc: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "event": record.getMessage(),
            "logger": record.name,
            **self._static,
        }
        fields = getattr(record, "payload", None)
        if isinstance(fields, dict) and fields:
            doc["payload"] = fields
        if record.exc_info and record.exc_info[0] is not None:
            doc["error_type"] = record.exc_info[0].__name__
            doc["traceback"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Человекочитаемый вариант: payload дописывается как key=value."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "payload", None)
        if isinstance(fields, dict) and fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def setup_logging(*, service: str | None = None) -> None:
    s = get_settings()
    level = logging.getLevelName((s.log_level or "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    # повторный вызов (uvicorn --reload, тесты) не добавляет второй handler
    if any(getattr(h, "_meeting_lifecycle", False) for h in root.handlers):
        return

    if (s.log_format or "").strip().lower() == "text":
        formatter: logging.Formatter = TextFormatter()
    else:
        formatter = JsonFormatter(service=service or s.service_name, env=s.app_env)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._meeting_lifecycle = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_project_logger(component: str | None = None) -> logging.Logger:
    """
    get_project_logger() -> "meeting-lifecycle",
    get_project_logger("llm") -> "meeting-lifecycle.llm".
    """
    if not component:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
