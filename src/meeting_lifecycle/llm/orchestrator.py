"""
Вызов LLM с ретраями и разбором JSON-ответа.

Повторяются только временные ошибки (см. base.is_retryable); ответ в
```json ... ``` ограждении тоже принимается.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ProviderError
from meeting_lifecycle.common.logging import get_project_logger

from .base import LLMProvider, is_retryable, llm_error

log = get_project_logger("llm")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL)


def parse_json_object(text: str) -> dict[str, Any]:
    body = (text or "").strip()
    fenced = _FENCE_RE.match(body)
    if fenced:
        body = fenced["body"]
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise llm_error("LLM вернул невалидный JSON", retryable=False, text_head=body[:300]) from e
    if not isinstance(data, dict):
        raise llm_error("LLM вернул JSON не-объект", retryable=False, text_head=body[:300])
    return data


class LLMOrchestrator:
    def __init__(
        self, provider: LLMProvider, *, retries: int | None = None, backoff_ms: int | None = None
    ) -> None:
        s = get_settings()
        self.provider = provider
        self.retries = max(0, int(s.llm_retries if retries is None else retries))
        self.backoff_ms = max(0, int(s.llm_retry_backoff_ms if backoff_ms is None else backoff_ms))

    def complete_text(self, *, system: str, user: str) -> str:
        attempts = self.retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.provider.complete_text(system=system, user=user)
            except Exception as e:
                retry = is_retryable(e) and attempt < attempts
                log.warning(
                    "llm_attempt_failed",
                    extra={
                        "payload": {
                            "provider": getattr(self.provider, "name", "?"),
                            "attempt": attempt,
                            "retry": retry,
                            "err": str(e)[:200],
                        }
                    },
                )
                if not retry:
                    if isinstance(e, ProviderError):
                        raise
                    raise llm_error(
                        "LLM не ответил", retryable=False, attempts=attempt, err=str(e)[:200]
                    ) from e
                # линейный backoff: 1x, 2x, 3x ...
                time.sleep(self.backoff_ms * attempt / 1000.0)

    def complete_json(self, *, system: str, user: str) -> dict[str, Any]:
        return parse_json_object(self.complete_text(system=system, user=user))
