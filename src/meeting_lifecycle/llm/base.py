"""
Контракт LLM-провайдера для summary встречи.

Провайдер получает system/user промпт и возвращает сырой текст ответа.
Разбор JSON, ретраи и fallback живут выше (orchestrator, processing.summary).
"""

from __future__ import annotations

from typing import Protocol

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ErrCode, ProviderError


class LLMProvider(Protocol):
    name: str

    def complete_text(self, *, system: str, user: str) -> str: ...


def llm_error(message: str, *, retryable: bool, **details) -> ProviderError:
    """ProviderError с признаком retryable, который читает orchestrator."""
    return ProviderError(ErrCode.LLM_PROVIDER_ERROR, message, {"retryable": retryable, **details})


def is_retryable(err: Exception) -> bool:
    if isinstance(err, ProviderError):
        return bool((err.details or {}).get("retryable", False))
    # неизвестные ошибки провайдера (таймауты сокета и т.п.) пробуем повторить
    return True


def build_provider() -> LLMProvider:
    provider = (get_settings().llm_provider or "").strip().lower()
    if provider == "mock":
        from .mock import MockLLMProvider

        return MockLLMProvider()
    if provider == "openai_compat":
        from .openai_compat import OpenAICompatProvider

        return OpenAICompatProvider.from_settings()
    raise llm_error("Неизвестный LLM_PROVIDER", retryable=False, provider=provider)
