"""
LLM через OpenAI-compatible /chat/completions (OpenAI, vLLM, LM Studio и т.п.).

429 и 5xx считаются временными (retryable), прочие 4xx нет.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.logging import get_project_logger

from .base import llm_error

log = get_project_logger("llm")


@dataclass(frozen=True)
class OpenAICompatConfig:
    api_base: str
    api_key: str
    model: str
    temperature: float
    timeout_s: float

    @property
    def url(self) -> str:
        return self.api_base.rstrip("/") + "/chat/completions"


class OpenAICompatProvider:
    name = "openai_compat"

    def __init__(self, cfg: OpenAICompatConfig, *, http: requests.Session | None = None) -> None:
        self.cfg = cfg
        self._http = http or requests.Session()
        self._http.headers.update({"Authorization": f"Bearer {cfg.api_key}"})

    @classmethod
    def from_settings(cls) -> OpenAICompatProvider:
        s = get_settings()
        required = {"OPENAI_API_BASE": s.openai_api_base, "OPENAI_API_KEY": s.openai_api_key}
        missing = [env for env, value in required.items() if not value]
        if missing:
            raise llm_error("LLM не сконфигурирован", retryable=False, missing=missing)
        return cls(
            OpenAICompatConfig(
                api_base=str(s.openai_api_base),
                api_key=str(s.openai_api_key),
                model=s.llm_model_id,
                temperature=float(s.llm_temperature),
                timeout_s=float(s.llm_request_timeout_sec),
            )
        )

    def _request_body(self, system: str, user: str) -> dict[str, Any]:
        return {
            "model": self.cfg.model,
            "temperature": self.cfg.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

    def complete_text(self, *, system: str, user: str) -> str:
        try:
            resp = self._http.post(
                self.cfg.url, json=self._request_body(system, user), timeout=self.cfg.timeout_s
            )
        except requests.RequestException as e:
            log.warning(
                "llm_http_error",
                extra={"payload": {"model": self.cfg.model, "err": str(e)[:300]}},
            )
            raise llm_error("LLM недоступен", retryable=True, err=str(e)[:300]) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise llm_error("LLM временно недоступен", retryable=True, status=resp.status_code)
        if resp.status_code >= 400:
            raise llm_error(
                "LLM отклонил запрос",
                retryable=False,
                status=resp.status_code,
                text_head=resp.text[:300],
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise llm_error(
                "Неожиданный формат ответа LLM", retryable=False, text_head=resp.text[:300]
            ) from e
        if not isinstance(content, str):
            raise llm_error("Пустой ответ LLM", retryable=False)
        return content
