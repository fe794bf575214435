"""
Итоговое summary завершённой сессии.

Формат результата:
- content: str
- keyPoints: list[str]
- actionItems: list[dict]
- decisions: list[str]
- generatedAt: ISO UTC

Важно:
- При LLM_ENABLED=false или ошибке LLM модуль возвращает fallback summary
- LLM импортируется лениво
"""

from __future__ import annotations

from typing import Any

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import AppError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.time import utc_now_iso

from .transcripts import TranscriptLine, format_for_prompt

log = get_project_logger()

SYSTEM_PROMPT = """You are a meeting analysis assistant. Analyze the transcript and return JSON:
- content: 2-3 sentence overall summary
- keyPoints: list of the main discussion points
- actionItems: list of {title, owner, priority, dueDate, context}
- decisions: list of decisions made
Use only facts present in the transcript. Reply with JSON only."""


def _build_orchestrator():
    """
    Ленивая сборка orchestrator, чтобы сервисы работали без LLM-зависимостей,
    пока LLM выключен.
    """
    s = get_settings()
    if not s.llm_enabled:
        return None

    from meeting_lifecycle.llm.base import build_provider
    from meeting_lifecycle.llm.orchestrator import LLMOrchestrator

    return LLMOrchestrator(build_provider())


def fallback_summary(*, meeting_type: str, participants: list[str]) -> dict[str, Any]:
    return {
        "content": (
            f"{meeting_type} session with {len(participants)} participants completed."
        ),
        "keyPoints": [
            "Meeting completed",
            "Transcripts recorded for reference",
        ],
        "actionItems": [
            {
                "title": "Review meeting transcripts",
                "owner": "Unassigned",
                "priority": "MEDIUM",
                "dueDate": None,
                "context": "Follow up on meeting discussion",
            }
        ],
        "decisions": [],
        "generatedAt": utc_now_iso(),
        "fallback": True,
    }


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _as_action_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    items: list[dict[str, Any]] = []
    for v in value:
        if isinstance(v, dict) and str(v.get("title") or "").strip():
            items.append(
                {
                    "title": str(v["title"]).strip(),
                    "owner": v.get("owner") or "Unassigned",
                    "priority": str(v.get("priority") or "MEDIUM").upper(),
                    "dueDate": v.get("dueDate"),
                    "context": v.get("context"),
                }
            )
        elif isinstance(v, str) and v.strip():
            items.append(
                {
                    "title": v.strip(),
                    "owner": "Unassigned",
                    "priority": "MEDIUM",
                    "dueDate": None,
                    "context": None,
                }
            )
    return items


def normalize_summary(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "content": str(data.get("content") or "").strip(),
        "keyPoints": _as_str_list(data.get("keyPoints")),
        "actionItems": _as_action_items(data.get("actionItems")),
        "decisions": _as_str_list(data.get("decisions")),
        "generatedAt": utc_now_iso(),
    }


def build_summary(
    *,
    meeting_type: str,
    lines: list[TranscriptLine],
    participants: list[str],
) -> dict[str, Any]:
    if not lines:
        return fallback_summary(meeting_type=meeting_type, participants=participants)

    s = get_settings()
    user = (
        f"Meeting type: {meeting_type}\n"
        f"Participants: {', '.join(participants) or 'unknown'}\n\n"
        f"Transcript:\n{format_for_prompt(lines, max_chars=int(s.summary_max_transcript_chars))}"
    )
    try:
        orch = _build_orchestrator()
        if orch is None:
            return fallback_summary(meeting_type=meeting_type, participants=participants)
        data = orch.complete_json(system=SYSTEM_PROMPT, user=user)
    except AppError as e:
        log.warning(
            "summary_llm_failed",
            extra={"payload": {"code": e.code, "err": e.message, "details": e.details}},
        )
        return fallback_summary(meeting_type=meeting_type, participants=participants)

    summary = normalize_summary(data)
    if not summary["content"]:
        return fallback_summary(meeting_type=meeting_type, participants=participants)
    return summary
