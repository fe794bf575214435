from __future__ import annotations

from datetime import UTC, datetime

import pytest

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import ErrCode, ProviderError
from meeting_lifecycle.llm.orchestrator import LLMOrchestrator
from meeting_lifecycle.processing.summary import build_summary, normalize_summary
from meeting_lifecycle.processing.transcripts import TranscriptLine

LINES = [
    TranscriptLine(speaker="alice", text="Ship on Friday", timestamp=datetime(2026, 3, 2, 10, tzinfo=UTC)),
    TranscriptLine(speaker="bob", text="Agreed", timestamp=datetime(2026, 3, 2, 10, 1, tzinfo=UTC)),
]


@pytest.fixture()
def llm_settings():
    s = get_settings()
    keys = ["llm_enabled", "llm_provider", "llm_retries", "llm_retry_backoff_ms"]
    snapshot = {k: getattr(s, k) for k in keys}
    try:
        s.llm_retries = 0
        s.llm_retry_backoff_ms = 0
        yield s
    finally:
        for k, v in snapshot.items():
            setattr(s, k, v)


def test_build_summary_with_mock_provider(llm_settings) -> None:
    llm_settings.llm_enabled = True
    llm_settings.llm_provider = "mock"
    summary = build_summary(meeting_type="Standup", lines=LINES, participants=["alice", "bob"])
    assert summary["content"] == "Discussion of 2 lines between alice, bob."
    assert summary["keyPoints"] == ["Ship on Friday"]
    assert summary["decisions"] == ["Agreed"]
    assert "fallback" not in summary
    assert summary["generatedAt"]


def test_build_summary_without_lines_is_fallback(llm_settings) -> None:
    summary = build_summary(meeting_type="Standup", lines=[], participants=["alice"])
    assert summary["fallback"] is True
    assert summary["content"] == "Standup session with 1 participants completed."


def test_build_summary_llm_disabled_is_fallback(llm_settings) -> None:
    llm_settings.llm_enabled = False
    summary = build_summary(meeting_type="Meeting", lines=LINES, participants=[])
    assert summary["fallback"] is True


def test_build_summary_unknown_provider_is_fallback(llm_settings) -> None:
    llm_settings.llm_enabled = True
    llm_settings.llm_provider = "nope"
    summary = build_summary(meeting_type="Meeting", lines=LINES, participants=["a"])
    assert summary["fallback"] is True


class _BrokenProvider:
    def __init__(self, text: str | None = None) -> None:
        self.text = text
        self.calls = 0

    def complete_text(self, *, system: str, user: str) -> str:
        self.calls += 1
        if self.text is None:
            raise RuntimeError("timeout")
        return self.text


def test_orchestrator_retries_then_raises(llm_settings) -> None:
    provider = _BrokenProvider()
    with pytest.raises(ProviderError) as ei:
        LLMOrchestrator(provider, retries=2).complete_json(system="s", user="u")
    assert ei.value.code == ErrCode.LLM_PROVIDER_ERROR
    assert provider.calls == 3


def test_orchestrator_rejects_non_object_json(llm_settings) -> None:
    with pytest.raises(ProviderError):
        LLMOrchestrator(_BrokenProvider("[1, 2]")).complete_json(system="s", user="u")


def test_llm_failure_falls_back(monkeypatch, llm_settings) -> None:
    llm_settings.llm_enabled = True
    monkeypatch.setattr(
        "meeting_lifecycle.llm.base.build_provider", lambda: _BrokenProvider("not json")
    )
    summary = build_summary(meeting_type="Meeting", lines=LINES, participants=["a"])
    assert summary["fallback"] is True


def test_normalize_summary_coerces_shapes() -> None:
    out = normalize_summary(
        {
            "content": "  ok ",
            "keyPoints": ["a", "", 3],
            "actionItems": ["call vendor", {"title": "draft", "priority": "high"}, {"x": 1}],
            "decisions": "not a list",
        }
    )
    assert out["content"] == "ok"
    assert out["keyPoints"] == ["a", "3"]
    assert [a["title"] for a in out["actionItems"]] == ["call vendor", "draft"]
    assert out["actionItems"][1]["priority"] == "HIGH"
    assert out["actionItems"][0]["owner"] == "Unassigned"
    assert out["decisions"] == []
