"""
Детерминированный LLM для тестов и локального запуска.

Summary собирается из самого транскрипта в user-промпте ("[HH:MM] speaker: text"),
поэтому результат зависит от входа, а не от сети.
"""

from __future__ import annotations

import json
import re

_LINE_RE = re.compile(r"^\[\d{2}:\d{2}\] (?P<speaker>[^:]+): (?P<text>.+)$")
_ACTION_MARKERS = ("todo", "will ", "need to", "action:")
_DECISION_MARKERS = ("decided", "agreed", "decision:")


class MockLLMProvider:
    name = "mock"

    def complete_text(self, *, system: str, user: str) -> str:
        parsed = [m for m in map(_LINE_RE.match, user.splitlines()) if m]
        speakers = sorted({m["speaker"] for m in parsed})

        key_points: list[str] = []
        actions: list[dict] = []
        decisions: list[str] = []
        for m in parsed:
            text = m["text"].strip()
            low = text.lower()
            if any(k in low for k in _ACTION_MARKERS):
                actions.append({"title": text, "owner": m["speaker"], "priority": "MEDIUM"})
            elif any(k in low for k in _DECISION_MARKERS):
                decisions.append(text)
            elif len(key_points) < 3:
                key_points.append(text)

        return json.dumps(
            {
                "content": f"Discussion of {len(parsed)} lines between {', '.join(speakers)}.",
                "keyPoints": key_points,
                "actionItems": actions,
                "decisions": decisions,
            },
            ensure_ascii=False,
        )
