"""
Транскрипт сессии: нормализация, дедупликация, форматирование для LLM.

Дубликаты появляются, когда одну реплику присылают несколько клиентов
(каждый участник пишет свою копию транскрипта).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from meeting_lifecycle.common.time import as_utc

_WS_RE = re.compile(r"\s+")


@dataclass
class TranscriptLine:
    speaker: str
    text: str
    timestamp: datetime


def normalize_text(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip()).lower()


def dedupe_lines(lines: list[TranscriptLine], *, window_sec: int) -> list[TranscriptLine]:
    """
    Убирает пустые реплики и повторы (тот же спикер, тот же нормализованный
    текст в пределах window_sec). Результат отсортирован по времени.
    """
    ordered = sorted(
        (ln for ln in lines if (ln.text or "").strip()),
        key=lambda ln: as_utc(ln.timestamp),
    )
    last_seen: dict[tuple[str, str], datetime] = {}
    out: list[TranscriptLine] = []
    for ln in ordered:
        key = (ln.speaker, normalize_text(ln.text))
        ts = as_utc(ln.timestamp)
        prev = last_seen.get(key)
        if prev is not None and (ts - prev).total_seconds() <= window_sec:
            continue
        last_seen[key] = ts
        out.append(TranscriptLine(speaker=ln.speaker, text=ln.text.strip(), timestamp=ts))
    return out


def format_for_prompt(lines: list[TranscriptLine], *, max_chars: int) -> str:
    """
    "[HH:MM] speaker: text" построчно, с обрезкой до max_chars.
    """
    text = "\n".join(f"[{as_utc(ln.timestamp):%H:%M}] {ln.speaker}: {ln.text}" for ln in lines)
    if max_chars > 0 and len(text) > max_chars:
        return text[:max_chars] + "..."
    return text
