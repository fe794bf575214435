"""
Утилиты времени.

Назначение:
- единый формат времени (ISO UTC)
- нормализация datetime из БД (SQLite отдаёт naive значения)
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime).
    """
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def as_utc(value: datetime | None) -> datetime | None:
    """
    Приводит datetime к aware UTC. Naive значения считаются UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def minutes_between(start: datetime, end: datetime) -> int:
    delta = as_utc(end) - as_utc(start)
    return max(0, round(delta.total_seconds() / 60))


def month_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Границы текущего календарного месяца в UTC: [начало, начало следующего).
    """
    ref = as_utc(now) if now is not None else utc_now()
    start = ref.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
