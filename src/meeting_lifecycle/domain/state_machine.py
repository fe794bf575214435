"""
Машина состояний сессии встречи.

Назначение:
- Централизованные правила переходов active -> ending -> ended
- Никаких обратных переходов
- Основа для условных UPDATE в репозитории (WHERE status = <from>)
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import MeetingStatus


# =============================================================================
# РЕЗУЛЬТАТ ПЕРЕХОДА
# =============================================================================
@dataclass
class TransitionResult:
    ok: bool
    status: MeetingStatus
    reason: str | None = None


# =============================================================================
# ПОРЯДОК СТАТУСОВ
# =============================================================================
def _status_order() -> list[MeetingStatus]:
    return [MeetingStatus.active, MeetingStatus.ending, MeetingStatus.ended]


def next_status_after(current: MeetingStatus) -> MeetingStatus | None:
    """
    Следующий статус сессии (None для терминального ended).
    """
    order = _status_order()
    idx = order.index(current)
    return order[idx + 1] if idx + 1 < len(order) else None


def is_open(status: MeetingStatus) -> bool:
    """
    Сессия занимает комнату (active или ending).
    """
    return status in (MeetingStatus.active, MeetingStatus.ending)


# =============================================================================
# ПЕРЕХОД СОСТОЯНИЙ
# =============================================================================
def transition(current: MeetingStatus, target: MeetingStatus) -> TransitionResult:
    """
    Правила перехода:
    - разрешён только шаг на одну позицию вперёд
    - повтор того же статуса -> already_in_status (идемпотентный no-op)
    - всё остальное -> backward_transition / skip_transition
    """
    if current == target:
        return TransitionResult(ok=False, status=current, reason="already_in_status")

    order = _status_order()
    if order.index(target) < order.index(current):
        return TransitionResult(ok=False, status=current, reason="backward_transition")

    if next_status_after(current) != target:
        return TransitionResult(ok=False, status=current, reason="skip_transition")

    return TransitionResult(ok=True, status=target)
