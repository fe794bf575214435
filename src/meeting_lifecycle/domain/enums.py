"""
Доменные перечисления (enum).

Используются во всей системе:
- статус сессии встречи
- статус пост-обработки (summary)
- статус подписки аккаунта (квота)
"""

from __future__ import annotations

import enum


class MeetingStatus(str, enum.Enum):
    """
    Статус сессии встречи. Переходы только вперёд: active -> ending -> ended.
    """

    active = "active"
    ending = "ending"
    ended = "ended"


class ProcessingStatus(str, enum.Enum):
    """
    Статус асинхронной пост-обработки завершённой сессии.
    """

    none = "none"
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class SubscriptionStatus(str, enum.Enum):
    none = "none"
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    canceled = "canceled"


class FinalizeTrigger(str, enum.Enum):
    """
    Источник сигнала завершения (для логов и метрик).
    """

    end_request = "end_request"
    participant_left = "participant_left"
    occupancy_signal = "occupancy_signal"
    room_finished = "room_finished"
    reconciliation = "reconciliation"
