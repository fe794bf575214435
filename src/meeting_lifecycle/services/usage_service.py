"""
Месячная квота встреч аккаунта.

- free: MEETING_MONTHLY_LIMIT_FREE сессий за календарный месяц
  (считаются сессии, начатые в комнатах аккаунта)
- active/trialing подписка: без ограничений
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import UsageLimitError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.time import month_bounds
from meeting_lifecycle.domain.enums import SubscriptionStatus
from meeting_lifecycle.storage.db import db_session
from meeting_lifecycle.storage.repositories import AccountRepository, MeetingRepository

log = get_project_logger()

_UNLIMITED_STATUSES = {SubscriptionStatus.active, SubscriptionStatus.trialing}


@dataclass
class UsageInfo:
    plan: str
    unlimited: bool
    current_count: int
    limit: int | None
    remaining: int | None
    exceeded: bool


def get_usage(account_id: str, *, now: datetime | None = None) -> UsageInfo:
    start, end = month_bounds(now)
    with db_session() as session:
        account = AccountRepository(session).get(account_id)
        if account is not None and account.subscription_status in _UNLIMITED_STATUSES:
            return UsageInfo(
                plan="pro",
                unlimited=True,
                current_count=0,
                limit=None,
                remaining=None,
                exceeded=False,
            )
        count = MeetingRepository(session).count_started_in_owned_rooms(
            account_id, start=start, end=end
        )

    limit = max(0, int(get_settings().meeting_monthly_limit_free))
    return UsageInfo(
        plan="free",
        unlimited=False,
        current_count=count,
        limit=limit,
        remaining=max(0, limit - count),
        exceeded=count >= limit,
    )


def ensure_within_quota(account_id: str | None) -> None:
    """
    UsageLimitError, если аккаунт исчерпал месячный лимит.
    """
    if not account_id or not get_settings().usage_limits_enabled:
        return
    usage = get_usage(account_id)
    if usage.exceeded:
        log.info(
            "usage_limit_exceeded",
            extra={
                "payload": {
                    "account_id": account_id,
                    "current_count": usage.current_count,
                    "limit": usage.limit,
                }
            },
        )
        raise UsageLimitError(
            details={"current_count": usage.current_count, "limit": usage.limit, "plan": usage.plan}
        )
