"""Free-tier message quota: decides which users receive the next alert.

Counters live in ``message_quotas`` rather than in process memory, so the
gate behaves the same across workers and restarts.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.billing.plans import ApplicationPlatform, SubscriptionPlan
from settlement.config import settings
from settlement.database import utcnow
from settlement.models.message_quota import MessageQuota
from settlement.models.user import User

logger = logging.getLogger(__name__)

LIMITS_RESUMED_MESSAGE = "Your daily limits have been resumed."


class Notifier(Protocol):
    """Delivers a plain-text message to a user."""

    async def send_message(self, user_id: str, text: str) -> None: ...


def is_paid_subscriber(
    user: User, platform: ApplicationPlatform = ApplicationPlatform.BOOSTS
) -> bool:
    """True if the user holds a non-FREE plan on ``platform``."""
    subscription = user.subscription_for(platform)
    return subscription is not None and subscription.plan != SubscriptionPlan.FREE


def limit_reached_message(count: int, reset_hours: int) -> str:
    return (
        f"You have received {count} free alerts. Alerts resume in {reset_hours} hours, "
        "or upgrade your plan for unlimited alerts."
    )


async def get_users_by_ids(db: AsyncSession, user_ids: Iterable[str]) -> list[User]:
    """Load users in request order, skipping unknown and repeated ids."""
    ordered = list(dict.fromkeys(user_ids))
    if not ordered:
        return []
    result = await db.execute(select(User).where(User.id.in_(ordered)))
    by_id = {user.id: user for user in result.scalars()}
    return [by_id[user_id] for user_id in ordered if user_id in by_id]


async def _get_or_create_quota(db: AsyncSession, user_id: str) -> MessageQuota:
    quota = await db.get(MessageQuota, user_id)
    if quota is None:
        quota = MessageQuota(user_id=user_id, count=0, limit_notified_at=None)
        db.add(quota)
        await db.flush()
    return quota


def _should_reset(quota: MessageQuota, now: datetime, reset_after: timedelta) -> bool:
    return quota.limit_notified_at is not None and now - quota.limit_notified_at > reset_after


async def filter_active_users(
    db: AsyncSession,
    users: Iterable[User],
    notifier: Notifier,
    now: datetime | None = None,
    max_messages: int | None = None,
    reset_hours: int | None = None,
) -> list[User]:
    """Return the users allowed to receive one more alert, updating their counters.

    Paid subscribers always pass. Free users pass until ``max_messages``;
    the first refused alert triggers a one-time notice, and the counter
    resets ``reset_hours`` after that notice.
    """
    now = now or utcnow()
    max_messages = max_messages if max_messages is not None else settings.max_free_daily_messages
    reset_hours = reset_hours if reset_hours is not None else settings.quota_reset_hours
    reset_after = timedelta(hours=reset_hours)

    active: list[User] = []
    for user in users:
        if is_paid_subscriber(user):
            active.append(user)
            continue

        quota = await _get_or_create_quota(db, user.id)

        if _should_reset(quota, now, reset_after):
            quota.count = 0
            quota.limit_notified_at = None
            await notifier.send_message(user.id, LIMITS_RESUMED_MESSAGE)
            logger.info("Reset free message quota for user %s", user.id)

        if quota.count >= max_messages:
            if quota.limit_notified_at is None:
                quota.limit_notified_at = now
                await notifier.send_message(
                    user.id, limit_reached_message(quota.count, reset_hours)
                )
                logger.info("User %s reached the free message limit", user.id)
            continue

        quota.count += 1
        active.append(user)

    await db.flush()
    return active
