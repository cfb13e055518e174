"""Entitlement store: users, subscriptions and promotion purchases."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.billing.exceptions import EntitlementConflictError
from settlement.billing.plans import PromotionType, SubscriptionPlan, get_promotion_rule
from settlement.database import utcnow
from settlement.models.promotion import PromotionPurchase
from settlement.models.subscription import Subscription
from settlement.models.user import User

logger = logging.getLogger(__name__)

NON_STACKABLE_ALREADY_PURCHASED = "Non-stackable promotion already purchased"


@dataclass(frozen=True)
class PromotionResult:
    accepted: bool
    reason: str | None = None


class EntitlementStore(Protocol):
    """Durable user and entitlement records used by the settlement workflow."""

    async def get_user_by_id(self, user_id: str) -> User | None: ...

    async def get_subscription(self, user_id: str, platform: str) -> Subscription | None: ...

    async def write_subscription(
        self,
        user_id: str,
        plan: SubscriptionPlan,
        platform: str,
        period_end: datetime | None,
        expected_version: int | None = None,
    ) -> Subscription:
        """Insert (expected_version None) or update (matching version) the row.

        Raises EntitlementConflictError if another writer got there first.
        """
        ...

    async def record_promotion_purchase(
        self, user_id: str, promotion_type: PromotionType, amount_lamports: int
    ) -> PromotionResult: ...

    async def mark_donated(self, user_id: str) -> None: ...


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    return await db.get(User, user_id)


async def get_subscription(
    db: AsyncSession, user_id: str, platform: str
) -> Subscription | None:
    """Look up the user's subscription on one platform."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.platform == platform,
        )
    )
    return result.scalar_one_or_none()


async def write_subscription(
    db: AsyncSession,
    user_id: str,
    plan: SubscriptionPlan,
    platform: str,
    period_end: datetime | None,
    expected_version: int | None = None,
) -> Subscription:
    """Create or update the (user, platform) subscription with conflict detection.

    With ``expected_version=None`` the row must not exist yet; the unique
    constraint on (user_id, platform) rejects a concurrent insert. Otherwise
    the update only applies if ``version`` still matches.
    """
    if expected_version is None:
        subscription = Subscription(
            user_id=user_id,
            platform=platform,
            plan=plan,
            current_period_end=period_end,
            version=1,
        )
        db.add(subscription)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise EntitlementConflictError(user_id, platform) from e
        logger.info("Created %s subscription for user %s on %s", plan, user_id, platform)
        return subscription

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.platform == platform,
            Subscription.version == expected_version,
        )
        .values(
            plan=plan,
            current_period_end=period_end,
            version=Subscription.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise EntitlementConflictError(user_id, platform)

    subscription = await get_subscription(db, user_id, platform)
    await db.refresh(subscription)
    logger.info(
        "Updated subscription for user %s on %s: plan=%s, period_end=%s",
        user_id,
        platform,
        plan,
        period_end,
    )
    return subscription


async def record_promotion_purchase(
    db: AsyncSession,
    user_id: str,
    promotion_type: PromotionType,
    amount_lamports: int,
    now: datetime | None = None,
) -> PromotionResult:
    """Record a promotion unless a non-stackable one of the same type is active."""
    now = now or utcnow()
    rule = get_promotion_rule(promotion_type)

    # Serialize purchases per user so two buyers cannot both see "none active"
    await db.execute(select(User.id).where(User.id == user_id).with_for_update())

    if not rule.stackable:
        result = await db.execute(
            select(PromotionPurchase).where(
                PromotionPurchase.user_id == user_id,
                PromotionPurchase.promotion_type == promotion_type,
            )
        )
        if any(purchase.is_active(now) for purchase in result.scalars()):
            logger.info(
                "User %s already holds an active %s promotion", user_id, promotion_type
            )
            return PromotionResult(accepted=False, reason=NON_STACKABLE_ALREADY_PURCHASED)

    db.add(
        PromotionPurchase(
            user_id=user_id,
            promotion_type=promotion_type,
            is_stackable=rule.stackable,
            amount_lamports=amount_lamports,
            expires_at=now + rule.duration if rule.duration else None,
            created_at=now,
        )
    )
    await db.flush()
    logger.info("Recorded %s promotion for user %s", promotion_type, user_id)
    return PromotionResult(accepted=True)


async def mark_donated(db: AsyncSession, user_id: str) -> None:
    await db.execute(update(User).where(User.id == user_id).values(has_donated=True))
    logger.info("Marked user %s as donor", user_id)


class SqlEntitlementStore:
    """EntitlementStore that commits each operation in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user_by_id(self, user_id: str) -> User | None:
        async with self._session_factory() as db:
            return await get_user_by_id(db, user_id)

    async def get_subscription(self, user_id: str, platform: str) -> Subscription | None:
        async with self._session_factory() as db:
            return await get_subscription(db, user_id, platform)

    async def write_subscription(
        self,
        user_id: str,
        plan: SubscriptionPlan,
        platform: str,
        period_end: datetime | None,
        expected_version: int | None = None,
    ) -> Subscription:
        async with self._session_factory() as db:
            subscription = await write_subscription(
                db, user_id, plan, platform, period_end, expected_version
            )
            await db.commit()
            return subscription

    async def record_promotion_purchase(
        self, user_id: str, promotion_type: PromotionType, amount_lamports: int
    ) -> PromotionResult:
        async with self._session_factory() as db:
            result = await record_promotion_purchase(
                db, user_id, promotion_type, amount_lamports
            )
            await db.commit()
            return result

    async def mark_donated(self, user_id: str) -> None:
        async with self._session_factory() as db:
            await mark_donated(db, user_id)
            await db.commit()
