"""Plan catalog: subscription tiers, prices, periods, and promotion types."""

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum

from settlement.config import settings


class SubscriptionPlan(StrEnum):
    FREE = "FREE"
    HOBBY = "HOBBY"
    PRO = "PRO"


class ApplicationPlatform(StrEnum):
    BOOSTS = "BOOSTS"
    TRENDING = "TRENDING"


class PromotionType(StrEnum):
    FEATURED_TOKEN = "FEATURED_TOKEN"
    ALERT_PACK = "ALERT_PACK"


@dataclass(frozen=True)
class PlanRule:
    """Price, validity period and upgrade rank for a subscription plan."""

    plan: SubscriptionPlan
    display_name: str
    rank: int
    price_lamports: int | None  # None = not purchasable
    period: timedelta | None


@dataclass(frozen=True)
class PromotionRule:
    """Stackability and lifetime of a promotion type."""

    promotion_type: PromotionType
    stackable: bool
    duration: timedelta | None  # None = never expires


PLANS: dict[SubscriptionPlan, PlanRule] = {
    SubscriptionPlan.FREE: PlanRule(
        plan=SubscriptionPlan.FREE,
        display_name="Free",
        rank=0,
        price_lamports=None,
        period=None,
    ),
    SubscriptionPlan.HOBBY: PlanRule(
        plan=SubscriptionPlan.HOBBY,
        display_name="Hobby",
        rank=1,
        price_lamports=settings.hobby_plan_fee_lamports,
        period=timedelta(days=settings.hobby_plan_period_days),
    ),
    SubscriptionPlan.PRO: PlanRule(
        plan=SubscriptionPlan.PRO,
        display_name="Pro",
        rank=2,
        price_lamports=settings.pro_plan_fee_lamports,
        period=timedelta(days=settings.pro_plan_period_days),
    ),
}

PROMOTIONS: dict[PromotionType, PromotionRule] = {
    PromotionType.FEATURED_TOKEN: PromotionRule(
        promotion_type=PromotionType.FEATURED_TOKEN,
        stackable=False,
        duration=timedelta(days=7),
    ),
    PromotionType.ALERT_PACK: PromotionRule(
        promotion_type=PromotionType.ALERT_PACK,
        stackable=True,
        duration=None,
    ),
}

def check_catalog(plans: dict, promotions: dict) -> None:
    """Raise RuntimeError unless every plan and promotion type has a rule."""
    missing = [str(p) for p in SubscriptionPlan if p not in plans]
    missing += [str(p) for p in PromotionType if p not in promotions]
    if missing:
        raise RuntimeError(f"No catalog rule for: {', '.join(missing)}")


# Adding an enum member without a rule is a startup error, not a runtime KeyError.
check_catalog(PLANS, PROMOTIONS)


def parse_plan(plan: SubscriptionPlan | str | None) -> SubscriptionPlan | None:
    """Coerce a plan identifier to the enum. Returns None if unknown."""
    if plan is None:
        return None
    try:
        return SubscriptionPlan(plan)
    except ValueError:
        return None


def parse_promotion_type(promotion_type: PromotionType | str) -> PromotionType | None:
    """Coerce a promotion identifier to the enum. Returns None if unknown."""
    try:
        return PromotionType(promotion_type)
    except ValueError:
        return None


def price_of(plan: SubscriptionPlan | str) -> int | None:
    """Price in lamports, or None for unknown and non-purchasable plans."""
    known = parse_plan(plan)
    if known is None:
        return None
    return PLANS[known].price_lamports


def rank_of(plan: SubscriptionPlan | str | None) -> int:
    """Upgrade rank. Unknown plans (and no plan at all) rank as FREE."""
    known = parse_plan(plan)
    if known is None:
        return PLANS[SubscriptionPlan.FREE].rank
    return PLANS[known].rank


def period_of(plan: SubscriptionPlan | str) -> timedelta | None:
    """Validity period granted by one charge of the plan."""
    known = parse_plan(plan)
    if known is None:
        return None
    return PLANS[known].period


def is_invalid_upgrade(
    requested: SubscriptionPlan | str, current: SubscriptionPlan | str | None
) -> bool:
    """True when the request is the current plan or a downgrade."""
    current = current or SubscriptionPlan.FREE
    return requested == current or rank_of(current) > rank_of(requested)


def get_promotion_rule(promotion_type: PromotionType) -> PromotionRule:
    return PROMOTIONS[promotion_type]
