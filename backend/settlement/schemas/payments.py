"""Pydantic v2 request/response schemas for payment endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from settlement.billing.outcomes import ChargeOutcome, PaymentsMessage
from settlement.billing.plans import ApplicationPlatform, PromotionType

# --- Request schemas ---


class SubscriptionChargeRequest(BaseModel):
    """Request to upgrade a user's plan on one platform."""

    user_id: str
    plan: str  # validated by the plan catalog, unknown -> INVALID_PLAN
    platform: ApplicationPlatform = ApplicationPlatform.BOOSTS


class DonationRequest(BaseModel):
    """One-off donation, amount in SOL."""

    user_id: str
    amount_sol: Decimal = Field(gt=0, max_digits=18, decimal_places=9)


class PromotionRequest(BaseModel):
    """Promotion purchase, amount in SOL."""

    user_id: str
    amount_sol: Decimal = Field(gt=0, max_digits=18, decimal_places=9)
    promotion_type: PromotionType


# --- Response schemas ---


class ChargeResponse(BaseModel):
    """Outcome of a charge; failures are reported here, not as HTTP errors."""

    success: bool
    message: PaymentsMessage
    subscription_end: str | None = None

    @classmethod
    def from_outcome(cls, outcome: ChargeOutcome) -> "ChargeResponse":
        return cls(
            success=outcome.success,
            message=outcome.message,
            subscription_end=outcome.subscription_end,
        )


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    rank: int
    price_lamports: int | None
    period_days: int | None


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """One platform subscription."""

    platform: str
    plan: str
    current_period_end: datetime | None


class EntitlementsResponse(BaseModel):
    """Everything a user is entitled to."""

    user_id: str
    has_donated: bool
    subscriptions: list[SubscriptionResponse]
    active_promotions: list[str]
