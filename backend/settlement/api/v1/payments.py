"""Payment endpoints: subscription upgrades, donations and promotions.

Charge endpoints always answer 200 with a ``ChargeResponse``; business
failures (insufficient balance, already paid, ...) are in ``message``.
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from solana.constants import LAMPORTS_PER_SOL
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.deps import get_db, get_payments_service, require_internal_token
from settlement.billing.plans import PLANS
from settlement.database import utcnow
from settlement.schemas.payments import (
    ChargeResponse,
    DonationRequest,
    EntitlementsResponse,
    PlanResponse,
    PlansListResponse,
    PromotionRequest,
    SubscriptionChargeRequest,
    SubscriptionResponse,
)
from settlement.services.entitlement_store import get_user_by_id
from settlement.services.payments_service import PaymentsService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/payments",
    tags=["payments"],
    dependencies=[Depends(require_internal_token)],
)


def sol_to_lamports(amount_sol: Decimal) -> int:
    """Convert SOL to lamports without float rounding."""
    return int(amount_sol * LAMPORTS_PER_SOL)


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List the subscription plans and their prices."""
    return PlansListResponse(
        plans=[
            PlanResponse(
                name=rule.plan,
                display_name=rule.display_name,
                rank=rule.rank,
                price_lamports=rule.price_lamports,
                period_days=rule.period.days if rule.period else None,
            )
            for rule in PLANS.values()
        ]
    )


@router.get("/users/{user_id}/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> EntitlementsResponse:
    """Current subscriptions, donor flag and active promotions for a user."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    now = utcnow()
    return EntitlementsResponse(
        user_id=user.id,
        has_donated=user.has_donated,
        subscriptions=[
            SubscriptionResponse(
                platform=sub.platform,
                plan=sub.plan,
                current_period_end=sub.current_period_end,
            )
            for sub in user.subscriptions
        ],
        active_promotions=[
            purchase.promotion_type
            for purchase in user.promotion_purchases
            if purchase.is_active(now)
        ],
    )


@router.post("/subscription", response_model=ChargeResponse)
async def charge_subscription(
    body: SubscriptionChargeRequest,
    service: PaymentsService = Depends(get_payments_service),
) -> ChargeResponse:
    """Charge the user's wallet for a plan upgrade."""
    logger.info(
        "Subscription charge requested: user=%s plan=%s platform=%s",
        body.user_id,
        body.plan,
        body.platform,
    )
    outcome = await service.charge_subscription(body.user_id, body.plan, body.platform)
    return ChargeResponse.from_outcome(outcome)


@router.post("/donation", response_model=ChargeResponse)
async def charge_donation(
    body: DonationRequest,
    service: PaymentsService = Depends(get_payments_service),
) -> ChargeResponse:
    """Charge the user's wallet for a donation."""
    logger.info("Donation requested: user=%s amount=%s SOL", body.user_id, body.amount_sol)
    outcome = await service.charge_donation(body.user_id, sol_to_lamports(body.amount_sol))
    return ChargeResponse.from_outcome(outcome)


@router.post("/promotion", response_model=ChargeResponse)
async def charge_promotion(
    body: PromotionRequest,
    service: PaymentsService = Depends(get_payments_service),
) -> ChargeResponse:
    """Charge the user's wallet for a promotion."""
    logger.info(
        "Promotion requested: user=%s type=%s amount=%s SOL",
        body.user_id,
        body.promotion_type,
        body.amount_sol,
    )
    outcome = await service.charge_promotion(
        body.user_id, sol_to_lamports(body.amount_sol), body.promotion_type
    )
    return ChargeResponse.from_outcome(outcome)
