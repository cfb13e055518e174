"""Settlement workflow: charge a custodial wallet, then record the entitlement.

Every entry point runs validate -> check balance -> transfer -> confirm ->
persist and returns a ``ChargeOutcome``. Nothing raises past an entry point.

Funds move before the entitlement is written and a confirmed transfer cannot
be rolled back. When the write fails after confirmation the payment is kept,
an incident is recorded for reconciliation, and:

* subscription upgrades still report ``PLAN_UPGRADED`` (write conflicts
  report ``INTERNAL_ERROR``);
* donations still report ``DONATION_MADE``;
* promotions report ``USER_ALREADY_PAID`` when the purchase is refused as
  non-stackable and ``INTERNAL_ERROR`` when recording fails.

Submitted transfers are never retried here.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from settlement.billing.exceptions import EntitlementConflictError
from settlement.billing.outcomes import ChargeOutcome, PaymentsMessage
from settlement.billing.plans import (
    ApplicationPlatform,
    PromotionType,
    SubscriptionPlan,
    is_invalid_upgrade,
    parse_plan,
    parse_promotion_type,
    period_of,
    price_of,
)
from settlement.config import settings
from settlement.database import utcnow
from settlement.ledger.credentials import signing_keypair
from settlement.ledger.ports import BalanceOracle, LedgerTransferService
from settlement.models.user import User
from settlement.services.entitlement_store import EntitlementStore
from settlement.services.incidents import IncidentKind, IncidentRecorder

logger = logging.getLogger(__name__)


class PaymentsService:
    """Orchestrates subscription upgrades, donations and promotion purchases."""

    def __init__(
        self,
        store: EntitlementStore,
        balance_oracle: BalanceOracle,
        transfer_service: LedgerTransferService,
        incidents: IncidentRecorder,
        operator_address: str | None = None,
        signature_fee: int | None = None,
        encryption_key: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._balance_oracle = balance_oracle
        self._transfer_service = transfer_service
        self._incidents = incidents
        self._operator_address = operator_address or settings.operator_wallet_address
        self._signature_fee = (
            signature_fee if signature_fee is not None else settings.signature_fee_lamports
        )
        self._encryption_key = encryption_key
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def charge_subscription(
        self,
        user_id: str,
        plan: SubscriptionPlan | str,
        platform: ApplicationPlatform | str,
    ) -> ChargeOutcome:
        """Upgrade the user's plan on ``platform``, charging the plan price."""
        try:
            return await self._charge_subscription(user_id, plan, platform)
        except Exception:
            logger.exception("Unexpected error charging %s subscription for user %s", plan, user_id)
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

    async def charge_donation(self, user_id: str, amount_lamports: int) -> ChargeOutcome:
        """Transfer a donation and flag the user as a donor."""
        try:
            return await self._charge_donation(user_id, amount_lamports)
        except Exception:
            logger.exception("Unexpected error charging donation for user %s", user_id)
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

    async def charge_promotion(
        self,
        user_id: str,
        amount_lamports: int,
        promotion_type: PromotionType | str,
    ) -> ChargeOutcome:
        """Transfer a promotion payment, then record the purchase."""
        try:
            return await self._charge_promotion(user_id, amount_lamports, promotion_type)
        except Exception:
            logger.exception("Unexpected error charging %s promotion for user %s", promotion_type, user_id)
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def _charge_subscription(
        self, user_id: str, plan: SubscriptionPlan | str, platform: str
    ) -> ChargeOutcome:
        user = await self._store.get_user_by_id(user_id)
        if user is None:
            return ChargeOutcome.failed(PaymentsMessage.NO_USER_FOUND)

        subscription = await self._store.get_subscription(user_id, platform)
        current_plan = subscription.plan if subscription else None

        if is_invalid_upgrade(plan, current_plan):
            logger.info(
                "Rejected %s -> %s for user %s on %s",
                current_plan or SubscriptionPlan.FREE,
                plan,
                user_id,
                platform,
            )
            return ChargeOutcome.failed(PaymentsMessage.USER_ALREADY_PAID)

        requested = parse_plan(plan)
        price = price_of(plan)
        period = period_of(plan)
        if requested is None or price is None or period is None:
            return ChargeOutcome.failed(PaymentsMessage.INVALID_PLAN)

        balance = await self._get_balance(user)
        if not balance:
            return ChargeOutcome.failed(PaymentsMessage.INSUFFICIENT_BALANCE)

        if balance < price:
            if subscription is None:
                await self._ensure_free_subscription(user_id, platform)
            return ChargeOutcome.failed(PaymentsMessage.INSUFFICIENT_BALANCE)

        if not await self._transfer(user, price):
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

        period_end = self._clock() + period
        try:
            written = await self._store.write_subscription(
                user_id,
                requested,
                platform,
                period_end,
                expected_version=subscription.version if subscription else None,
            )
        except EntitlementConflictError as e:
            await self._incidents.record(
                IncidentKind.ENTITLEMENT_WRITE_CONFLICT,
                user_id,
                f"{requested} on {platform} paid ({price} lamports) but lost the write: {e}",
            )
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)
        except Exception as e:
            logger.exception("Entitlement write failed after confirmed payment for user %s", user_id)
            await self._incidents.record(
                IncidentKind.ENTITLEMENT_WRITE_FAILED,
                user_id,
                f"{requested} on {platform} until {period_end.isoformat()} paid "
                f"({price} lamports) but not persisted: {e!r}",
            )
            return ChargeOutcome.succeeded(PaymentsMessage.PLAN_UPGRADED, period_end)

        logger.info(
            "User %s upgraded to %s on %s until %s",
            user_id,
            requested,
            platform,
            written.current_period_end,
        )
        return ChargeOutcome.succeeded(
            PaymentsMessage.PLAN_UPGRADED, written.current_period_end or period_end
        )

    async def _charge_donation(self, user_id: str, amount_lamports: int) -> ChargeOutcome:
        user = await self._store.get_user_by_id(user_id)
        if user is None:
            return ChargeOutcome.failed(PaymentsMessage.NO_USER_FOUND)

        balance = await self._get_balance(user)
        if balance is None or balance < amount_lamports:
            return ChargeOutcome.failed(PaymentsMessage.INSUFFICIENT_BALANCE)

        if not await self._transfer(user, amount_lamports):
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

        try:
            await self._store.mark_donated(user_id)
        except Exception as e:
            logger.exception("Could not flag user %s as donor after confirmed donation", user_id)
            await self._incidents.record(
                IncidentKind.DONATION_FLAG_FAILED,
                user_id,
                f"donation of {amount_lamports} lamports not flagged: {e!r}",
            )

        return ChargeOutcome.succeeded(PaymentsMessage.DONATION_MADE)

    async def _charge_promotion(
        self, user_id: str, amount_lamports: int, promotion_type: PromotionType | str
    ) -> ChargeOutcome:
        user = await self._store.get_user_by_id(user_id)
        if user is None:
            return ChargeOutcome.failed(PaymentsMessage.NO_USER_FOUND)

        promotion = parse_promotion_type(promotion_type)
        if promotion is None:
            return ChargeOutcome.failed(PaymentsMessage.INVALID_PLAN)

        balance = await self._get_balance(user)
        if balance is None or balance < amount_lamports:
            return ChargeOutcome.failed(PaymentsMessage.INSUFFICIENT_BALANCE)

        # Stackability is checked after payment; a refused purchase keeps the funds.
        if not await self._transfer(user, amount_lamports):
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

        try:
            result = await self._store.record_promotion_purchase(user_id, promotion, amount_lamports)
        except Exception as e:
            logger.exception("Could not record %s promotion for user %s after payment", promotion, user_id)
            await self._incidents.record(
                IncidentKind.PROMOTION_RECORD_FAILED,
                user_id,
                f"{promotion} paid ({amount_lamports} lamports) but not recorded: {e!r}",
            )
            return ChargeOutcome.failed(PaymentsMessage.INTERNAL_ERROR)

        if not result.accepted:
            logger.warning(
                "User %s paid %d lamports for %s but already holds one: %s",
                user_id,
                amount_lamports,
                promotion,
                result.reason,
            )
            await self._incidents.record(
                IncidentKind.PROMOTION_REJECTED_AFTER_PAYMENT,
                user_id,
                f"{promotion} paid ({amount_lamports} lamports), refused: {result.reason}",
            )
            return ChargeOutcome.failed(PaymentsMessage.USER_ALREADY_PAID)

        return ChargeOutcome.succeeded(PaymentsMessage.TRANSACTION_SUCCESS)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_balance(self, user: User) -> int | None:
        """Spendable lamports; query failures are reported as None."""
        try:
            return await self._balance_oracle.get_balance(user.wallet_public_key)
        except Exception:
            logger.warning("Balance query failed for user %s", user.id, exc_info=True)
            return None

    async def _ensure_free_subscription(self, user_id: str, platform: str) -> None:
        """Best-effort FREE baseline row for a user without one."""
        try:
            await self._store.write_subscription(
                user_id, SubscriptionPlan.FREE, platform, None, expected_version=None
            )
        except Exception:
            logger.warning(
                "Could not create free subscription for user %s on %s",
                user_id,
                platform,
                exc_info=True,
            )

    async def _transfer(self, user: User, amount_lamports: int) -> bool:
        """Move ``amount - signature fee`` to the operator. True only when confirmed."""
        lamports = amount_lamports - self._signature_fee
        if lamports <= 0:
            logger.warning(
                "Charge of %d lamports for user %s does not cover the %d lamport signature fee",
                amount_lamports,
                user.id,
                self._signature_fee,
            )
            return False

        try:
            with signing_keypair(user.wallet_secret, self._encryption_key) as signer:
                result = await self._transfer_service.transfer(
                    user.wallet_public_key,
                    self._operator_address,
                    lamports,
                    signer,
                )
        except Exception:
            logger.exception("Transfer of %d lamports from user %s failed", lamports, user.id)
            return False

        if not result.confirmed:
            logger.warning(
                "Transfer of %d lamports from user %s was not confirmed (signature=%s)",
                lamports,
                user.id,
                result.signature,
            )
            return False

        logger.info(
            "Transfer of %d lamports from user %s confirmed (signature=%s)",
            lamports,
            user.id,
            result.signature,
        )
        return True
