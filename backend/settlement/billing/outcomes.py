"""Reason codes and the uniform result returned by every payment entry point."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

SUBSCRIPTION_END_FORMAT = "%m/%d/%Y"


class PaymentsMessage(StrEnum):
    NO_USER_FOUND = "NO_USER_FOUND"
    USER_ALREADY_PAID = "USER_ALREADY_PAID"
    INVALID_PLAN = "INVALID_PLAN"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PLAN_UPGRADED = "PLAN_UPGRADED"
    DONATION_MADE = "DONATION_MADE"
    TRANSACTION_SUCCESS = "TRANSACTION_SUCCESS"


@dataclass(frozen=True)
class ChargeOutcome:
    """Result of a charge attempt. Failures are values, never exceptions."""

    success: bool
    message: PaymentsMessage
    subscription_end: str | None = None

    @classmethod
    def failed(cls, message: PaymentsMessage) -> "ChargeOutcome":
        return cls(success=False, message=message)

    @classmethod
    def succeeded(
        cls, message: PaymentsMessage, period_end: datetime | None = None
    ) -> "ChargeOutcome":
        subscription_end = (
            period_end.strftime(SUBSCRIPTION_END_FORMAT) if period_end else None
        )
        return cls(success=True, message=message, subscription_end=subscription_end)
