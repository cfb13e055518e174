"""Shared API dependencies: single import point for all routers.

Re-exports the database session and builds the payments service and the
notifier from process-wide resources so that routers can import everything
from one place::

    from settlement.api.deps import get_db, get_notifier, require_internal_token
"""

import secrets

from fastapi import Header, HTTPException, Request, status

from settlement.config import settings
from settlement.database import async_session_factory, get_db
from settlement.ledger.solana_client import SolanaBalanceOracle, SolanaTransferService
from settlement.services.entitlement_store import SqlEntitlementStore
from settlement.services.incidents import SqlIncidentRecorder
from settlement.services.message_quota_service import Notifier
from settlement.services.notifier import get_notifier as build_notifier
from settlement.services.payments_service import PaymentsService


async def require_internal_token(
    x_internal_token: str | None = Header(default=None),
) -> None:
    """Reject calls that do not carry the shared internal API token."""
    if x_internal_token is None or not secrets.compare_digest(
        x_internal_token, settings.internal_api_token
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )


def get_payments_service(request: Request) -> PaymentsService:
    """Build a PaymentsService around the app's shared Solana client."""
    client = request.app.state.solana_client
    return PaymentsService(
        store=SqlEntitlementStore(async_session_factory),
        balance_oracle=SolanaBalanceOracle(client),
        transfer_service=SolanaTransferService(client),
        incidents=SqlIncidentRecorder(async_session_factory),
    )


def get_notifier(request: Request) -> Notifier:
    """Notifier around the app's shared HTTP client."""
    return build_notifier(request.app.state.http_client)


__all__ = [
    "get_db",
    "get_notifier",
    "get_payments_service",
    "require_internal_token",
]
