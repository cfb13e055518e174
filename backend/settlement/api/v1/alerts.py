"""Alert endpoints: apply the free-tier message quota before a broadcast."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.api.deps import get_db, get_notifier, require_internal_token
from settlement.schemas.alerts import AlertRecipientsRequest, AlertRecipientsResponse
from settlement.services.message_quota_service import (
    Notifier,
    filter_active_users,
    get_users_by_ids,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/alerts",
    tags=["alerts"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/recipients", response_model=AlertRecipientsResponse)
async def filter_recipients(
    body: AlertRecipientsRequest,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> AlertRecipientsResponse:
    """Count one alert against each free user's quota and return who may receive it.

    Users over their limit are dropped (and told once); counters are
    committed with the request.
    """
    users = await get_users_by_ids(db, body.user_ids)
    known = {user.id for user in users}
    unknown = [user_id for user_id in dict.fromkeys(body.user_ids) if user_id not in known]
    if unknown:
        logger.warning("Alert recipients requested for %d unknown users", len(unknown))

    active = await filter_active_users(db, users, notifier)
    logger.info("Alert recipients: %d of %d users cleared", len(active), len(users))
    return AlertRecipientsResponse(
        recipients=[user.id for user in active],
        unknown=unknown,
    )
