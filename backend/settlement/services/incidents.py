"""Incidents for payments whose entitlement did not follow the transfer."""

import logging
from enum import StrEnum
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.models.incident import SettlementIncident

logger = logging.getLogger(__name__)


class IncidentKind(StrEnum):
    ENTITLEMENT_WRITE_FAILED = "entitlement_write_failed"
    ENTITLEMENT_WRITE_CONFLICT = "entitlement_write_conflict"
    DONATION_FLAG_FAILED = "donation_flag_failed"
    PROMOTION_REJECTED_AFTER_PAYMENT = "promotion_rejected_after_payment"
    PROMOTION_RECORD_FAILED = "promotion_record_failed"


class IncidentRecorder(Protocol):
    async def record(self, kind: IncidentKind, user_id: str, detail: str) -> None: ...


class SqlIncidentRecorder:
    """Writes incidents to ``settlement_incidents`` in a dedicated session.

    The ERROR log line is always emitted first, so an incident survives in
    the logs even when the database is what failed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, kind: IncidentKind, user_id: str, detail: str) -> None:
        logger.error("Settlement incident %s for user %s: %s", kind, user_id, detail)
        try:
            async with self._session_factory() as db:
                db.add(SettlementIncident(kind=kind, user_id=user_id, detail=detail))
                await db.commit()
        except Exception:
            logger.exception(
                "Could not persist settlement incident %s for user %s", kind, user_id
            )
