"""Settlement incidents: funds moved but the entitlement did not follow."""

from datetime import datetime

from sqlalchemy import String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base, UUIDPrimaryKeyMixin


class SettlementIncident(UUIDPrimaryKeyMixin, Base):
    """Row consumed by out-of-band reconciliation."""

    __tablename__ = "settlement_incidents"

    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")
    resolved: Mapped[bool] = mapped_column(default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return f"<SettlementIncident(id={self.id}, kind={self.kind!r}, user_id={self.user_id})>"
