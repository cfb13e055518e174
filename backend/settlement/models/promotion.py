"""Promotion purchase model."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.database import Base, UUIDPrimaryKeyMixin


class PromotionPurchase(UUIDPrimaryKeyMixin, Base):
    """A paid promotion. Active while expires_at is unset or in the future."""

    __tablename__ = "promotion_purchases"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    promotion_type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_stackable: Mapped[bool] = mapped_column(Boolean, nullable=False)
    amount_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), index=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="promotion_purchases", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now

    def __repr__(self) -> str:
        return f"<PromotionPurchase(id={self.id}, user_id={self.user_id}, type={self.promotion_type})>"
