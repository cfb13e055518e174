"""Subscription model: plan tier per (user, platform)."""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's plan on one platform. Rows are updated in place, never deleted."""

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_user_subscriptions_user_platform"),
    )

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)

    # Plan & billing period
    plan: Mapped[str] = mapped_column(String(32), nullable=False, server_default="FREE")
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)

    # Bumped on every write; used for optimistic conflict detection
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscriptions", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, platform={self.platform}, "
            f"plan={self.plan}, version={self.version})>"
        )
