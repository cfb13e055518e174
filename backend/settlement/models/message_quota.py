"""Free-tier message counter per user."""

from datetime import datetime

from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from settlement.database import Base


class MessageQuota(Base):
    """Alerts delivered to a free user since the last reset."""

    __tablename__ = "message_quotas"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    limit_notified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<MessageQuota(user_id={self.user_id}, count={self.count})>"
