"""User model: custodial wallet and donation flag."""

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.database import Base, TimestampMixin


class User(TimestampMixin, Base):
    """Bot user with a custodial Solana wallet."""

    __tablename__ = "users"

    # Chat id assigned by the messaging platform
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_public_key: Mapped[str] = mapped_column(String(64), nullable=False)
    # Fernet token; decrypted only inside settlement.ledger.credentials.signing_keypair
    wallet_secret: Mapped[str] = mapped_column(Text, nullable=False)
    has_donated: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false", nullable=False)

    # Relationships
    subscriptions: Mapped[list["Subscription"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Subscription", back_populates="user", lazy="selectin"
    )
    promotion_purchases: Mapped[list["PromotionPurchase"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "PromotionPurchase", back_populates="user", lazy="selectin"
    )

    def subscription_for(self, platform: str) -> "Subscription | None":  # type: ignore[name-defined]  # noqa: F821
        """The user's row for ``platform``; at most one exists per platform."""
        return next((sub for sub in self.subscriptions if sub.platform == platform), None)

    def __repr__(self) -> str:
        return f"<User id={self.id} wallet={self.wallet_public_key!r}>"
