"""SQLAlchemy models for the settlement service.

All models are imported here so that ``Base.metadata`` sees every table. If
you add a new model, import it in this file.
"""

from settlement.models.incident import SettlementIncident
from settlement.models.message_quota import MessageQuota
from settlement.models.promotion import PromotionPurchase
from settlement.models.subscription import Subscription
from settlement.models.user import User

__all__ = [
    "MessageQuota",
    "PromotionPurchase",
    "SettlementIncident",
    "Subscription",
    "User",
]
