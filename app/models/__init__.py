from app.models.tenant import Tenant, SubscriptionStatus
from app.models.user import User, UserRole
from app.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from app.models.subscription_plan import SubscriptionPlan

__all__ = [
    "Tenant",
    "SubscriptionStatus",
    "User",
    "UserRole",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "SubscriptionPlan",
]
