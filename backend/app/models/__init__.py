"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.webhook_event import WebhookEvent, WebhookStatus
from app.models.payment import Payment, PaymentStatus
from app.models.subscription import Subscription, SubscriptionStatus

# Export all for convenience
__all__ = [
    "Base", "User", "WebhookEvent", "WebhookStatus",
    "Payment", "PaymentStatus", "Subscription", "SubscriptionStatus"
]
