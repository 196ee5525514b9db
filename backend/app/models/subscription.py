"""Subscription model"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class Subscription(Base):
    """A user's entitlement for one plan type; expires_at decides effective expiry"""
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "plan_type", name="uq_subscriptions_user_plan"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_type = Column(String(50), nullable=False)  # 'monthly', 'yearly', 'lifetime'
    status = Column(String(20), nullable=False)  # 'ACTIVE', 'CANCELLED'
    started_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    user = relationship("User", back_populates="subscriptions")
