"""Payment model"""
import enum

from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class PaymentStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"


class Payment(Base):
    """Completed payment, written once by the webhook apply step"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    external_payment_id = Column(String(255), unique=True, nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # minor currency units
    currency = Column(String(10), nullable=False)
    plan_type = Column(String(50), nullable=False)  # 'monthly', 'yearly', 'lifetime'
    payment_method = Column(String(50), nullable=True)
    provider = Column(String(50), nullable=True)
    status = Column(String(20), default=PaymentStatus.COMPLETED.value, nullable=False)
    # "metadata" is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    user = relationship("User", back_populates="payments")
