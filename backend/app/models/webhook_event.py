"""WebhookEvent model"""
import enum

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, UniqueConstraint
from datetime import datetime, timezone
from app.models.base import Base


class WebhookStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class WebhookEvent(Base):
    """One received webhook delivery, keyed by (external_payment_id, event_type) for idempotency"""
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("external_payment_id", "event_type", name="uq_webhook_events_payment_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_payment_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    status = Column(String(20), default=WebhookStatus.RECEIVED.value, nullable=False)  # RECEIVED, PROCESSED, FAILED
    payload = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
