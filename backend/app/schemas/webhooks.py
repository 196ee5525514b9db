"""Pydantic schemas for payment webhooks"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class WebhookPayload(BaseModel):
    """Inbound payment notification

    Field names follow the sender's camelCase wire format. Unknown fields are
    rejected. amount is in minor currency units; non-positive values pass here
    and are rejected by business validation after the event is recorded.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    external_payment_id: str = Field(..., alias="externalPaymentId", min_length=1, max_length=255)
    event_type: str = Field(..., alias="eventType", min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    amount: int = Field(..., ge=0)
    currency: str = Field(..., min_length=1, max_length=10)
    plan_type: str = Field(..., alias="planType", min_length=1, max_length=50)
    payment_method: Optional[str] = Field(None, alias="paymentMethod", max_length=50)
    provider: Optional[str] = Field(None, max_length=50)
    metadata: Optional[Any] = None

    def snapshot(self) -> dict:
        """JSON-safe copy of the payload for the audit log"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the sender"""
    model_config = ConfigDict(populate_by_name=True)

    status: int
    message: str
    payment_id: Optional[int] = Field(None, alias="paymentId")
    webhook_event_id: Optional[int] = Field(None, alias="webhookEventId")
