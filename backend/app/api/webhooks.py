"""Payment webhook API routes"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.logging import webhook_logger as logger
from app.core.security import require_webhook_signature
from app.db.session import get_db
from app.schemas.webhooks import WebhookPayload, WebhookResponse
from app.services.webhook_service import WebhookOutcome, process_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment", response_model=WebhookResponse, response_model_exclude_none=True, response_model_by_alias=True)
def payment_webhook(body: bytes = Depends(require_webhook_signature), db: Session = Depends(get_db)):
    """Receive a payment webhook

    The signature is verified against the raw body before anything else runs.
    Once authenticated and parsed, the sender always gets 200, even when
    processing failed, so it does not retry-storm us; failures stay in the
    logs and on the RECEIVED event row for investigation.
    """
    try:
        payload = WebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.error(f"Invalid webhook payload: {e.error_count()} error(s)")
        raise HTTPException(400, "Invalid webhook payload")

    logger.info(f"Webhook received: {payload.external_payment_id} ({payload.event_type})")
    result = process_webhook(payload, db)

    if result.outcome == WebhookOutcome.DUPLICATE:
        return WebhookResponse(
            status=200,
            message="Webhook already processed (duplicate)",
            payment_id=result.payment_id,
            webhook_event_id=result.webhook_event_id,
        )

    if result.outcome == WebhookOutcome.PROCESSED:
        return WebhookResponse(
            status=200,
            message="Webhook processed successfully",
            payment_id=result.payment_id,
        )

    if result.outcome == WebhookOutcome.VALIDATION_FAILED:
        return WebhookResponse(
            status=200,
            message="Webhook received, rejected by validation",
            webhook_event_id=result.webhook_event_id,
        )

    return WebhookResponse(
        status=200,
        message="Webhook received, processing failed",
        webhook_event_id=result.webhook_event_id,
    )


@router.post("/health")
def webhook_health():
    """Health check for the webhook endpoint"""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
