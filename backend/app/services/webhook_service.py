"""Payment webhook processing

Turns one authenticated webhook delivery into billing state exactly once:

1. Deduplication gate on (external_payment_id, event_type)
2. Record the event as RECEIVED
3. Resolve (or create) the user
4. Business validation
5. One transaction: create payment, activate/extend subscription, mark PROCESSED

Every delivery ends in one of four outcomes (see WebhookOutcome); none of
them is raised as an exception.
"""
import enum
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.metrics import webhook_events_counter, webhook_processing_seconds
from app.core.otel import get_tracer
from app.core.plans import PlanType
from app.models.webhook_event import WebhookEvent
from app.schemas.webhooks import WebhookPayload
from app.services.payment_service import create_payment, find_payment_by_external_id
from app.services.subscription_service import activate_or_extend_subscription
from app.services.user_service import resolve_user
from app.services.validation_service import RejectionReason, validate_payment
from app.services.webhook_event_service import (
    claim_stale_event, find_webhook_event, is_reclaimable, mark_event_failed,
    mark_event_processed, record_event_error, record_received_event
)
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    VALIDATION_FAILED = "validation_failed"
    FAILED = "failed"


@dataclass
class WebhookProcessingResult:
    outcome: WebhookOutcome
    trace_id: str
    webhook_event_id: Optional[int] = None
    payment_id: Optional[int] = None
    subscription_id: Optional[int] = None
    rejection: Optional[RejectionReason] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (WebhookOutcome.PROCESSED, WebhookOutcome.DUPLICATE)

    @property
    def is_duplicate(self) -> bool:
        return self.outcome == WebhookOutcome.DUPLICATE

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "isDuplicate": self.is_duplicate}
        if self.payment_id is not None:
            data["paymentId"] = self.payment_id
        if self.subscription_id is not None:
            data["subscriptionId"] = self.subscription_id
        if self.rejection is not None:
            data["rejection"] = self.rejection.value
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class AppliedPayment:
    payment_id: int
    subscription_id: Optional[int]
    payment_created: bool


def new_trace_id(external_payment_id: str) -> str:
    return f"webhook-{external_payment_id}-{uuid.uuid4().hex[:12]}"


def apply_payment_transaction(
    webhook_event_id: int,
    user_id: int,
    payload: WebhookPayload,
    plan: PlanType,
    db: Session,
    now: Optional[datetime] = None,
    trace_id: str = ""
) -> AppliedPayment:
    """Create the payment, renew the subscription and mark the event PROCESSED atomically

    If any step fails the whole unit of work is rolled back and the error is
    re-raised; the event stays RECEIVED. If the payment already exists (same
    external id recorded by an event of another type) the subscription is left
    untouched, the event is still marked PROCESSED and subscription_id is None.
    """
    now = now or utcnow()
    logger.info(f"[{trace_id}] Starting transaction")
    try:
        payment, created = create_payment(
            user_id=user_id,
            external_payment_id=payload.external_payment_id,
            amount=payload.amount,
            currency=payload.currency,
            plan_type=plan.value,
            payment_method=payload.payment_method,
            provider=payload.provider,
            metadata=payload.metadata,
            db=db,
        )
        payment_id = payment.id

        subscription_id = None
        if created:
            subscription = activate_or_extend_subscription(user_id, plan, db, now=now, trace_id=trace_id)
            subscription_id = subscription.id
        else:
            logger.warning(
                f"[{trace_id}] Payment {payload.external_payment_id} already recorded as {payment_id}, "
                f"subscription left unchanged"
            )

        mark_event_processed(webhook_event_id, db, now=now)
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"[{trace_id}] Transaction rolled back")
        raise

    logger.info(f"[{trace_id}] Transaction committed - payment {payment_id}, subscription {subscription_id}")
    return AppliedPayment(payment_id=payment_id, subscription_id=subscription_id, payment_created=created)


def _duplicate_result(
    event: Optional[WebhookEvent],
    payload: WebhookPayload,
    db: Session,
    trace_id: str
) -> WebhookProcessingResult:
    payment = find_payment_by_external_id(payload.external_payment_id, db)
    logger.warning(
        f"[{trace_id}] Duplicate webhook ({payload.external_payment_id}, {payload.event_type}) - "
        f"event {event.id if event else 'unknown'} status {event.status if event else 'unknown'}"
    )
    return WebhookProcessingResult(
        outcome=WebhookOutcome.DUPLICATE,
        trace_id=trace_id,
        webhook_event_id=event.id if event else None,
        payment_id=payment.id if payment else None,
    )


def _process(payload: WebhookPayload, db: Session, now: datetime, trace_id: str) -> WebhookProcessingResult:
    key = f"({payload.external_payment_id}, {payload.event_type})"
    event_id = None
    try:
        # Deduplication gate
        existing = find_webhook_event(payload.external_payment_id, payload.event_type, db)
        if existing is not None:
            if not is_reclaimable(existing, now):
                return _duplicate_result(existing, payload, db, trace_id)
            if not claim_stale_event(existing.id, payload.snapshot(), db, now=now):
                # Another redelivery claimed it first
                return _duplicate_result(existing, payload, db, trace_id)
            logger.warning(f"[{trace_id}] Reclaimed stale RECEIVED event {existing.id} for {key}")
            event_id = existing.id
        else:
            event = record_received_event(
                payload.external_payment_id, payload.event_type, payload.snapshot(), db, now=now
            )
            if event is None:
                # Lost the insert race on the idempotency key
                winner = find_webhook_event(payload.external_payment_id, payload.event_type, db)
                if winner is None:
                    logger.error(f"[{trace_id}] Webhook event for {key} could not be recorded - kind=TransactionFailure")
                    return WebhookProcessingResult(
                        outcome=WebhookOutcome.FAILED,
                        trace_id=trace_id,
                        error="webhook event could not be recorded",
                    )
                return _duplicate_result(winner, payload, db, trace_id)
            event_id = event.id
            logger.info(f"[{trace_id}] Webhook event created: {event_id}")

        user = resolve_user(payload.email, db, trace_id=trace_id)

        rejection = validate_payment(payload.amount, payload.plan_type, trace_id=trace_id)
        if rejection is not None:
            mark_event_failed(event_id, rejection.value, db)
            logger.error(f"[{trace_id}] Webhook rejected - key={key}, kind=ValidationFailure, reason={rejection.value}")
            return WebhookProcessingResult(
                outcome=WebhookOutcome.VALIDATION_FAILED,
                trace_id=trace_id,
                webhook_event_id=event_id,
                rejection=rejection,
                error=rejection.value,
            )

        applied = apply_payment_transaction(
            event_id, user.id, payload, PlanType(payload.plan_type), db, now=now, trace_id=trace_id
        )
    except Exception as e:
        kind = "TransactionFailure" if isinstance(e, SQLAlchemyError) else "InternalFailure"
        logger.error(f"[{trace_id}] Webhook processing failed - key={key}, kind={kind}: {e}", exc_info=True)
        db.rollback()
        if event_id is not None:
            try:
                record_event_error(event_id, f"{kind}: {e}", db)
            except SQLAlchemyError as record_error:
                db.rollback()
                logger.error(f"[{trace_id}] Could not store error on event {event_id}: {record_error}")
        return WebhookProcessingResult(
            outcome=WebhookOutcome.FAILED,
            trace_id=trace_id,
            webhook_event_id=event_id,
            error=str(e),
        )

    return WebhookProcessingResult(
        outcome=WebhookOutcome.PROCESSED,
        trace_id=trace_id,
        webhook_event_id=event_id,
        payment_id=applied.payment_id,
        subscription_id=applied.subscription_id,
    )


def process_webhook(payload: WebhookPayload, db: Session, now: Optional[datetime] = None) -> WebhookProcessingResult:
    """Process one authenticated webhook delivery

    Safe to call any number of times for the same (external_payment_id,
    event_type): only the first successful run writes a payment and renews
    the subscription.

    Args:
        payload: Parsed webhook body
        db: Database session
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        WebhookProcessingResult - PROCESSED, DUPLICATE, VALIDATION_FAILED or FAILED
    """
    start_time = time.perf_counter()
    now = now or utcnow()
    trace_id = new_trace_id(payload.external_payment_id)

    logger.info(
        f"[{trace_id}] Processing webhook: {payload.event_type} - "
        f"external_payment_id={payload.external_payment_id}, email={payload.email}, "
        f"amount={payload.amount}, plan_type={payload.plan_type}"
    )

    with tracer.start_as_current_span("webhook.process") as span:
        span.set_attribute("webhook.external_payment_id", payload.external_payment_id)
        span.set_attribute("webhook.event_type", payload.event_type)
        span.set_attribute("webhook.trace_id", trace_id)
        result = _process(payload, db, now, trace_id)
        span.set_attribute("webhook.outcome", result.outcome.value)

    elapsed = time.perf_counter() - start_time
    webhook_processing_seconds.observe(elapsed)
    webhook_events_counter.labels(outcome=result.outcome.value).inc()
    logger.info(f"[{trace_id}] Webhook finished in {elapsed * 1000:.0f}ms - outcome={result.outcome.value}")
    return result
