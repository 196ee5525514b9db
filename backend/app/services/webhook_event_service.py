"""Webhook event log: the deduplication gate and event status bookkeeping"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.webhook_event import WebhookEvent, WebhookStatus
from app.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def find_webhook_event(external_payment_id: str, event_type: str, db: Session) -> Optional[WebhookEvent]:
    """Look up the event for an idempotency key (external_payment_id, event_type)"""
    return db.query(WebhookEvent).filter(
        WebhookEvent.external_payment_id == external_payment_id,
        WebhookEvent.event_type == event_type
    ).first()


def _stale_cutoff(now: datetime, stale_after_seconds: Optional[int]) -> datetime:
    if stale_after_seconds is None:
        stale_after_seconds = settings.WEBHOOK_STALE_AFTER_SECONDS
    return ensure_utc(now) - timedelta(seconds=stale_after_seconds)


def is_reclaimable(event: WebhookEvent, now: Optional[datetime] = None, stale_after_seconds: Optional[int] = None) -> bool:
    """True for a RECEIVED event old enough that its original handler is presumed dead

    PROCESSED and FAILED events are final and always count as duplicates; a
    fresh RECEIVED event is most likely still being handled.
    """
    if event.status != WebhookStatus.RECEIVED.value:
        return False
    return ensure_utc(event.received_at) <= _stale_cutoff(now or utcnow(), stale_after_seconds)


def record_received_event(
    external_payment_id: str,
    event_type: str,
    payload: Dict[str, Any],
    db: Session,
    now: Optional[datetime] = None
) -> Optional[WebhookEvent]:
    """Insert the RECEIVED row for a new delivery and commit it

    Returns None when a concurrent delivery inserted the same key first.
    """
    event = WebhookEvent(
        external_payment_id=external_payment_id,
        event_type=event_type,
        status=WebhookStatus.RECEIVED.value,
        payload=payload,
        received_at=now or utcnow(),
    )
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Webhook event ({external_payment_id}, {event_type}) was recorded concurrently")
        return None
    db.refresh(event)
    return event


def claim_stale_event(
    event_id: int,
    payload: Dict[str, Any],
    db: Session,
    now: Optional[datetime] = None,
    stale_after_seconds: Optional[int] = None
) -> bool:
    """Atomically take over a stale RECEIVED event

    The conditional UPDATE only matches while the row is still RECEIVED and
    stale, so exactly one of several concurrent redeliveries wins. received_at
    is moved to the claim time.
    """
    now = now or utcnow()
    claimed = db.query(WebhookEvent).filter(
        WebhookEvent.id == event_id,
        WebhookEvent.status == WebhookStatus.RECEIVED.value,
        WebhookEvent.received_at <= _stale_cutoff(now, stale_after_seconds)
    ).update(
        {
            WebhookEvent.received_at: now,
            WebhookEvent.payload: payload,
            WebhookEvent.error_message: None,
        },
        synchronize_session=False
    )
    db.commit()
    return claimed == 1


def mark_event_processed(event_id: int, db: Session, now: Optional[datetime] = None) -> WebhookEvent:
    """Flag the event PROCESSED inside the caller's transaction (no commit)"""
    event = db.query(WebhookEvent).filter(WebhookEvent.id == event_id).one()
    event.status = WebhookStatus.PROCESSED.value
    event.processed_at = now or utcnow()
    event.error_message = None
    db.flush()
    return event


def mark_event_failed(event_id: int, error_message: str, db: Session) -> None:
    """Terminal failure: the event will never be applied

    Used for validation rejections, which move the row to FAILED instead of
    leaving it RECEIVED so a redelivery is answered as a duplicate.
    """
    event = db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
    if not event:
        return
    event.status = WebhookStatus.FAILED.value
    event.error_message = error_message
    db.commit()


def record_event_error(event_id: int, error_message: str, db: Session) -> None:
    """Store the last processing error while leaving the event RECEIVED for redelivery"""
    event = db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
    if not event or event.status != WebhookStatus.RECEIVED.value:
        return
    event.error_message = error_message[:2000]
    db.commit()
