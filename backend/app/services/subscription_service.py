"""Subscription activation, renewal and lookups"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.plans import PlanType
from app.models.subscription import Subscription, SubscriptionStatus
from app.services.renewal import compute_new_expiry
from app.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _subscription_query(user_id: int, plan_type: str, db: Session):
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.plan_type == plan_type
    )


def activate_or_extend_subscription(
    user_id: int,
    plan: PlanType,
    db: Session,
    now: Optional[datetime] = None,
    trace_id: str = ""
) -> Subscription:
    """Upsert the (user, plan) subscription as ACTIVE with a renewed expiry

    Must run inside the caller's transaction; the caller commits. The current
    row is read with a row lock so two renewals of the same subscription
    cannot both extend from the same stale expiry. A concurrent first
    activation surfaces as a uniqueness conflict on insert, after which the
    winner's row is locked and extended instead.
    """
    now = now or utcnow()
    existing = _subscription_query(user_id, plan.value, db).with_for_update().one_or_none()

    if existing is None:
        subscription = Subscription(
            user_id=user_id,
            plan_type=plan.value,
            status=SubscriptionStatus.ACTIVE.value,
            started_at=now,
            expires_at=compute_new_expiry(None, plan.duration_days, now),
            updated_at=now,
        )
        try:
            with db.begin_nested():
                db.add(subscription)
        except IntegrityError:
            logger.warning(f"[{trace_id}] Concurrent activation for user {user_id} ({plan.value}), extending winner")
            existing = _subscription_query(user_id, plan.value, db).with_for_update().one()
        else:
            logger.info(
                f"[{trace_id}] Activating subscription {subscription.id} for user {user_id} ({plan.value}), "
                f"expires {subscription.expires_at.isoformat()}"
            )
            return subscription

    new_expiry = compute_new_expiry(existing, plan.duration_days, now)
    logger.info(
        f"[{trace_id}] Renewing subscription {existing.id} ({plan.value}) "
        f"from {ensure_utc(existing.expires_at).isoformat() if existing.expires_at else None} to {new_expiry.isoformat()}"
    )
    existing.status = SubscriptionStatus.ACTIVE.value
    existing.expires_at = new_expiry
    existing.updated_at = now
    db.flush()
    return existing


def get_user_subscription(user_id: int, plan_type: str, db: Session) -> Optional[Subscription]:
    return _subscription_query(user_id, plan_type, db).first()


def is_subscription_active(user_id: int, plan_type: str, db: Session, now: Optional[datetime] = None) -> bool:
    """True only when the subscription exists, is ACTIVE and expires in the future"""
    subscription = get_user_subscription(user_id, plan_type, db)
    if not subscription:
        return False
    if subscription.status != SubscriptionStatus.ACTIVE.value:
        return False
    if subscription.expires_at is None:
        return False
    return ensure_utc(subscription.expires_at) > ensure_utc(now or utcnow())


def get_user_active_subscriptions(user_id: int, db: Session, now: Optional[datetime] = None) -> List[Subscription]:
    now = ensure_utc(now or utcnow())
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.expires_at > now
    ).order_by(Subscription.expires_at).all()


def cancel_subscription(user_id: int, plan_type: str, db: Session) -> Subscription:
    """Mark a subscription CANCELLED; the row and its expiry are kept

    Raises:
        ValueError: If the user has no subscription for this plan
    """
    subscription = get_user_subscription(user_id, plan_type, db)
    if not subscription:
        raise ValueError(f"Subscription not found for user {user_id} ({plan_type})")

    subscription.status = SubscriptionStatus.CANCELLED.value
    db.commit()
    db.refresh(subscription)

    expires_at = ensure_utc(subscription.expires_at)
    logger.info(
        f"Subscription cancelled: {subscription.id} "
        f"(expires {expires_at.isoformat() if expires_at else 'never'})"
    )
    return subscription
