"""Payment records: idempotent creation and read helpers"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.payment import Payment, PaymentStatus

logger = logging.getLogger(__name__)


def find_payment_by_external_id(external_payment_id: str, db: Session) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.external_payment_id == external_payment_id).first()


def create_payment(
    user_id: int,
    external_payment_id: str,
    amount: int,
    currency: str,
    plan_type: str,
    db: Session,
    payment_method: Optional[str] = None,
    provider: Optional[str] = None,
    metadata: Optional[Any] = None,
) -> Tuple[Payment, bool]:
    """Create a COMPLETED payment, or resolve to the existing one for the same external id

    Runs inside a SAVEPOINT so a uniqueness conflict leaves the caller's
    transaction usable. The caller commits.

    Returns:
        (payment, created) - created is False when the external id was already recorded
    """
    payment = Payment(
        user_id=user_id,
        external_payment_id=external_payment_id,
        amount=amount,
        currency=currency,
        plan_type=plan_type,
        payment_method=payment_method,
        provider=provider,
        status=PaymentStatus.COMPLETED.value,
        payment_metadata=metadata,
    )
    try:
        with db.begin_nested():
            db.add(payment)
    except IntegrityError:
        existing = find_payment_by_external_id(external_payment_id, db)
        if existing is None:
            raise
        logger.warning(f"Duplicate payment detected: {external_payment_id} (existing payment {existing.id})")
        return existing, False

    logger.info(f"Payment created: {payment.id} ({external_payment_id})")
    return payment, True


def get_user_payments(user_id: int, db: Session, limit: int = 20) -> List[Payment]:
    """Most recent payments first"""
    return (
        db.query(Payment)
        .filter(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(limit)
        .all()
    )


def get_payment_stats(user_id: int, db: Session) -> Dict[str, Any]:
    total_payments, total_amount = (
        db.query(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.user_id == user_id)
        .one()
    )
    completed_payments = (
        db.query(func.count(Payment.id))
        .filter(Payment.user_id == user_id, Payment.status == PaymentStatus.COMPLETED.value)
        .scalar()
    )
    return {
        "total_payments": total_payments,
        "completed_payments": completed_payments,
        "total_amount": int(total_amount),
        "average_amount": (total_amount / total_payments) if total_payments else 0,
    }
