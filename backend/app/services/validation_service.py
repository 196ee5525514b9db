"""Business-rule validation for payment webhooks"""
import enum
import logging
from typing import Optional

from app.core.config import settings
from app.core.metrics import webhook_amount_mismatch_counter
from app.core.plans import PlanType

logger = logging.getLogger(__name__)


class RejectionReason(str, enum.Enum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PLAN = "INVALID_PLAN"


def validate_payment(amount, plan_type, trace_id: str = "", tolerance: Optional[int] = None) -> Optional[RejectionReason]:
    """Return None if the payment may be applied, otherwise the rejection reason

    Rules run in order: positive integer amount, known plan type. An amount that
    differs from the plan price by more than the tolerance is logged but
    accepted.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        logger.error(f"[{trace_id}] Invalid amount: {amount}")
        return RejectionReason.INVALID_AMOUNT

    plan = PlanType.parse(plan_type)
    if plan is None:
        logger.error(f"[{trace_id}] Invalid plan type: {plan_type}")
        return RejectionReason.INVALID_PLAN

    if tolerance is None:
        tolerance = settings.PRICE_MISMATCH_TOLERANCE
    if abs(amount - plan.expected_price) > tolerance:
        webhook_amount_mismatch_counter.labels(plan_type=plan.value).inc()
        logger.warning(
            f"[{trace_id}] Amount mismatch for {plan.value}: expected {plan.expected_price}, got {amount}"
        )

    return None
