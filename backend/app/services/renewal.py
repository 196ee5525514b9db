"""Subscription renewal arithmetic"""
from datetime import datetime, timedelta

from app.models.subscription import SubscriptionStatus
from app.utils.timeutils import ensure_utc


def compute_new_expiry(existing, duration_days: int, now: datetime) -> datetime:
    """New expiry for a renewal of `duration_days`

    An ACTIVE subscription that has not expired yet is extended from its
    current expiry, so renewing early never costs time. Anything else (no row,
    cancelled, already expired) restarts from `now`.

    `existing` is any object with `status` and `expires_at`, or None. Pure: no
    store access.
    """
    now = ensure_utc(now)
    expires_at = ensure_utc(existing.expires_at) if existing is not None else None

    if (
        existing is not None
        and existing.status == SubscriptionStatus.ACTIVE.value
        and expires_at is not None
        and expires_at > now
    ):
        return expires_at + timedelta(days=duration_days)

    return now + timedelta(days=duration_days)
