"""User resolution for incoming payments"""
import logging
import time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.user import User

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "pending.com"


def build_placeholder_email() -> str:
    """Synthesize a namespaced, time-derived email for payments that carry none"""
    return f"user-{time.time_ns()}@{PLACEHOLDER_EMAIL_DOMAIN}"


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def resolve_user(email: Optional[str], db: Session, trace_id: str = "") -> User:
    """Find the user for an email, creating it when absent

    A missing email gets a placeholder identity. Two concurrent no-email
    payments therefore produce two distinct placeholder users.
    """
    if not email:
        email = build_placeholder_email()
        logger.warning(f"[{trace_id}] Webhook has no email - using placeholder {email}")

    user = get_user_by_email(email, db)
    if user:
        return user

    logger.info(f"[{trace_id}] Creating new user: {email}")
    user = User(email=email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same email first
        db.rollback()
        user = get_user_by_email(email, db)
        if user is None:
            raise
        return user
    db.refresh(user)
    return user
