"""
Decide which account a payment belongs to.

Priority:
1. The user whose session made the reconciliation request
2. The user id stored in the payment metadata at checkout (unless "guest")
3. The verified account whose email matches the payer email (case-insensitive)
4. Nobody: the order stays a guest order until linked by email
"""
import logging
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.user import User

logger = logging.getLogger(__name__)

GUEST_SENTINEL = "guest"


def find_verified_user_by_email(db: Session, email: Optional[str]) -> Optional[User]:
    if not email or not email.strip():
        return None
    return (
        db.query(User)
        .filter(
            func.lower(User.email) == email.strip().lower(),
            User.email_verified.is_(True),
        )
        .order_by(User.id)
        .first()
    )


def _metadata_user_id(db: Session, value: Union[str, int, None]) -> Optional[int]:
    if value is None or value == "" or value == GUEST_SENTINEL:
        return None
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed metadata user_id: %r", value)
        return None

    exists = db.query(User.id).filter(User.id == user_id).first()
    if not exists:
        logger.warning("Metadata user_id %s does not match any account", user_id)
        return None
    return user_id


def resolve_user_id(
    db: Session,
    session_user_id: Optional[int] = None,
    metadata_user_id: Union[str, int, None] = None,
    payer_email: Optional[str] = None,
) -> Optional[int]:
    if session_user_id:
        return session_user_id

    from_metadata = _metadata_user_id(db, metadata_user_id)
    if from_metadata:
        return from_metadata

    user = find_verified_user_by_email(db, payer_email)
    if user:
        logger.info("Resolved payer %s to user %s by email", payer_email, user.id)
        return user.id

    return None
