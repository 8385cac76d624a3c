"""
Email address verification.

Verification tokens are signed JWTs (type "email_verify") bound to the address
they were issued for. Confirming one marks the account verified and links any
orders paid with that address.
"""
import logging
from datetime import datetime, timezone
from typing import Tuple

from sqlalchemy.orm import Session

from app.auth.security import create_email_verification_token, token_user_id, verify_token
from app.config import settings
from app.models.user import User
from app.services.account_linking import link_orders_for_user

logger = logging.getLogger(__name__)


class InvalidVerificationTokenError(ValueError):
    pass


def verification_link(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/verify-email?token={token}"


def send_verification_email(user: User) -> str:
    """Issue a verification token for the user's current address. Returns the token."""
    token = create_email_verification_token(user.id, user.email)
    # TODO: deliver through a transactional mail provider; production accounts are verified by an admin until then
    if settings.is_production:
        logger.info("Issued email verification for user %s", user.id)
    else:
        logger.info("Email verification link for user %s: %s", user.id, verification_link(token))
    return token


def mark_verified(db: Session, user: User) -> int:
    """Mark the address verified and link orders paid with it. Returns orders linked."""
    if not user.email_verified:
        user.email_verified = True
        user.email_verified_at = datetime.now(timezone.utc)
        db.commit()
        logger.info("Verified email for user %s", user.id)
    return link_orders_for_user(db, user)


def confirm_email(db: Session, token: str) -> Tuple[User, int]:
    payload = verify_token(token, expected_type="email_verify")
    user_id = token_user_id(payload) if payload else None
    if user_id is None:
        raise InvalidVerificationTokenError("Invalid or expired verification token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or user.email.strip().lower() != payload.get("email"):
        raise InvalidVerificationTokenError("Verification token does not match this account")

    return user, mark_verified(db, user)
