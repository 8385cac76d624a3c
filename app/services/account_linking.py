"""
Attach orders to the account that owns the buyer's email.

Only accounts with a verified email are linked. Two passes, both
case-insensitive on email:
1. Orders held by other accounts with the same email move to this account
   (duplicate sign-ups through different login methods)
2. Guest orders whose payer_email matches are claimed

Safe to call on every login.
"""
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.order import Order
from app.models.user import User

logger = logging.getLogger(__name__)


def link_orders_for_user(db: Session, user: User) -> int:
    """Returns the number of orders attached to the user. Errors are logged and give 0."""
    if not user.email or not user.email.strip():
        return 0
    if not user.email_verified:
        logger.info("Skipping order linking for user %s: email not verified", user.id)
        return 0
    email = user.email.strip().lower()

    try:
        duplicate_ids = [
            row[0] for row in db.query(User.id).filter(
                func.lower(User.email) == email,
                User.id != user.id,
            ).all()
        ]

        moved = 0
        if duplicate_ids:
            moved = db.query(Order).filter(
                Order.user_id.in_(duplicate_ids),
            ).update({Order.user_id: user.id}, synchronize_session=False)

        claimed = db.query(Order).filter(
            Order.user_id.is_(None),
            func.lower(Order.payer_email) == email,
        ).update({Order.user_id: user.id}, synchronize_session=False)

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to link orders for user %s: %s", user.id, e)
        return 0

    if moved or claimed:
        logger.info(
            "Linked orders to user %s: %s from duplicate accounts, %s guest orders",
            user.id, moved, claimed,
        )
    return moved + claimed
