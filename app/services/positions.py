"""
Hall of Fame position allocation and availability.

allocate_next_position() is authoritative: it locks the band row and must run
in the same transaction that writes the position onto the order, so the lock
is held until that commit. is_tier_available() is an advisory read for the UI
and may be stale by the time the buyer pays.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.leaderboard_band import LeaderboardBand
from app.models.order import Order
from app.tiers import Band, band_for_amount

logger = logging.getLogger(__name__)


def _lock_band(db: Session, band: Band) -> LeaderboardBand:
    """SELECT ... FOR UPDATE the band row, creating it on first use."""
    row = (
        db.query(LeaderboardBand)
        .filter(LeaderboardBand.name == band.name)
        .with_for_update()
        .first()
    )
    if row is not None:
        return row

    try:
        with db.begin_nested():
            db.add(LeaderboardBand(
                name=band.name,
                first_position=band.first_position,
                last_position=band.last_position,
            ))
    except IntegrityError:
        logger.info("Band row %s created concurrently, locking existing row", band.name)

    return (
        db.query(LeaderboardBand)
        .filter(LeaderboardBand.name == band.name)
        .with_for_update()
        .one()
    )


def _taken_positions(db: Session, band: Band) -> set:
    rows = (
        db.query(Order.hall_of_fame_position)
        .filter(Order.hall_of_fame_position.between(band.first_position, band.last_position))
        .all()
    )
    return {row[0] for row in rows}


def allocate_next_position(db: Session, amount_cents: int) -> Optional[int]:
    """
    Return the lowest free position in the band for this amount.

    Returns None when the amount has no band or the band is full.
    The caller must assign the returned position and commit in the same
    transaction.
    """
    band = band_for_amount(amount_cents)
    if band is None:
        return None

    _lock_band(db, band)
    taken = _taken_positions(db, band)

    for position in range(band.first_position, band.last_position + 1):
        if position not in taken:
            return position

    logger.warning("Band %s is full (%s positions)", band.name, band.size)
    return None


def remaining_slots(db: Session, amount_cents: int) -> Optional[int]:
    """Free positions left in the band, or None when the amount has no band."""
    band = band_for_amount(amount_cents)
    if band is None:
        return None

    used = (
        db.query(func.count(Order.id))
        .filter(Order.hall_of_fame_position.between(band.first_position, band.last_position))
        .scalar()
    )
    return max(band.size - (used or 0), 0)


def is_tier_available(db: Session, amount_cents: int) -> bool:
    remaining = remaining_slots(db, amount_cents)
    return remaining is None or remaining > 0
