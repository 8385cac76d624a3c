from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, joinedload

from app.auth.rate_limiter import RELAXED, rate_limit
from app.database import get_db
from app.models.order import Order, OrderStatus
from app.schemas.orders import HallOfFameEntry, HallOfFameProject, HallOfFameResponse
from app.tiers import BANDS

router = APIRouter(prefix="/hall-of-fame", tags=["Hall of Fame"])


def _band_name(position: int):
    for band in BANDS.values():
        if band.contains(position):
            return band.name
    return None


@router.get("", response_model=HallOfFameResponse, dependencies=[Depends(rate_limit("hall-of-fame", RELAXED))])
async def hall_of_fame(db: Session = Depends(get_db)):
    """Public leaderboard: completed orders holding a position, best first"""
    orders = (
        db.query(Order)
        .options(joinedload(Order.user), joinedload(Order.project))
        .filter(
            Order.status == OrderStatus.COMPLETED,
            Order.hall_of_fame_position.isnot(None),
        )
        .order_by(Order.hall_of_fame_position)
        .all()
    )

    entries = []
    for order in orders:
        entries.append(HallOfFameEntry(
            position=order.hall_of_fame_position,
            tier=_band_name(order.hall_of_fame_position),
            project_name=order.project_name,
            display_name=order.user.display_name if order.user else None,
            project=HallOfFameProject.model_validate(order.project) if order.project else None,
        ))
    return HallOfFameResponse(entries=entries)
