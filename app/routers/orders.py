import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.auth.dependencies import get_current_user
from app.database import get_db
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.schemas.orders import IdeaUpdate, LinkResponse, OrderResponse
from app.services.account_linking import link_orders_for_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/link-by-email", response_model=LinkResponse)
async def link_by_email(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Attach guest orders (and orders on duplicate accounts) to the caller"""
    if not current_user.email_verified:
        return LinkResponse(linked=0, message="Verify your email address to link orders")

    linked = link_orders_for_user(db, current_user)
    if linked:
        message = f"Linked {linked} order(s) to your account"
    else:
        message = "No orders to link"
    return LinkResponse(linked=linked, message=message)


@router.get("/mine", response_model=List[OrderResponse])
async def my_orders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return (
        db.query(Order)
        .filter(Order.user_id == current_user.id)
        .order_by(Order.created_at.desc())
        .all()
    )


@router.patch("/{order_id}/idea", response_model=OrderResponse)
async def submit_idea(
    order_id: int,
    body: IdeaUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Describe the app to build for a paid order"""
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None or order.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    if order.status != OrderStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Ideas can only be submitted for completed orders",
        )

    order.idea_description = body.idea_description
    if body.project_name is not None:
        order.project_name = body.project_name
    db.commit()
    db.refresh(order)

    logger.info("User %s submitted idea for order %s", current_user.id, order.id)
    return order
