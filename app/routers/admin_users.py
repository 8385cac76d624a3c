"""
Admin user listing with order counts.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.auth.dependencies import require_admin
from app.auth.rate_limiter import STANDARD, rate_limit
from app.database import get_db
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.schemas.admin import AdminUserListResponse, AdminUserResponse, UserEmailResponse
from app.schemas.auth import EmailVerifiedResponse
from app.services.email_verification import mark_verified

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/users",
    tags=["Admin Users"],
    dependencies=[Depends(rate_limit("admin", STANDARD))],
)


@router.get("", response_model=AdminUserListResponse)
def list_users(
    search: str = Query(None, description="Search by email or display name"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    order_count = func.count(Order.id)
    completed_count = func.coalesce(
        func.sum(case((Order.status == OrderStatus.COMPLETED, 1), else_=0)), 0
    )

    query = (
        db.query(User, order_count, completed_count)
        .outerjoin(Order, Order.user_id == User.id)
        .group_by(User.id)
    )
    if search:
        query = query.filter(
            (User.email.ilike(f"%{search}%")) |
            (User.display_name.ilike(f"%{search}%"))
        )

    rows = query.order_by(User.created_at.desc()).offset(offset).limit(limit).all()

    users = [
        AdminUserResponse(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            email_verified=user.email_verified,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
            order_count=orders or 0,
            completed_order_count=completed or 0,
        )
        for user, orders, completed in rows
    ]
    return AdminUserListResponse(users=users)


@router.get("/{user_id}/email", response_model=UserEmailResponse)
def get_user_email(
    user_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserEmailResponse(email=user.email)


@router.post("/{user_id}/verify-email", response_model=EmailVerifiedResponse)
def verify_user_email(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Mark a user's email verified by hand and link their guest orders"""
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    linked = mark_verified(db, user)
    logger.info("Admin %s verified email for user %s (%s orders linked)", admin.id, user.id, linked)
    return EmailVerifiedResponse(orders_linked=linked)
