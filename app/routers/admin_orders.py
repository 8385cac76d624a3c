"""
Admin order and project management.

Admins may complete or fail an order by hand; an order never goes back to
pending. Completing an eligible order assigns a Hall of Fame position the
same way reconciliation does.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.auth.dependencies import require_admin
from app.auth.rate_limiter import STANDARD, rate_limit
from app.database import get_db
from app.models.order import Order, OrderStatus, PaymentProviderName
from app.models.project import Project
from app.models.user import User
from app.schemas.admin import (
    AdminOrderResponse,
    LinkProjectRequest,
    OrderStatusUpdate,
    ProjectCreate,
    ProjectResponse,
)
from app.services.reconciliation import assign_position

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin Orders"],
    dependencies=[Depends(rate_limit("admin", STANDARD))],
)


def _get_order(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.get("/orders", response_model=List[AdminOrderResponse])
def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    provider: Optional[PaymentProviderName] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    query = db.query(Order)
    if order_status:
        query = query.filter(Order.status == order_status)
    if provider:
        query = query.filter(Order.provider == provider)
    return query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()


@router.post("/orders/{order_id}/status", response_model=AdminOrderResponse)
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    order = _get_order(db, order_id)

    if body.status == OrderStatus.PENDING and order.status != OrderStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order is {order.status.value}; it cannot go back to pending",
        )

    previous = order.status
    order.status = body.status
    if body.status == OrderStatus.COMPLETED and order.completed_at is None:
        order.completed_at = datetime.now(timezone.utc)
    db.flush()

    if body.status == OrderStatus.COMPLETED:
        assign_position(db, order)

    db.commit()
    db.refresh(order)
    logger.info("Admin %s changed order %s status %s -> %s", admin.id, order.id, previous.value, order.status.value)
    return order


@router.post("/orders/{order_id}/project", response_model=AdminOrderResponse)
def link_project(
    order_id: int,
    body: LinkProjectRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Attach a deployed project to an order (projectId null detaches)"""
    order = _get_order(db, order_id)

    if body.project_id is not None:
        project = db.query(Project).filter(Project.id == body.project_id).first()
        if project is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    order.project_id = body.project_id
    db.commit()
    db.refresh(order)
    logger.info("Admin %s linked order %s to project %s", admin.id, order.id, body.project_id)
    return order


@router.get("/projects", response_model=List[ProjectResponse])
def list_projects(
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return db.query(Project).order_by(Project.created_at.desc()).all()


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    body: ProjectCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    project = Project(**body.model_dump())
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("Admin %s created project %s (%s)", admin.id, project.id, project.name)
    return project
