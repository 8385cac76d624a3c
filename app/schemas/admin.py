from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.order import OrderStatus, PaymentProviderName
from app.schemas.base import CamelModel


class AdminOrderResponse(CamelModel):
    id: int
    provider: PaymentProviderName
    provider_session_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    amount: int
    status: OrderStatus
    user_id: Optional[int] = None
    payer_email: Optional[str] = None
    hall_of_fame_position: Optional[int] = None
    idea_description: Optional[str] = None
    project_name: Optional[str] = None
    project_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class OrderStatusUpdate(CamelModel):
    status: OrderStatus


class LinkProjectRequest(CamelModel):
    project_id: Optional[int] = None


class AdminUserResponse(CamelModel):
    id: int
    email: str
    display_name: Optional[str] = None
    email_verified: bool = False
    created_at: datetime
    last_login_at: Optional[datetime] = None
    order_count: int = 0
    completed_order_count: int = 0


class AdminUserListResponse(CamelModel):
    users: List[AdminUserResponse]


class UserEmailResponse(CamelModel):
    email: str


class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=1024)
    live_url: Optional[str] = Field(None, max_length=1024)
    github_url: Optional[str] = Field(None, max_length=1024)
    featured: bool = False


class ProjectResponse(ProjectCreate):
    id: int
    created_at: datetime
