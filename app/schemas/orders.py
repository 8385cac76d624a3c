from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.order import OrderStatus, PaymentProviderName
from app.schemas.base import CamelModel


class OrderResponse(CamelModel):
    id: int
    provider: PaymentProviderName
    amount: int
    status: OrderStatus
    hall_of_fame_position: Optional[int] = None
    idea_description: Optional[str] = None
    project_name: Optional[str] = None
    project_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class IdeaUpdate(CamelModel):
    idea_description: str = Field(..., min_length=1, max_length=5000)
    project_name: Optional[str] = Field(None, max_length=255)


class LinkResponse(CamelModel):
    linked: int
    message: str


class HallOfFameProject(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    live_url: Optional[str] = None
    github_url: Optional[str] = None


class HallOfFameEntry(CamelModel):
    position: int
    tier: Optional[str] = None
    project_name: Optional[str] = None
    display_name: Optional[str] = None
    project: Optional[HallOfFameProject] = None


class HallOfFameResponse(CamelModel):
    entries: List[HallOfFameEntry]
