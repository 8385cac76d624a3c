from typing import List, Optional

from pydantic import Field, model_validator

from app.models.order import OrderStatus, PaymentProviderName
from app.schemas.base import CamelModel


class TierInfo(CamelModel):
    name: str
    display_name: str
    description: str
    amount: int
    price: str
    first_position: Optional[int] = None
    last_position: Optional[int] = None
    remaining: Optional[int] = None
    available: bool


class TierListResponse(CamelModel):
    tiers: List[TierInfo]


class CheckoutCreateRequest(CamelModel):
    tier: str


class CheckoutCreateResponse(CamelModel):
    checkout_url: str
    session_id: str
    provider: PaymentProviderName


class CompleteRequest(CamelModel):
    payment_id: Optional[str] = Field(None, max_length=255)
    session_id: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def require_reference(self):
        if not self.payment_id and not self.session_id:
            raise ValueError("paymentId or sessionId is required")
        return self


class CaptureRequest(CamelModel):
    order_id: str = Field(..., min_length=1, max_length=255)


class ReconciledOrder(CamelModel):
    id: int
    status: OrderStatus
    amount: int
    hall_of_fame_position: Optional[int] = None


class CompleteResponse(CamelModel):
    success: bool = True
    order: ReconciledOrder
    created: bool
    position_assigned: bool


class SessionInfoResponse(CamelModel):
    session_id: str
    status: Optional[str] = None
    payment_id: Optional[str] = None
    customer_email: Optional[str] = None
    amount: Optional[int] = None


class WebhookAck(CamelModel):
    received: bool = True
