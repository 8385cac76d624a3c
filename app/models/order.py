import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base


class PaymentProviderName(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    DODO = "dodo"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Base):
    """
    One purchased tier.

    provider_session_id is the checkout session (Stripe session, PayPal order,
    Dodo checkout session); provider_payment_id is the settled payment
    (Stripe payment intent, PayPal capture, Dodo payment).
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(Enum(PaymentProviderName), nullable=False)
    provider_session_id = Column(String(255), nullable=True, index=True)
    provider_payment_id = Column(String(255), nullable=True, index=True)

    amount = Column(Integer, nullable=False)  # cents
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    # NULL = guest order, linked later by payer_email
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    payer_email = Column(String(255), nullable=True, index=True)

    # Assigned at most once, never reassigned by automated code
    hall_of_fame_position = Column(Integer, nullable=True, unique=True)

    idea_description = Column(Text, nullable=True)
    project_name = Column(String(255), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="orders")
    project = relationship("Project")

    __table_args__ = (
        UniqueConstraint("provider", "provider_session_id", name="uq_orders_provider_session"),
        UniqueConstraint("provider", "provider_payment_id", name="uq_orders_provider_payment"),
    )
