"""
Order reconciliation: the single path by which provider payments become orders.

Webhooks, client-side completion calls and PayPal captures all land here and
may race each other. Safety relies on:
- unique (provider, session id) and (provider, payment id) constraints, with a
  losing insert resolving to the row that won
- allocate_next_position() locking the band row in the same transaction that
  writes the position
- never reassigning a position or moving an order out of completed

Orders are never created for a payment the provider does not report as succeeded.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.integrations.base import FAILED, PaymentProvider, ProviderPayment
from app.models.order import Order, OrderStatus, PaymentProviderName
from app.services.positions import allocate_next_position
from app.services.user_resolver import resolve_user_id
from app.tiers import UnknownTierError, band_for_amount, get_tier, tier_for_amount

logger = logging.getLogger(__name__)


class PaymentNotSucceededError(Exception):
    def __init__(self, payment_status: Optional[str]):
        super().__init__(f"Payment not completed (status: {payment_status})")
        self.payment_status = payment_status


class AmountMismatchError(ValueError):
    pass


@dataclass
class ReconcileResult:
    order: Order
    created: bool
    position_assigned: bool


def find_existing_order(
    db: Session,
    provider_name: PaymentProviderName,
    payment_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Optional[Order]:
    """Look up by payment id first, then by session id."""
    if payment_id:
        order = db.query(Order).filter(
            Order.provider == provider_name,
            Order.provider_payment_id == payment_id,
        ).first()
        if order:
            return order

    if session_id:
        return db.query(Order).filter(
            Order.provider == provider_name,
            Order.provider_session_id == session_id,
        ).first()

    return None


def order_amount_for_payment(payment: ProviderPayment) -> int:
    """
    Tier price from checkout metadata, falling back to the paid amount.

    Raises AmountMismatchError when neither identifies a tier.
    """
    if payment.tier:
        try:
            return get_tier(payment.tier).amount_cents
        except UnknownTierError:
            logger.warning("Payment %s carries unknown tier %r", payment.payment_id, payment.tier)

    tier = tier_for_amount(payment.amount)
    if tier is None:
        raise AmountMismatchError(f"Amount {payment.amount} does not match any tier")
    return tier.amount_cents


def _insert_completed_order(
    db: Session,
    payment: ProviderPayment,
    provider_name: PaymentProviderName,
    session_user_id: Optional[int],
) -> tuple:
    """Insert a completed order. Returns (order, created)."""
    amount = order_amount_for_payment(payment)
    order = Order(
        provider=provider_name,
        provider_session_id=payment.session_id,
        provider_payment_id=payment.payment_id,
        amount=amount,
        status=OrderStatus.COMPLETED,
        completed_at=datetime.now(timezone.utc),
        payer_email=payment.payer_email,
        user_id=resolve_user_id(db, session_user_id, payment.metadata_user_id, payment.payer_email),
    )
    try:
        with db.begin_nested():
            db.add(order)
    except IntegrityError:
        logger.info(
            "Concurrent insert for %s payment %s; using the existing order",
            provider_name.value, payment.payment_id,
        )
        existing = find_existing_order(db, provider_name, payment.payment_id, payment.session_id)
        if existing is None:
            raise
        return existing, False

    logger.info("Created order %s for %s payment %s", order.id, provider_name.value, payment.payment_id)
    return order, True


def _complete_existing_order(
    db: Session,
    order: Order,
    payment: ProviderPayment,
    provider_name: PaymentProviderName,
    session_user_id: Optional[int],
):
    if not order.provider_payment_id and payment.payment_id:
        order.provider_payment_id = payment.payment_id

    if not order.provider_session_id and payment.session_id:
        other = find_existing_order(db, provider_name, session_id=payment.session_id)
        if other is None:
            order.provider_session_id = payment.session_id
        else:
            logger.warning(
                "Session %s already belongs to order %s; not copying onto order %s",
                payment.session_id, other.id, order.id,
            )

    if not order.payer_email and payment.payer_email:
        order.payer_email = payment.payer_email

    if order.user_id is None:
        order.user_id = resolve_user_id(db, session_user_id, payment.metadata_user_id, payment.payer_email)

    if order.status != OrderStatus.COMPLETED:
        if order.status == OrderStatus.FAILED:
            logger.warning("Order %s was failed but provider reports payment succeeded", order.id)
        order.status = OrderStatus.COMPLETED
        order.completed_at = datetime.now(timezone.utc)

    db.flush()


def assign_position(db: Session, order: Order) -> bool:
    """Assign a Hall of Fame position once. Failures are logged, never fatal."""
    if order.hall_of_fame_position is not None:
        return False
    if band_for_amount(order.amount) is None:
        return False

    try:
        with db.begin_nested():
            position = allocate_next_position(db, order.amount)
            if position is None:
                return False
            order.hall_of_fame_position = position
            db.flush()
    except SQLAlchemyError as e:
        logger.error("Position allocation failed for order %s: %s", order.id, e)
        return False

    logger.info("Assigned Hall of Fame position %s to order %s", position, order.id)
    return True


def apply_payment(
    db: Session,
    payment: ProviderPayment,
    session_user_id: Optional[int] = None,
) -> ReconcileResult:
    """Bring the order table in line with a payment the provider reported."""
    provider_name = PaymentProviderName(payment.provider)

    if not payment.succeeded:
        if payment.status == FAILED:
            mark_payment_failed(db, provider_name, payment.payment_id, payment.session_id)
        raise PaymentNotSucceededError(payment.raw_status)

    order = find_existing_order(db, provider_name, payment.payment_id, payment.session_id)
    created = False
    if order is None:
        order, created = _insert_completed_order(db, payment, provider_name, session_user_id)
    if not created:
        _complete_existing_order(db, order, payment, provider_name, session_user_id)

    position_assigned = assign_position(db, order)

    db.commit()
    db.refresh(order)
    return ReconcileResult(order=order, created=created, position_assigned=position_assigned)


def reconcile_payment(
    db: Session,
    provider: PaymentProvider,
    reference: str,
    session_user_id: Optional[int] = None,
    capture: bool = False,
) -> ReconcileResult:
    """
    Fetch the payment from the provider and reconcile it.

    capture=True runs the provider's capture step first (PayPal); for other
    providers it is a plain fetch.
    Raises ProviderError, PaymentNotSucceededError or AmountMismatchError.
    """
    if capture:
        payment = provider.capture_payment(reference)
    else:
        payment = provider.retrieve_payment(reference)
    return apply_payment(db, payment, session_user_id)


def reconcile_session(
    db: Session,
    provider: PaymentProvider,
    session_id: str,
    session_user_id: Optional[int] = None,
) -> ReconcileResult:
    """Reconcile by checkout session id when the client has no payment id."""
    reference = provider.payment_reference_for_session(session_id)
    if not reference:
        raise PaymentNotSucceededError("pending")
    return reconcile_payment(db, provider, reference, session_user_id)


def mark_payment_failed(
    db: Session,
    provider_name: PaymentProviderName,
    payment_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> int:
    """Move matching pending orders to failed. Completed orders are left alone."""
    conditions = []
    if payment_id:
        conditions.append(Order.provider_payment_id == payment_id)
    if session_id:
        conditions.append(Order.provider_session_id == session_id)
    if not conditions:
        return 0

    updated = db.query(Order).filter(
        Order.provider == provider_name,
        Order.status == OrderStatus.PENDING,
        or_(*conditions),
    ).update({Order.status: OrderStatus.FAILED}, synchronize_session=False)
    db.commit()

    if updated:
        logger.info(
            "Marked %s pending %s order(s) failed (payment=%s, session=%s)",
            updated, provider_name.value, payment_id, session_id,
        )
    return updated


def create_pending_order(
    db: Session,
    provider_name: PaymentProviderName,
    session_id: str,
    amount_cents: int,
    user_id: Optional[int] = None,
) -> Optional[Order]:
    """
    Best-effort pending order at checkout creation. Never blocks the checkout.

    payer_email stays empty until the provider reports it at completion.
    """
    order = Order(
        provider=provider_name,
        provider_session_id=session_id,
        amount=amount_cents,
        status=OrderStatus.PENDING,
        user_id=user_id,
    )
    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Could not pre-create pending order for session %s: %s", session_id, e)
        return None

    db.refresh(order)
    return order
