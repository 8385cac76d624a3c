"""
Checkout, completion and webhook endpoints for all payment providers.

Every completion path (webhook, client complete, PayPal capture) goes through
app.services.reconciliation, so the same payment can arrive on several paths
in any order.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.auth.dependencies import get_optional_user
from app.auth.rate_limiter import RELAXED, STANDARD, STRICT, rate_limit
from app.config import settings
from app.database import get_db
from app.integrations.base import (
    EVENT_FAILED,
    EVENT_SUCCEEDED,
    PaymentProvider,
    ProviderError,
    ProviderNotConfiguredError,
    WebhookVerificationError,
)
from app.integrations.providers import get_provider
from app.models.order import PaymentProviderName
from app.models.user import User
from app.schemas.checkout import (
    CaptureRequest,
    CheckoutCreateRequest,
    CheckoutCreateResponse,
    CompleteRequest,
    CompleteResponse,
    ReconciledOrder,
    SessionInfoResponse,
    TierInfo,
    TierListResponse,
    WebhookAck,
)
from app.services.positions import is_tier_available, remaining_slots
from app.services.reconciliation import (
    AmountMismatchError,
    PaymentNotSucceededError,
    ReconcileResult,
    create_pending_order,
    mark_payment_failed,
    reconcile_payment,
    reconcile_session,
)
from app.tiers import TIERS, UnknownTierError, get_tier, price_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["Checkout"])


def get_payment_provider(provider: str) -> PaymentProvider:
    """Path dependency: unknown provider names are a 404"""
    try:
        return get_provider(PaymentProviderName(provider))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown payment provider")


async def raw_body(request: Request) -> bytes:
    return await request.body()


def _error(status_code: int, message: str, code: Optional[str] = None, **extra) -> HTTPException:
    detail = {"error": message, **extra}
    if code:
        detail["code"] = code
    return HTTPException(status_code=status_code, detail=detail)


def _provider_http_error(e: ProviderError) -> HTTPException:
    if isinstance(e, ProviderNotConfiguredError):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), "PROVIDER_NOT_CONFIGURED")
    if e.client_error:
        return _error(status.HTTP_400_BAD_REQUEST, str(e), "PROVIDER_ERROR")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), "PROVIDER_ERROR")


def _complete_response(result: ReconcileResult) -> CompleteResponse:
    return CompleteResponse(
        order=ReconciledOrder.model_validate(result.order),
        created=result.created,
        position_assigned=result.position_assigned,
    )


def _reconcile_or_raise(reconcile, *args, **kwargs) -> CompleteResponse:
    try:
        result = reconcile(*args, **kwargs)
    except ProviderError as e:
        raise _provider_http_error(e)
    except PaymentNotSucceededError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, "Payment not completed", "PAYMENT_NOT_COMPLETED", paymentStatus=e.payment_status)
    except AmountMismatchError as e:
        logger.error("Rejected payment with unknown amount: %s", e)
        raise _error(status.HTTP_400_BAD_REQUEST, "Invalid payment amount", "INVALID_AMOUNT")
    return _complete_response(result)


@router.get("/tiers", response_model=TierListResponse, dependencies=[Depends(rate_limit("tiers", RELAXED))])
async def list_tiers(db: Session = Depends(get_db)):
    """Tier catalog with remaining Hall of Fame slots (advisory)"""
    tiers = []
    for tier in TIERS.values():
        remaining = remaining_slots(db, tier.amount_cents)
        tiers.append(TierInfo(
            name=tier.name,
            display_name=tier.display_name,
            description=tier.description,
            amount=tier.amount_cents,
            price=price_label(tier),
            first_position=tier.band.first_position if tier.band else None,
            last_position=tier.band.last_position if tier.band else None,
            remaining=remaining,
            available=remaining is None or remaining > 0,
        ))
    return TierListResponse(tiers=tiers)


@router.post(
    "/{provider}/create",
    response_model=CheckoutCreateResponse,
    dependencies=[Depends(rate_limit("checkout", STRICT))],
)
def create_checkout(
    body: CheckoutCreateRequest,
    provider: PaymentProvider = Depends(get_payment_provider),
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Start a checkout with the provider. Guests may check out without an account."""
    try:
        tier = get_tier(body.tier)
    except UnknownTierError:
        raise _error(status.HTTP_400_BAD_REQUEST, "Invalid tier", "INVALID_TIER")

    if not is_tier_available(db, tier.amount_cents):
        raise _error(status.HTTP_400_BAD_REQUEST, "This tier is sold out", "TIER_SOLD_OUT")

    user_id = current_user.id if current_user else None
    # Guests enter their email on the provider's page
    email = current_user.email if current_user else None

    try:
        session = provider.create_checkout(tier, user_id=user_id, customer_email=email)
    except ProviderError as e:
        logger.error("Checkout creation failed (provider=%s, tier=%s): %s", provider.name.value, tier.name, e)
        raise _provider_http_error(e)

    create_pending_order(db, provider.name, session.session_id, tier.amount_cents, user_id)

    return CheckoutCreateResponse(
        checkout_url=session.checkout_url,
        session_id=session.session_id,
        provider=provider.name,
    )


@router.post(
    "/{provider}/complete",
    response_model=CompleteResponse,
    dependencies=[Depends(rate_limit("complete", STANDARD))],
)
def complete_checkout(
    body: CompleteRequest,
    provider: PaymentProvider = Depends(get_payment_provider),
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Client-side confirmation after the provider redirects back"""
    user_id = current_user.id if current_user else None
    if body.payment_id:
        return _reconcile_or_raise(reconcile_payment, db, provider, body.payment_id, session_user_id=user_id)
    return _reconcile_or_raise(reconcile_session, db, provider, body.session_id, session_user_id=user_id)


@router.post(
    "/{provider}/capture",
    response_model=CompleteResponse,
    dependencies=[Depends(rate_limit("capture", STRICT))],
)
def capture_checkout(
    body: CaptureRequest,
    provider: PaymentProvider = Depends(get_payment_provider),
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Capture an approved order (PayPal). Other providers just reconcile."""
    user_id = current_user.id if current_user else None
    return _reconcile_or_raise(reconcile_payment, db, provider, body.order_id, session_user_id=user_id, capture=True)


@router.get(
    "/{provider}/session-info",
    response_model=SessionInfoResponse,
    dependencies=[Depends(rate_limit("session-info", STANDARD))],
)
def session_info(
    session_id: str = Query(..., min_length=1, max_length=255),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    try:
        info = provider.session_info(session_id)
    except ProviderError as e:
        raise _provider_http_error(e)
    return SessionInfoResponse(
        session_id=info.session_id,
        status=info.status,
        payment_id=info.payment_id,
        customer_email=info.customer_email,
        amount=info.amount,
    )


def _verify_or_fallback(provider: PaymentProvider, payload: bytes, request: Request) -> dict:
    try:
        return provider.verify_webhook(payload, request.headers)
    except WebhookVerificationError as e:
        if settings.allow_unverified_webhooks and not settings.is_production:
            logger.warning(
                "%s webhook failed verification (%s); accepting unverified payload (development only)",
                provider.name.value, e,
            )
            try:
                return json.loads(payload)
            except ValueError:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

        logger.warning("Rejected %s webhook: %s", provider.name.value, e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


@router.post("/{provider}/webhook", response_model=WebhookAck)
def provider_webhook(
    request: Request,
    payload: bytes = Depends(raw_body),
    provider: PaymentProvider = Depends(get_payment_provider),
    db: Session = Depends(get_db),
):
    """
    Receive provider webhooks.

    Payment state is re-fetched from the provider before any write; the event
    body only tells us which payment to look at. Provider failures return 500
    so the provider retries; everything else is acknowledged.
    """
    event = _verify_or_fallback(provider, payload, request)
    parsed = provider.parse_webhook_event(event)
    logger.info("Received %s webhook %s", provider.name.value, parsed.event_type)

    if parsed.kind == EVENT_SUCCEEDED and parsed.reference:
        try:
            result = reconcile_payment(db, provider, parsed.reference, capture=parsed.capture)
        except ProviderError as e:
            logger.error("%s webhook reconciliation failed for %s: %s", provider.name.value, parsed.reference, e)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Provider request failed")
        except PaymentNotSucceededError as e:
            logger.info("%s payment %s not yet succeeded (%s)", provider.name.value, parsed.reference, e.payment_status)
        except AmountMismatchError as e:
            logger.error("%s webhook for %s rejected: %s", provider.name.value, parsed.reference, e)
        else:
            logger.info(
                "%s webhook reconciled order %s (created=%s, position=%s)",
                provider.name.value, result.order.id, result.created, result.order.hall_of_fame_position,
            )
    elif parsed.kind == EVENT_FAILED:
        mark_payment_failed(db, provider.name, payment_id=parsed.payment_id, session_id=parsed.session_id)
    else:
        logger.info("Ignoring %s webhook event %s", provider.name.value, parsed.event_type)

    return WebhookAck(received=True)
