"""
Stripe Checkout adapter.

Webhook auth: Stripe-Signature header verified by stripe.Webhook.construct_event.
Reference ids are checkout session ids (cs_...). Payment intent ids (pi_...)
are resolved to their checkout session.
"""
import json
import logging
from typing import Mapping, Optional

import stripe

from app.config import settings
from app.integrations.base import (
    EVENT_FAILED,
    EVENT_IGNORED,
    EVENT_SUCCEEDED,
    FAILED,
    PENDING,
    SUCCEEDED,
    CheckoutSession,
    PaymentProvider,
    ProviderError,
    ProviderPayment,
    SessionInfo,
    WebhookEvent,
    WebhookVerificationError,
)
from app.models.order import PaymentProviderName
from app.tiers import Tier

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
CHECKOUT_EXPIRED = "checkout.session.expired"

_PAID_STATUSES = {"paid", "no_payment_required"}


def _field(obj, name: str, default=None):
    """Attribute lookup that tolerates missing keys on StripeObjects and None parents."""
    if obj is None:
        return default
    value = getattr(obj, name, default)
    return default if value is None else value


def _object_id(value) -> Optional[str]:
    # payment_intent is a plain id unless the field was expanded
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


class StripeProvider(PaymentProvider):
    name = PaymentProviderName.STRIPE

    def is_configured(self) -> bool:
        return bool(settings.stripe_secret_key)

    def _client(self):
        self._require_configured()
        stripe.api_key = settings.stripe_secret_key
        return stripe

    def create_checkout(self, tier: Tier, user_id: Optional[int] = None, customer_email: Optional[str] = None) -> CheckoutSession:
        client = self._client()
        base_url = settings.public_base_url.rstrip("/")

        params = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": "usd",
                    "product_data": {"name": tier.display_name, "description": tier.description},
                    "unit_amount": tier.amount_cents,
                },
                "quantity": 1,
            }],
            "success_url": f"{base_url}/payment-success?provider=stripe&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}/#pricing",
            "metadata": {"user_id": str(user_id) if user_id else "guest", "tier": tier.name},
        }
        if user_id:
            params["client_reference_id"] = str(user_id)
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = client.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe checkout creation failed for tier %s: %s", tier.name, e)
            raise ProviderError("Failed to create checkout session", provider=self.name.value) from e

        logger.info("Created Stripe checkout session %s for tier %s", session.id, tier.name)
        return CheckoutSession(session_id=session.id, checkout_url=session.url)

    def _retrieve_session(self, reference: str):
        client = self._client()
        try:
            if reference.startswith("pi_"):
                sessions = client.checkout.Session.list(payment_intent=reference, limit=1)
                if not sessions.data:
                    raise ProviderError(
                        "No checkout session for payment intent",
                        provider=self.name.value, reference=reference, client_error=True,
                    )
                return sessions.data[0]
            return client.checkout.Session.retrieve(reference)
        except stripe.InvalidRequestError as e:
            logger.warning("Stripe rejected reference %s: %s", reference, e)
            raise ProviderError(
                "Invalid Stripe session", provider=self.name.value, reference=reference, client_error=True
            ) from e
        except stripe.StripeError as e:
            logger.error("Stripe retrieval failed for %s: %s", reference, e)
            raise ProviderError("Stripe request failed", provider=self.name.value, reference=reference) from e

    def retrieve_payment(self, reference: str) -> ProviderPayment:
        session = self._retrieve_session(reference)
        payment_status = _field(session, "payment_status")

        if payment_status in _PAID_STATUSES:
            status = SUCCEEDED
        elif _field(session, "status") == "expired":
            status = FAILED
        else:
            status = PENDING

        metadata = _field(session, "metadata")
        return ProviderPayment(
            provider=self.name.value,
            status=status,
            raw_status=payment_status,
            session_id=session.id,
            payment_id=_object_id(_field(session, "payment_intent")),
            amount=_field(session, "amount_total"),
            tier=_field(metadata, "tier"),
            payer_email=_field(_field(session, "customer_details"), "email") or _field(session, "customer_email"),
            metadata_user_id=_field(metadata, "user_id"),
        )

    def session_info(self, session_id: str) -> SessionInfo:
        session = self._retrieve_session(session_id)
        return SessionInfo(
            session_id=session.id,
            status=_field(session, "payment_status"),
            payment_id=_object_id(_field(session, "payment_intent")),
            customer_email=_field(_field(session, "customer_details"), "email"),
            amount=_field(session, "amount_total"),
        )

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict:
        signature = headers.get("stripe-signature")
        if not signature or not settings.stripe_webhook_secret:
            raise WebhookVerificationError("Missing Stripe signature or webhook secret")

        try:
            stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError("Invalid Stripe signature") from e
        except ValueError as e:
            raise WebhookVerificationError("Invalid Stripe payload") from e

        return json.loads(payload)

    def parse_webhook_event(self, event: dict) -> WebhookEvent:
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type in (CHECKOUT_COMPLETED, ASYNC_PAYMENT_SUCCEEDED):
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_SUCCEEDED,
                reference=obj.get("id"),
                session_id=obj.get("id"),
                payment_id=_object_id(obj.get("payment_intent")),
                raw_payload=event,
            )

        if event_type in (ASYNC_PAYMENT_FAILED, CHECKOUT_EXPIRED):
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_FAILED,
                session_id=obj.get("id"),
                payment_id=_object_id(obj.get("payment_intent")),
                raw_payload=event,
            )

        return WebhookEvent(event_type=event_type, kind=EVENT_IGNORED, raw_payload=event)
