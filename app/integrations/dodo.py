"""
Dodo Payments adapter.

API auth: bearer API key against test.dodopayments.com / live.dodopayments.com.
Webhook auth: Standard Webhooks signature (webhook-id, webhook-timestamp,
webhook-signature headers; HMAC-SHA256 over "{id}.{timestamp}.{body}").
Reference ids are payment ids; checkout session ids resolve to their payment.
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Mapping, Optional

import httpx

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

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
PAYMENT_CANCELLED = "payment.cancelled"

WEBHOOK_TOLERANCE_SECONDS = 300

_FAILED_STATUSES = {"failed", "cancelled"}


def _webhook_secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        try:
            return base64.b64decode(secret[len("whsec_"):], validate=True)
        except ValueError as e:
            logger.error("Dodo webhook key is not valid base64")
            raise WebhookVerificationError("Malformed webhook signing key") from e
    return secret.encode()


def sign_webhook(secret: str, msg_id: str, timestamp: str, payload: bytes) -> str:
    """Standard Webhooks v1 signature, base64 encoded."""
    signed = f"{msg_id}.{timestamp}.".encode() + payload
    digest = hmac.new(_webhook_secret_bytes(secret), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(
    secret: str,
    payload: bytes,
    headers: Mapping[str, str],
    now: Optional[float] = None,
) -> None:
    msg_id = headers.get("webhook-id")
    timestamp = headers.get("webhook-timestamp")
    signature_header = headers.get("webhook-signature")
    if not msg_id or not timestamp or not signature_header:
        raise WebhookVerificationError("Missing webhook signature headers")

    try:
        sent_at = int(timestamp)
    except ValueError as e:
        raise WebhookVerificationError("Invalid webhook timestamp") from e

    now = time.time() if now is None else now
    if abs(now - sent_at) > WEBHOOK_TOLERANCE_SECONDS:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")

    expected = sign_webhook(secret, msg_id, timestamp, payload)
    for candidate in signature_header.split():
        version, _, signature = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return
    raise WebhookVerificationError("Invalid webhook signature")


class DodoProvider(PaymentProvider):
    name = PaymentProviderName.DODO

    def is_configured(self) -> bool:
        return bool(settings.dodo_payments_api_key)

    def _request(self, method: str, path: str, reference: Optional[str] = None, **kwargs) -> dict:
        self._require_configured()
        headers = {"Authorization": f"Bearer {settings.dodo_payments_api_key}"}
        try:
            with httpx.Client(base_url=settings.dodo_api_base, timeout=30.0) as client:
                resp = client.request(method, path, headers=headers, **kwargs)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("Dodo %s %s returned %s: %s", method, path, e.response.status_code, e.response.text)
            raise ProviderError(
                "Dodo request failed",
                provider=self.name.value,
                reference=reference,
                client_error=e.response.status_code in (400, 404, 422),
            ) from e
        except httpx.HTTPError as e:
            logger.error("Dodo %s %s failed: %s", method, path, e)
            raise ProviderError("Dodo request failed", provider=self.name.value, reference=reference) from e

    def create_checkout(self, tier: Tier, user_id: Optional[int] = None, customer_email: Optional[str] = None) -> CheckoutSession:
        product_id = settings.dodo_product_id(tier.name)
        if not product_id:
            logger.error("Dodo product id not configured for tier %s", tier.name)
            raise ProviderError(f"Product not configured for tier {tier.name}", provider=self.name.value)

        base_url = settings.public_base_url.rstrip("/")
        body = {
            "product_cart": [{"product_id": product_id, "quantity": 1}],
            "return_url": f"{base_url}/payment-success?provider=dodo",
            "metadata": {
                "user_id": str(user_id) if user_id else "guest",
                "tier": tier.name,
                "tier_name": tier.display_name,
            },
            "customization": {"theme": "dark"},
        }
        if customer_email:
            body["customer"] = {"email": customer_email}

        data = self._request("POST", "/checkouts", json=body)
        logger.info("Created Dodo checkout session %s for tier %s", data.get("session_id"), tier.name)
        return CheckoutSession(session_id=data["session_id"], checkout_url=data["checkout_url"])

    def retrieve_payment(self, reference: str) -> ProviderPayment:
        payment = self._request("GET", f"/payments/{reference}", reference=reference)
        raw_status = payment.get("status")

        if raw_status == "succeeded":
            status = SUCCEEDED
        elif raw_status in _FAILED_STATUSES:
            status = FAILED
        else:
            status = PENDING

        metadata = payment.get("metadata") or {}
        return ProviderPayment(
            provider=self.name.value,
            status=status,
            raw_status=raw_status,
            session_id=payment.get("checkout_session_id"),
            payment_id=payment.get("payment_id") or reference,
            amount=payment.get("total_amount"),
            tier=metadata.get("tier"),
            payer_email=(payment.get("customer") or {}).get("email"),
            metadata_user_id=metadata.get("user_id"),
        )

    def _get_session(self, session_id: str) -> dict:
        return self._request("GET", f"/checkouts/{session_id}", reference=session_id)

    def payment_reference_for_session(self, session_id: str) -> Optional[str]:
        return self._get_session(session_id).get("payment_id")

    def session_info(self, session_id: str) -> SessionInfo:
        session = self._get_session(session_id)
        payment_id = session.get("payment_id")
        amount = None
        email = session.get("customer_email")
        if payment_id:
            payment = self.retrieve_payment(payment_id)
            amount = payment.amount
            email = email or payment.payer_email
        return SessionInfo(
            session_id=session_id,
            status=session.get("payment_status"),
            payment_id=payment_id,
            customer_email=email,
            amount=amount,
        )

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict:
        if not settings.dodo_payments_webhook_key:
            raise WebhookVerificationError("Dodo webhook key not configured")
        verify_signature(settings.dodo_payments_webhook_key, payload, headers)
        try:
            return json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError("Invalid Dodo payload") from e

    def parse_webhook_event(self, event: dict) -> WebhookEvent:
        event_type = event.get("type", "")
        data = event.get("data") or {}
        payment_id = data.get("payment_id")
        session_id = data.get("checkout_session_id")

        if event_type == PAYMENT_SUCCEEDED:
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_SUCCEEDED,
                reference=payment_id,
                payment_id=payment_id,
                session_id=session_id,
                raw_payload=event,
            )

        if event_type in (PAYMENT_FAILED, PAYMENT_CANCELLED):
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_FAILED,
                payment_id=payment_id,
                session_id=session_id,
                raw_payload=event,
            )

        return WebhookEvent(event_type=event_type, kind=EVENT_IGNORED, raw_payload=event)
