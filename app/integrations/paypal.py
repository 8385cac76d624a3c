"""
PayPal Orders v2 adapter.

API auth: OAuth2 client_credentials flow, token cached in Redis.
Webhook auth: PayPal's verify-webhook-signature API with the configured webhook id.
Reference ids are PayPal order ids; custom_id carries {"user_id", "tier"} as JSON.
"""
import base64
import json
import logging
from typing import Mapping, Optional

import requests

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
    to_cents,
)
from app.models.order import PaymentProviderName
from app.tiers import Tier

logger = logging.getLogger(__name__)

CHECKOUT_ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
PAYMENT_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
PAYMENT_CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
PAYMENT_CAPTURE_DECLINED = "PAYMENT.CAPTURE.DECLINED"

_FAILED_CAPTURE_STATUSES = {"DECLINED", "FAILED"}

ORDER_ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"

_TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _token_cache_key() -> str:
    return f"paypal:access_token:{settings.paypal_mode}"


def get_access_token() -> str:
    """
    Get a PayPal OAuth2 access token, cached in Redis.

    Token is cached with TTL = expires_in - 300s to allow a safety margin.
    Redis being down only disables the cache.
    """
    redis = None
    try:
        from app.redis_client import get_redis_client
        redis = get_redis_client()
        cached = redis.get(_token_cache_key())
        if cached:
            return cached
    except Exception as e:
        logger.warning("Redis unavailable for PayPal token cache: %s", e)
        redis = None

    credentials = base64.b64encode(
        f"{settings.paypal_client_id}:{settings.paypal_client_secret}".encode()
    ).decode()
    try:
        resp = requests.post(
            f"{settings.paypal_api_base}/v1/oauth2/token",
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data="grant_type=client_credentials",
            timeout=15,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("Failed to fetch PayPal access token: %s", e)
        raise ProviderError("PayPal authentication failed", provider="paypal") from e

    data = resp.json()
    token = data.get("access_token", "")
    expires_in = int(data.get("expires_in", 3600))

    if token and redis is not None:
        try:
            redis.setex(_token_cache_key(), max(expires_in - 300, 60), token)
        except Exception as e:
            logger.warning("Failed to cache PayPal token in Redis: %s", e)

    return token


def _parse_custom_id(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable PayPal custom_id: %r", raw)
        return {}
    return value if isinstance(value, dict) else {}


def _first_capture(order: dict) -> dict:
    units = order.get("purchase_units") or [{}]
    captures = (units[0].get("payments") or {}).get("captures") or []
    return captures[0] if captures else {}


class PayPalRequestError(ProviderError):
    """Non-2xx PayPal response. issue is PayPal's error code (details[0].issue or name)."""

    def __init__(self, message: str, provider: str, reference: Optional[str] = None,
                 client_error: bool = False, issue: Optional[str] = None):
        super().__init__(message, provider, reference=reference, client_error=client_error)
        self.issue = issue


def _error_issue(resp) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    details = body.get("details") or []
    if details and isinstance(details[0], dict) and details[0].get("issue"):
        return details[0]["issue"]
    return body.get("name")


class PayPalProvider(PaymentProvider):
    name = PaymentProviderName.PAYPAL

    def is_configured(self) -> bool:
        return bool(settings.paypal_client_id and settings.paypal_client_secret)

    def _request(
        self,
        method: str,
        path: str,
        reference: Optional[str] = None,
        extra_headers: Optional[dict] = None,
        **kwargs,
    ) -> dict:
        self._require_configured()
        token = get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if extra_headers:
            headers.update(extra_headers)

        try:
            resp = requests.request(
                method, f"{settings.paypal_api_base}{path}", headers=headers, timeout=30, **kwargs
            )
        except requests.RequestException as e:
            logger.error("PayPal request %s %s failed: %s", method, path, e)
            raise ProviderError("PayPal request failed", provider=self.name.value, reference=reference) from e

        if resp.status_code == 401:
            # Cached token was revoked early
            try:
                from app.redis_client import get_redis_client
                get_redis_client().delete(_token_cache_key())
            except Exception as e:
                logger.warning("Failed to invalidate PayPal token cache: %s", e)

        if resp.status_code >= 400:
            logger.error("PayPal %s %s returned %s: %s", method, path, resp.status_code, resp.text)
            raise PayPalRequestError(
                "PayPal request failed",
                provider=self.name.value,
                reference=reference,
                client_error=resp.status_code in (400, 404, 422),
                issue=_error_issue(resp),
            )
        return resp.json()

    def create_checkout(self, tier: Tier, user_id: Optional[int] = None, customer_email: Optional[str] = None) -> CheckoutSession:
        base_url = settings.public_base_url.rstrip("/")
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "amount": {"currency_code": "USD", "value": f"{tier.amount_cents / 100:.2f}"},
                "description": tier.description,
                "custom_id": json.dumps({"user_id": str(user_id) if user_id else "guest", "tier": tier.name}),
            }],
            "application_context": {
                "brand_name": "Slopcel",
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                "return_url": f"{base_url}/payment-success?provider=paypal",
                "cancel_url": f"{base_url}/#pricing",
            },
        }
        order = self._request("POST", "/v2/checkout/orders", json=body)

        approve_url = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not approve_url:
            logger.error("PayPal order %s has no approval link", order.get("id"))
            raise ProviderError("PayPal order has no approval link", provider=self.name.value, reference=order.get("id"))

        logger.info("Created PayPal order %s for tier %s", order["id"], tier.name)
        return CheckoutSession(session_id=order["id"], checkout_url=approve_url)

    def _get_order(self, order_id: str) -> dict:
        return self._request("GET", f"/v2/checkout/orders/{order_id}", reference=order_id)

    def _normalize(self, order: dict) -> ProviderPayment:
        capture = _first_capture(order)
        order_status = order.get("status")
        capture_status = capture.get("status")

        if order_status == "COMPLETED" and capture_status == "COMPLETED":
            status = SUCCEEDED
        elif order_status == "VOIDED" or capture_status in _FAILED_CAPTURE_STATUSES:
            status = FAILED
        else:
            status = PENDING

        units = order.get("purchase_units") or [{}]
        custom = _parse_custom_id(units[0].get("custom_id"))
        amount = (capture.get("amount") or {}).get("value") or (units[0].get("amount") or {}).get("value")

        return ProviderPayment(
            provider=self.name.value,
            status=status,
            raw_status=capture_status or order_status,
            session_id=order.get("id"),
            payment_id=capture.get("id"),
            amount=to_cents(amount),
            tier=custom.get("tier"),
            payer_email=(order.get("payer") or {}).get("email_address"),
            metadata_user_id=custom.get("user_id"),
        )

    def retrieve_payment(self, reference: str) -> ProviderPayment:
        return self._normalize(self._get_order(reference))

    def capture_payment(self, reference: str) -> ProviderPayment:
        """Capture an approved order. Already-captured orders are returned as-is."""
        order = self._get_order(reference)
        if order.get("status") == "APPROVED":
            logger.info("Capturing PayPal order %s", reference)
            try:
                order = self._request(
                    "POST",
                    f"/v2/checkout/orders/{reference}/capture",
                    reference=reference,
                    extra_headers={"PayPal-Request-Id": f"capture-{reference}"},
                )
            except PayPalRequestError as e:
                if e.issue != ORDER_ALREADY_CAPTURED:
                    raise
                # Webhook and client capture raced; the other capture won
                logger.info("PayPal order %s was already captured, re-reading it", reference)
                order = self._get_order(reference)
        return self._normalize(order)

    def session_info(self, session_id: str) -> SessionInfo:
        order = self._get_order(session_id)
        capture = _first_capture(order)
        return SessionInfo(
            session_id=session_id,
            status=order.get("status"),
            payment_id=capture.get("id"),
            customer_email=(order.get("payer") or {}).get("email_address"),
            amount=to_cents((capture.get("amount") or {}).get("value")),
        )

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict:
        if not settings.paypal_webhook_id:
            raise WebhookVerificationError("PayPal webhook id not configured")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError("Invalid PayPal payload") from e

        body = {key: headers.get(header) for key, header in _TRANSMISSION_HEADERS.items()}
        if not all(body.values()):
            raise WebhookVerificationError("Missing PayPal transmission headers")
        body["webhook_id"] = settings.paypal_webhook_id
        body["webhook_event"] = event

        try:
            result = self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        except ProviderError as e:
            raise WebhookVerificationError("PayPal signature verification request failed") from e

        if result.get("verification_status") != "SUCCESS":
            raise WebhookVerificationError("Invalid PayPal signature")
        return event

    def parse_webhook_event(self, event: dict) -> WebhookEvent:
        event_type = event.get("event_type", "")
        resource = event.get("resource") or {}

        if event_type == CHECKOUT_ORDER_APPROVED:
            # Buyer approved but may have closed the tab before the client captured
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_SUCCEEDED,
                reference=resource.get("id"),
                session_id=resource.get("id"),
                capture=True,
                raw_payload=event,
            )

        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        order_id = related.get("order_id")

        if event_type == PAYMENT_CAPTURE_COMPLETED:
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_SUCCEEDED,
                reference=order_id,
                session_id=order_id,
                payment_id=resource.get("id"),
                raw_payload=event,
            )

        if event_type in (PAYMENT_CAPTURE_DENIED, PAYMENT_CAPTURE_DECLINED):
            return WebhookEvent(
                event_type=event_type,
                kind=EVENT_FAILED,
                session_id=order_id,
                payment_id=resource.get("id"),
                raw_payload=event,
            )

        return WebhookEvent(event_type=event_type, kind=EVENT_IGNORED, raw_payload=event)
