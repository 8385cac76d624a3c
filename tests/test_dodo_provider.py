"""Tests for the Dodo Payments adapter (app/integrations/dodo.py)"""
import base64
import json
import pytest
from unittest.mock import MagicMock, patch

import httpx

from app.integrations.base import EVENT_FAILED, EVENT_IGNORED, EVENT_SUCCEEDED, FAILED, PENDING, SUCCEEDED
from app.integrations.base import ProviderError, WebhookVerificationError
from app.integrations.dodo import DodoProvider, sign_webhook, verify_signature
from app.tiers import get_tier

SECRET = "whsec_" + base64.b64encode(b"dodo-test-secret").decode()
PAYLOAD = json.dumps({"type": "payment.succeeded", "data": {"payment_id": "pay_1"}}).encode()


def _headers(timestamp="1700000000", signature=None):
    signature = signature or sign_webhook(SECRET, "msg_1", timestamp, PAYLOAD)
    return {"webhook-id": "msg_1", "webhook-timestamp": timestamp, "webhook-signature": f"v1,{signature}"}


@pytest.fixture
def dodo_settings():
    with patch("app.integrations.dodo.settings") as mock_settings:
        mock_settings.dodo_payments_api_key = "dodo_key"
        mock_settings.dodo_payments_webhook_key = SECRET
        mock_settings.dodo_api_base = "https://test.dodopayments.com"
        mock_settings.public_base_url = "https://slopcel.test"
        mock_settings.dodo_product_id.return_value = "pdt_standard"
        yield mock_settings


@pytest.fixture
def dodo_http():
    """Patched httpx.Client; set .request.return_value / side_effect on the yielded mock"""
    with patch("app.integrations.dodo.httpx.Client") as client_cls:
        client = client_cls.return_value.__enter__.return_value
        yield client


def _json_response(body):
    resp = MagicMock()
    resp.json.return_value = body
    return resp


class TestSignature:
    def test_valid_signature(self):
        verify_signature(SECRET, PAYLOAD, _headers(), now=1700000100)

    def test_one_of_several_signatures_may_match(self):
        good = sign_webhook(SECRET, "msg_1", "1700000000", PAYLOAD)
        headers = _headers()
        headers["webhook-signature"] = f"v1,bm90LWl0 v1,{good}"
        verify_signature(SECRET, PAYLOAD, headers, now=1700000000)

    def test_tampered_body(self):
        with pytest.raises(WebhookVerificationError):
            verify_signature(SECRET, PAYLOAD + b" ", _headers(), now=1700000000)

    def test_wrong_secret(self):
        other = "whsec_" + base64.b64encode(b"other").decode()
        with pytest.raises(WebhookVerificationError):
            verify_signature(other, PAYLOAD, _headers(), now=1700000000)

    def test_stale_timestamp(self):
        with pytest.raises(WebhookVerificationError):
            verify_signature(SECRET, PAYLOAD, _headers(), now=1700000000 + 301)

    def test_missing_headers(self):
        with pytest.raises(WebhookVerificationError):
            verify_signature(SECRET, PAYLOAD, {}, now=1700000000)

    def test_malformed_key_fails_verification(self):
        with pytest.raises(WebhookVerificationError):
            verify_signature("whsec_abc", PAYLOAD, _headers(), now=1700000000)

    def test_provider_requires_key(self, dodo_settings):
        dodo_settings.dodo_payments_webhook_key = ""
        with pytest.raises(WebhookVerificationError):
            DodoProvider().verify_webhook(PAYLOAD, _headers())


class TestPayments:
    def test_create_checkout(self, dodo_settings, dodo_http):
        dodo_http.request.return_value = _json_response(
            {"session_id": "cks_1", "checkout_url": "https://checkout.dodopayments.com/cks_1"}
        )

        result = DodoProvider().create_checkout(get_tier("standard"), user_id=3)

        method, path = dodo_http.request.call_args.args
        body = dodo_http.request.call_args.kwargs["json"]
        assert (method, path) == ("POST", "/checkouts")
        assert body["product_cart"] == [{"product_id": "pdt_standard", "quantity": 1}]
        assert body["metadata"]["user_id"] == "3"
        assert body["metadata"]["tier"] == "standard"
        assert result.session_id == "cks_1"

    def test_missing_product_id(self, dodo_settings):
        dodo_settings.dodo_product_id.return_value = ""
        with pytest.raises(ProviderError):
            DodoProvider().create_checkout(get_tier("premium"))

    def test_succeeded_payment(self, dodo_settings, dodo_http):
        dodo_http.request.return_value = _json_response({
            "payment_id": "pay_1",
            "status": "succeeded",
            "total_amount": 7500,
            "checkout_session_id": "cks_1",
            "metadata": {"tier": "hall_of_fame", "user_id": "guest"},
            "customer": {"email": "buyer@test.com"},
        })

        payment = DodoProvider().retrieve_payment("pay_1")

        assert payment.status == SUCCEEDED
        assert payment.session_id == "cks_1"
        assert payment.amount == 7500
        assert payment.tier == "hall_of_fame"
        assert payment.payer_email == "buyer@test.com"

    @pytest.mark.parametrize("raw_status,expected", [
        ("failed", FAILED),
        ("cancelled", FAILED),
        ("processing", PENDING),
        ("requires_payment_method", PENDING),
    ])
    def test_status_mapping(self, dodo_settings, dodo_http, raw_status, expected):
        dodo_http.request.return_value = _json_response({"payment_id": "pay_1", "status": raw_status})
        assert DodoProvider().retrieve_payment("pay_1").status == expected

    def test_session_resolves_to_payment(self, dodo_settings, dodo_http):
        dodo_http.request.return_value = _json_response({"payment_id": "pay_1", "payment_status": "succeeded"})
        assert DodoProvider().payment_reference_for_session("cks_1") == "pay_1"

    def test_unknown_payment_is_client_error(self, dodo_settings, dodo_http):
        request = httpx.Request("GET", "https://test.dodopayments.com/payments/pay_x")
        response = httpx.Response(404, request=request, text="not found")
        dodo_http.request.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
            "404", request=request, response=response
        )

        with pytest.raises(ProviderError) as exc:
            DodoProvider().retrieve_payment("pay_x")
        assert exc.value.client_error is True

    def test_timeout_is_server_error(self, dodo_settings, dodo_http):
        dodo_http.request.side_effect = httpx.ConnectTimeout("timed out")

        with pytest.raises(ProviderError) as exc:
            DodoProvider().retrieve_payment("pay_1")
        assert exc.value.client_error is False


class TestWebhookEvents:
    def test_payment_succeeded(self):
        parsed = DodoProvider().parse_webhook_event(
            {"type": "payment.succeeded", "data": {"payment_id": "pay_1", "checkout_session_id": "cks_1"}}
        )
        assert parsed.kind == EVENT_SUCCEEDED
        assert parsed.reference == "pay_1"
        assert parsed.session_id == "cks_1"

    def test_payment_failed(self):
        parsed = DodoProvider().parse_webhook_event({"type": "payment.failed", "data": {"payment_id": "pay_2"}})
        assert parsed.kind == EVENT_FAILED
        assert parsed.payment_id == "pay_2"

    def test_other_event(self):
        assert DodoProvider().parse_webhook_event({"type": "refund.succeeded", "data": {}}).kind == EVENT_IGNORED
