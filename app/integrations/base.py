"""
Payment provider adapter interface.

Every provider (Stripe, PayPal, Dodo) normalizes its payment objects into
ProviderPayment so a single reconciliation algorithm can serve all three.
Reference ids mean:
- Stripe: checkout session id (payment intent ids are also accepted)
- PayPal: PayPal order id
- Dodo: payment id
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from app.models.order import PaymentProviderName
from app.tiers import Tier

logger = logging.getLogger(__name__)

# Normalized payment statuses
SUCCEEDED = "succeeded"
FAILED = "failed"
PENDING = "pending"

# Webhook event kinds
EVENT_SUCCEEDED = "succeeded"
EVENT_FAILED = "failed"
EVENT_IGNORED = "ignored"


class ProviderError(Exception):
    """A provider call failed. client_error=True means the id/request was invalid."""

    def __init__(self, message: str, provider: str, reference: Optional[str] = None, client_error: bool = False):
        super().__init__(message)
        self.provider = provider
        self.reference = reference
        self.client_error = client_error


class ProviderNotConfiguredError(ProviderError):
    pass


class WebhookVerificationError(Exception):
    pass


@dataclass
class CheckoutSession:
    session_id: str
    checkout_url: str


@dataclass
class ProviderPayment:
    """Authoritative payment state as reported by the provider"""
    provider: str
    status: str
    raw_status: Optional[str]
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None  # cents
    tier: Optional[str] = None
    payer_email: Optional[str] = None
    metadata_user_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass
class SessionInfo:
    session_id: str
    status: Optional[str]
    payment_id: Optional[str]
    customer_email: Optional[str]
    amount: Optional[int]


@dataclass
class WebhookEvent:
    """Parsed webhook with the fields reconciliation needs"""
    event_type: str
    kind: str
    reference: Optional[str] = None
    payment_id: Optional[str] = None
    session_id: Optional[str] = None
    capture: bool = False
    raw_payload: dict = field(default_factory=dict)


def to_cents(value) -> Optional[int]:
    """Convert a decimal amount string like "150.00" to integer cents."""
    if value is None or value == "":
        return None
    try:
        return int((Decimal(str(value)) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        logger.warning("Could not parse amount %r", value)
        return None


class PaymentProvider(ABC):
    name: PaymentProviderName

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def create_checkout(
        self,
        tier: Tier,
        user_id: Optional[int] = None,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    def retrieve_payment(self, reference: str) -> ProviderPayment:
        ...

    def capture_payment(self, reference: str) -> ProviderPayment:
        """Client-confirmed completion. Providers without a capture step just re-fetch."""
        return self.retrieve_payment(reference)

    def payment_reference_for_session(self, session_id: str) -> Optional[str]:
        """Map a checkout session id to the reference retrieve_payment() expects."""
        return session_id

    @abstractmethod
    def session_info(self, session_id: str) -> SessionInfo:
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict:
        """Verify the signature and return the decoded event. Raises WebhookVerificationError."""
        ...

    @abstractmethod
    def parse_webhook_event(self, event: dict) -> WebhookEvent:
        ...

    def _require_configured(self):
        if not self.is_configured():
            raise ProviderNotConfiguredError(
                f"{self.name.value} payments are not configured", provider=self.name.value
            )
