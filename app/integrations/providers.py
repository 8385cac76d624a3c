"""Provider registry: one adapter instance per provider name."""
from app.integrations.base import PaymentProvider
from app.integrations.dodo import DodoProvider
from app.integrations.paypal import PayPalProvider
from app.integrations.stripe_payments import StripeProvider
from app.models.order import PaymentProviderName

_PROVIDERS = {
    PaymentProviderName.STRIPE: StripeProvider(),
    PaymentProviderName.PAYPAL: PayPalProvider(),
    PaymentProviderName.DODO: DodoProvider(),
}


def get_provider(name: PaymentProviderName) -> PaymentProvider:
    return _PROVIDERS[PaymentProviderName(name)]
