"""
PayLayer - One payment API over Stripe, Paddle, PayPal, Lemon Squeezy and Polar

Usage:
    >>> from paylayer import PayLayer
    >>>
    >>> pay = PayLayer()  # provider from PAYLAYER_PROVIDER
    >>> result = await pay.charge(amount="29.99", currency="USD", email="a@b.com")
    >>>
    >>> @pay.on_payment_success
    ... async def fulfil(event):
    ...     print(event.amount, event.email)
    >>>
    >>> response = await pay.webhook(request)  # in your HTTP route
"""

from paylayer.client import PayLayer
from paylayer.core.config import Config, WebhookPolicy
from paylayer.core.exceptions import (
    ConfigurationError,
    PayLayerError,
    ProviderAPIError,
    ProviderError,
    ValidationError,
    WebhookError,
)
from paylayer.core.logging import configure_logging, get_logger
from paylayer.core.types import (
    Address,
    ChargeResult,
    ChargeStatus,
    CheckoutMode,
    CheckoutResult,
    CustomerInfo,
    EventType,
    NormalizedEvent,
    ProviderName,
    SubscriptionResult,
    SubscriptionStatus,
    WebhookResponse,
)
from paylayer.providers import PaymentProvider, get_provider, reset_provider

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "PayLayer",
    # Providers
    "PaymentProvider",
    "get_provider",
    "reset_provider",
    # Types
    "ProviderName",
    "EventType",
    "NormalizedEvent",
    "CustomerInfo",
    "Address",
    "ChargeResult",
    "ChargeStatus",
    "SubscriptionResult",
    "SubscriptionStatus",
    "CheckoutMode",
    "CheckoutResult",
    "WebhookResponse",
    # Config
    "Config",
    "WebhookPolicy",
    "configure_logging",
    "get_logger",
    # Exceptions
    "PayLayerError",
    "ConfigurationError",
    "ValidationError",
    "ProviderError",
    "ProviderAPIError",
    "WebhookError",
]
