"""
Payment provider variants and the provider registry.

- StripeProvider, PaddleProvider, PayPalProvider, LemonSqueezyProvider,
  PolarProvider: REST-backed providers
- MockProvider: local development, no credentials
"""

from paylayer.providers.base import HTTPProvider, PaymentProvider
from paylayer.providers.lemonsqueezy import LemonSqueezyProvider
from paylayer.providers.mock import MockProvider
from paylayer.providers.paddle import PaddleProvider
from paylayer.providers.paypal import PayPalProvider
from paylayer.providers.polar import PolarProvider
from paylayer.providers.registry import (
    PROVIDER_CLASSES,
    ProviderRegistry,
    resolve_name,
)
from paylayer.providers.stripe import StripeProvider

_default_registry = ProviderRegistry()


def get_default_registry() -> ProviderRegistry:
    """The process-wide registry behind get_provider()/reset_provider()."""
    return _default_registry


def get_provider() -> PaymentProvider:
    """The configured provider, constructed once per process."""
    return _default_registry.get_provider()


def reset_provider() -> None:
    """Clear the cached provider. Intended for test isolation."""
    _default_registry.reset()


__all__ = [
    # Base
    "PaymentProvider",
    "HTTPProvider",
    # Variants
    "StripeProvider",
    "PaddleProvider",
    "PayPalProvider",
    "LemonSqueezyProvider",
    "PolarProvider",
    "MockProvider",
    # Registry
    "PROVIDER_CLASSES",
    "ProviderRegistry",
    "resolve_name",
    "get_default_registry",
    "get_provider",
    "reset_provider",
]
