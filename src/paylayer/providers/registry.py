"""
Provider registry.

Maps a configured provider name to a provider class and caches the
constructed instance in a single slot. The slot is written once under a
lock and only ``reset()`` clears it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping

from paylayer.core.config import Config
from paylayer.core.logging import get_logger
from paylayer.providers.base import PaymentProvider
from paylayer.providers.lemonsqueezy import LemonSqueezyProvider
from paylayer.providers.mock import MockProvider
from paylayer.providers.paddle import PaddleProvider
from paylayer.providers.paypal import PayPalProvider
from paylayer.providers.polar import PolarProvider
from paylayer.providers.stripe import StripeProvider

logger = get_logger("providers.registry")

ProviderFactory = Callable[[Config], PaymentProvider]

PROVIDER_CLASSES: dict[str, type[PaymentProvider]] = {
    "stripe": StripeProvider,
    "paddle": PaddleProvider,
    "paypal": PayPalProvider,
    "lemonsqueezy": LemonSqueezyProvider,
    "polar": PolarProvider,
    "mock": MockProvider,
}

# Accepted spellings -> canonical name
PROVIDER_SYNONYMS: dict[str, str] = {
    "lemon-squeezy": "lemonsqueezy",
    "lemon_squeezy": "lemonsqueezy",
    "polar.sh": "polar",
}


def resolve_name(value: str | None) -> str:
    """
    Canonical provider name for a configured value.

    Case-insensitive, synonyms applied. Unknown or empty values resolve to
    ``"mock"`` so a typo never selects a real provider.
    """
    if not value:
        return "mock"
    name = value.strip().lower()
    name = PROVIDER_SYNONYMS.get(name, name)
    if name not in PROVIDER_CLASSES:
        logger.warning(f"Unknown provider '{value}', falling back to mock")
        return "mock"
    return name


class ProviderRegistry:
    """
    Resolves configuration to a provider instance.

    Pass one registry explicitly (e.g. one per test) or use the module-level
    default through ``get_provider()`` / ``reset_provider()``.
    """

    def __init__(
        self,
        config: Config | None = None,
        factories: Mapping[str, ProviderFactory] | None = None,
    ) -> None:
        self._explicit_config = config
        self._config: Config | None = config
        self._factories: dict[str, ProviderFactory] = dict(factories or {})
        self._provider: PaymentProvider | None = None
        # Providers other than the configured one, built for inbound webhooks
        self._secondary: dict[str, PaymentProvider] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> Config:
        """Configuration in use; loaded from the environment on first access."""
        if self._config is None:
            self._config = Config.from_env()
        return self._config

    def resolve_name(self, value: str | None = None) -> str:
        """Canonical name for value, or for the configured provider if value is None."""
        return resolve_name(value if value is not None else self.config.provider)

    def _build(self, name: str) -> PaymentProvider:
        factory = self._factories.get(name)
        if factory is not None:
            return factory(self.config)
        return PROVIDER_CLASSES[name](self.config)  # type: ignore[call-arg]

    def get_provider(self) -> PaymentProvider:
        """
        Return the cached provider, constructing it on first use.

        Raises:
            ConfigurationError: If the provider's credentials are missing.
                Nothing is cached in that case.
        """
        provider = self._provider
        if provider is not None:
            return provider

        with self._lock:
            if self._provider is None:
                name = self.resolve_name()
                self._provider = self._build(name)
                logger.info(f"Initialized payment provider: {name}")
            return self._provider

    def provider_for(self, name: str) -> PaymentProvider:
        """
        Provider instance for a specific provider name.

        Returns the configured provider when the name matches. Any other
        variant (e.g. PayPal webhooks arriving while Stripe is configured) is
        built once and kept alongside it until ``reset()``.
        """
        canonical = resolve_name(name)
        cached = self._provider
        if cached is not None and cached.name == canonical:
            return cached
        if self.resolve_name() == canonical:
            return self.get_provider()

        secondary = self._secondary.get(canonical)
        if secondary is not None:
            return secondary
        with self._lock:
            if canonical not in self._secondary:
                self._secondary[canonical] = self._build(canonical)
                logger.info(f"Initialized webhook provider: {canonical}")
            return self._secondary[canonical]

    async def close(self) -> None:
        """Close every provider this registry has built."""
        with self._lock:
            providers = [p for p in (self._provider, *self._secondary.values()) if p is not None]
        for provider in providers:
            await provider.close()

    def reset(self) -> None:
        """Drop the cached providers (and the lazily loaded config)."""
        with self._lock:
            self._provider = None
            self._secondary = {}
            self._config = self._explicit_config

    @property
    def is_initialized(self) -> bool:
        return self._provider is not None
