"""
Configuration management for PayLayer.

Handles loading configuration from environment variables and validation.
Provider credentials are NOT part of Config: each provider reads and
validates its own credentials at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from paylayer.core.exceptions import ConfigurationError
from paylayer.core.logging import get_logger

logger = get_logger("config")

# Per-provider variable holding the webhook shared secret (PayPal: webhook id)
WEBHOOK_SECRET_ENV_VARS: dict[str, str] = {
    "stripe": "STRIPE_WEBHOOK_SECRET",
    "paddle": "PADDLE_WEBHOOK_SECRET",
    "paypal": "PAYPAL_WEBHOOK_ID",
    "lemonsqueezy": "LEMONSQUEEZY_WEBHOOK_SECRET",
    "polar": "POLAR_WEBHOOK_SECRET",
}

# Legacy per-provider sandbox flags, consulted when PAYLAYER_ENVIRONMENT is unset
SANDBOX_FLAG_ENV_VARS: dict[str, str] = {
    "paddle": "PADDLE_SANDBOX",
    "paypal": "PAYPAL_SANDBOX",
    "lemonsqueezy": "LEMONSQUEEZY_TEST_MODE",
    "polar": "POLAR_SANDBOX",
}

_SANDBOX_VALUES = ("sandbox", "test")
_PRODUCTION_VALUES = ("production", "live")


def get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name) or default
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


class WebhookPolicy(str, Enum):
    """What to do when a webhook arrives without a secret or signature."""

    PERMISSIVE = "permissive"  # skip verification, accept the event
    STRICT = "strict"  # reject with 401 (mock provider excepted)

    @classmethod
    def from_string(cls, value: str) -> WebhookPolicy:
        value_lower = value.strip().lower()
        for member in cls:
            if member.value == value_lower:
                return member
        raise ConfigurationError(
            f"Unknown webhook policy: {value}. Supported: {[p.value for p in cls]}"
        )


def is_sandbox(provider_name: str | None = None) -> bool:
    """
    Determine whether the current environment is sandbox/test mode.

    Checks, in order:
    1. PAYLAYER_ENVIRONMENT: "sandbox"/"test" or "production"/"live" (case-insensitive).
       Any other value falls back to production with a warning.
    2. The provider's legacy flag (PADDLE_SANDBOX, PAYPAL_SANDBOX,
       LEMONSQUEEZY_TEST_MODE, POLAR_SANDBOX) set to "true". Stripe instead
       infers test mode from an ``sk_test_`` secret key.

    Defaults to production when nothing is set.
    """
    env = os.environ.get("PAYLAYER_ENVIRONMENT")
    if env:
        env_lower = env.lower()
        if env_lower in _SANDBOX_VALUES:
            return True
        if env_lower in _PRODUCTION_VALUES:
            return False
        logger.warning(
            f'Invalid PAYLAYER_ENVIRONMENT value: "{env}". Expected "sandbox", "test", '
            f'"production", or "live". Defaulting to production mode.'
        )
        return False

    if not provider_name:
        return False

    provider_lower = provider_name.lower()
    if provider_lower == "stripe":
        return os.environ.get("STRIPE_SECRET_KEY", "").startswith("sk_test_")

    flag = SANDBOX_FLAG_ENV_VARS.get(provider_lower)
    if flag is None:
        return False
    return os.environ.get(flag) == "true"


@dataclass(frozen=True)
class Config:
    """PayLayer configuration."""

    # Explicit provider selection; None means "not configured"
    provider: str | None = None
    webhook_policy: WebhookPolicy = WebhookPolicy.PERMISSIVE
    log_level: str = "INFO"
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.http_timeout <= 0:
            raise ConfigurationError("http_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        provider = overrides.get("provider") or get_env_var("PAYLAYER_PROVIDER")

        policy = overrides.get("webhook_policy") or get_env_var(
            "PAYLAYER_WEBHOOK_POLICY", default=WebhookPolicy.PERMISSIVE.value
        )
        if isinstance(policy, str):
            policy = WebhookPolicy.from_string(policy)

        log_level = overrides.get("log_level") or get_env_var(
            "PAYLAYER_LOG_LEVEL", default="INFO"
        )

        http_timeout = overrides.get("http_timeout")
        if http_timeout is None:
            raw_timeout = get_env_var("PAYLAYER_HTTP_TIMEOUT")
            try:
                http_timeout = float(raw_timeout) if raw_timeout else cls.http_timeout
            except ValueError:
                raise ConfigurationError(
                    f"PAYLAYER_HTTP_TIMEOUT must be a number, got {raw_timeout!r}"
                ) from None

        return cls(
            provider=provider,
            webhook_policy=policy,
            log_level=log_level,  # type: ignore
            http_timeout=http_timeout,
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    def webhook_secret(self, provider_name: str) -> str:
        """
        Webhook secret for a provider from the environment.

        For PayPal this is the webhook id rather than a shared secret.
        Returns an empty string when nothing is configured.
        """
        env_var = WEBHOOK_SECRET_ENV_VARS.get(provider_name.lower())
        if env_var is None:
            return ""
        return os.environ.get(env_var, "")
