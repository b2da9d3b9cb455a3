import os

import pytest

from paylayer.providers import reset_provider

# Variables that select or configure providers; scrubbed so the developer's
# environment never leaks into tests.
_ENV_PREFIXES = ("PAYLAYER_", "STRIPE_", "PADDLE_", "PAYPAL_", "LEMONSQUEEZY_", "POLAR_")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove provider configuration and reset the default provider slot."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    reset_provider()
    yield
    reset_provider()
