"""
Mock provider for local development and tests.

No credentials, no network. Webhooks always verify and raw events pass
through normalization unchanged.
"""

from __future__ import annotations

import os
import secrets
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from paylayer.core.types import (
    ChargeInput,
    ChargeResult,
    ChargeStatus,
    CheckoutInput,
    CheckoutResult,
    SubscribeInput,
    SubscriptionResult,
    SubscriptionStatus,
)
from paylayer.providers.base import PaymentProvider
from paylayer.webhooks.verification import verify_mock_signature

DEFAULT_PORTAL_BASE_URL = "https://portal.paylayer.com"


def _mock_id(prefix: str) -> str:
    return f"{prefix}_mock_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class MockProvider(PaymentProvider):
    """In-memory provider returning synthetic results."""

    name = "mock"

    def __init__(self, config: Any = None, http_client: Any = None) -> None:
        self._config = config

    async def charge(self, input: ChargeInput) -> ChargeResult:
        return ChargeResult(
            id=_mock_id("ch"),
            status=ChargeStatus.PENDING,
            amount=input.amount,  # type: ignore[arg-type]
            currency=input.currency,
            provider=self.name,
            email=input.email,
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        return SubscriptionResult(
            id=_mock_id("sub"),
            status=SubscriptionStatus.ACTIVE,
            plan=input.plan,
            currency=input.currency,
            provider=self.name,
            email=input.email,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        return self._subscription(subscription_id, SubscriptionStatus.CANCELLED)

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        return self._subscription(subscription_id, SubscriptionStatus.PAUSED)

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        return self._subscription(subscription_id, SubscriptionStatus.ACTIVE)

    def _subscription(self, subscription_id: str, status: SubscriptionStatus) -> SubscriptionResult:
        return SubscriptionResult(
            id=subscription_id,
            status=status,
            plan="unknown",
            currency="USD",
            provider=self.name,
        )

    async def portal(self, email: str) -> str:
        base_url = os.environ.get("PAYLAYER_PORTAL_BASE_URL") or DEFAULT_PORTAL_BASE_URL
        return f"{base_url}/customer/{quote(email, safe='')}?provider={self.name}"

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        session_id = _mock_id("cs")
        base_url = os.environ.get("PAYLAYER_PORTAL_BASE_URL") or DEFAULT_PORTAL_BASE_URL
        return CheckoutResult(
            id=session_id,
            url=f"{base_url}/checkout/{session_id}?provider={self.name}",
            provider=self.name,
            mode=input.mode,
        )

    def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        return verify_mock_signature(payload, signature, secret)

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        return raw_event
