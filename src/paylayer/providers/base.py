"""
Base payment provider interface.

All payment provider variants (Stripe, Paddle, PayPal, Lemon Squeezy, Polar,
Mock) implement this interface so call sites never depend on one
processor's API shape.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from typing import Any

import httpx

from paylayer.core.config import Config
from paylayer.core.exceptions import ProviderAPIError
from paylayer.core.logging import get_logger
from paylayer.core.types import (
    ChargeInput,
    ChargeResult,
    CheckoutInput,
    CheckoutResult,
    SubscribeInput,
    SubscriptionResult,
)


class PaymentProvider(ABC):
    """
    Abstract base class for payment providers.

    Every variant exposes the same operations. Webhook helpers:
    - verify_webhook: returns a bool (or an awaitable bool for providers that
      verify remotely). It must never raise.
    - normalize_webhook_event: extracts the provider-native shallow shape
      (type / id / data / timestamp) consumed by the event normalizer.
    """

    name: str = "unknown"

    @abstractmethod
    async def charge(self, input: ChargeInput) -> ChargeResult:
        """Create a one-time payment."""
        ...

    @abstractmethod
    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        """Create a subscription (or the checkout that will create it)."""
        ...

    @abstractmethod
    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        """Cancel a subscription."""
        ...

    @abstractmethod
    async def pause(self, subscription_id: str) -> SubscriptionResult:
        """Pause a subscription."""
        ...

    @abstractmethod
    async def resume(self, subscription_id: str) -> SubscriptionResult:
        """Resume a paused subscription."""
        ...

    @abstractmethod
    async def portal(self, email: str) -> str:
        """Return a self-service billing portal URL for a customer."""
        ...

    @abstractmethod
    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        """Create a hosted checkout session."""
        ...

    @abstractmethod
    def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool | Awaitable[bool]:
        """
        Verify a webhook signature.

        Args:
            payload: Raw request body, byte-exact as received
            signature: Signature header value
            secret: Shared secret (PayPal: webhook id)
            headers: All request headers, lowercased

        Returns:
            True only if the payload is authenticated
        """
        ...

    @staticmethod
    @abstractmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        """Extract the provider-native shallow event shape."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class HTTPProvider(PaymentProvider):
    """
    Provider backed by a REST API.

    Owns a lazily created ``httpx.AsyncClient``. Subclasses set ``base_url``
    and implement ``_auth_headers``. Non-2xx responses raise ProviderAPIError.
    """

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or Config()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._logger = get_logger(f"providers.{self.name}")
        self.base_url = ""

    @property
    def config(self) -> Config:
        return self._config

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.http_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    @abstractmethod
    async def _auth_headers(self) -> dict[str, str]:
        """Headers authenticating a request against the provider."""
        ...

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | list[tuple[str, Any]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Make a request against the provider API and return the decoded JSON."""
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        request_headers = await self._auth_headers()
        if headers:
            request_headers.update(headers)

        self._logger.debug(f"{method} {url}")
        kwargs: dict[str, Any] = {"headers": request_headers, "params": params}
        if form is not None:
            kwargs["data"] = form
        elif json_body is not None:
            kwargs["content"] = json.dumps(json_body)
            request_headers.setdefault("Content-Type", "application/json")

        response = await client.request(method, url, **kwargs)
        if not response.is_success:
            self._raise_api_error(response)

        if not response.content:
            return {}
        return response.json()

    def _raise_api_error(self, response: httpx.Response) -> None:
        """Translate an error response into ProviderAPIError."""
        try:
            body: Any = response.json()
        except ValueError:
            body = {"message": response.text or "Unknown error"}
        raise ProviderAPIError(
            f"{self.name} API error: {response.status_code} - {self.describe_error(body)}",
            provider=self.name,
            status_code=response.status_code,
            response_body=body,
        )

    def describe_error(self, body: Any) -> str:
        """Human-readable summary of a provider error body."""
        return json.dumps(body, default=str)
