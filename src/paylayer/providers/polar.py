"""
Polar provider.

Every purchase is a Polar checkout over catalog products: one-time products
for charges, recurring products for subscriptions. Pausing is modelled as
``cancel_at_period_end`` since Polar has no native pause.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from paylayer.core.config import Config, get_env_var, is_sandbox
from paylayer.core.exceptions import ConfigurationError, ProviderAPIError, ProviderError
from paylayer.core.types import (
    ChargeInput,
    ChargeResult,
    ChargeStatus,
    CheckoutInput,
    CheckoutMode,
    CheckoutResult,
    SubscribeInput,
    SubscriptionResult,
    SubscriptionStatus,
    from_minor_units,
)
from paylayer.providers.base import HTTPProvider
from paylayer.webhooks.verification import verify_polar_signature

SANDBOX_BASE_URL = "https://sandbox-api.polar.sh/v1"
LIVE_BASE_URL = "https://api.polar.sh/v1"

DEFAULT_SUCCESS_URL = "https://app.example.com/success"
DEFAULT_CANCEL_URL = "https://app.example.com/cancel"


def normalize_base_url(url: str) -> str:
    """Ensure the API base URL ends in ``/v1``."""
    if url.endswith("/v1"):
        return url
    return url.rstrip("/") + "/v1"


def _success_url(explicit: str | None) -> str:
    return (
        explicit
        or os.environ.get("PAYLAYER_SUCCESS_URL")
        or os.environ.get("POLAR_SUCCESS_URL")
        or DEFAULT_SUCCESS_URL
    )


def _cancel_url(explicit: str | None) -> str:
    return (
        explicit
        or os.environ.get("PAYLAYER_CANCEL_URL")
        or os.environ.get("POLAR_CANCEL_URL")
        or DEFAULT_CANCEL_URL
    )


def _is_placeholder_email(email: str) -> bool:
    # Polar validates email domains and rejects reserved test domains
    return "@example.com" in email or "@test." in email


class PolarProvider(HTTPProvider):
    """Polar REST API (v1)."""

    name = "polar"

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, http_client)
        api_key = (
            get_env_var("POLAR_OAT")
            or get_env_var("POLAR_ACCESS_TOKEN")
            or get_env_var("POLAR_API_KEY")
        )
        if not api_key:
            raise ConfigurationError(
                "POLAR_OAT or POLAR_ACCESS_TOKEN environment variable is required for Polar provider"
            )
        self._api_key = api_key
        self.base_url = normalize_base_url(
            get_env_var("POLAR_BASE_URL")
            or (SANDBOX_BASE_URL if is_sandbox(self.name) else LIVE_BASE_URL)
        )

    async def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }

    async def _find_or_create_customer(self, email: str) -> str:
        customers = await self._request("GET", "/customers", params={"email": email})
        items = customers.get("items") or []
        if items:
            return items[0]["id"]
        customer = await self._request("POST", "/customers", json_body={"email": email})
        return customer["id"]

    async def _one_time_price(self, product_id: str, currency: str) -> dict[str, Any]:
        product = await self._request("GET", f"/products/{product_id}")
        if product.get("recurring_interval"):
            raise ProviderError(
                f"Product {product_id} is a subscription product "
                f"(recurring_interval: {product['recurring_interval']}). "
                "Use a one-time product for charges or subscribe() for subscriptions.",
                provider=self.name,
            )

        for price in product.get("prices") or []:
            if (
                not price.get("recurring_interval")
                and not price.get("recurring_interval_count")
                and (price.get("price_currency") or "").lower() == currency.lower()
            ):
                return price
        raise ProviderError(
            f"No one-time price found for product {product_id} with currency {currency}",
            provider=self.name,
        )

    async def _verify_one_time_checkout(self, checkout_id: str) -> None:
        """Warn when Polar turned a charge checkout into a recurring one."""
        try:
            details = await self._request("GET", f"/checkouts/{checkout_id}")
        except ProviderAPIError as e:
            self._logger.warning(f"Could not verify checkout type: {e}")
            return

        products = details.get("products") or []
        if products and (products[0].get("is_recurring") or products[0].get("recurring_interval")):
            self._logger.error(
                f"Checkout {checkout_id} was created as RECURRING; the product is a "
                "subscription product and cannot be used for one-time payments"
            )

    async def charge(self, input: ChargeInput) -> ChargeResult:
        """Checkout for a one-time product. Polar prices come from the product only."""
        if not input.product_id:
            raise ProviderError(
                "product_id is required for Polar charges. Create a one-time product "
                "in the Polar dashboard and pass its id.",
                provider=self.name,
            )
        if input.amount is not None or input.price_id is not None:
            raise ProviderError(
                "amount and price_id are not supported for Polar charges; "
                "the product's configured price is used",
                provider=self.name,
            )

        price = await self._one_time_price(input.product_id, input.currency)
        payload: dict[str, Any] = {
            "product_id": input.product_id,
            "product_price_id": price["id"],
            "success_url": _success_url(input.success_url),
            "metadata": {
                "paylayer_provider": self.name,
                "currency": input.currency,
                **(input.metadata or {}),
            },
        }
        if input.email and not _is_placeholder_email(input.email):
            payload["customer_email"] = input.email

        checkout = await self._request("POST", "/checkouts", json_body=payload)
        await self._verify_one_time_checkout(checkout["id"])

        return ChargeResult(
            id=checkout["id"],
            status=ChargeStatus.SUCCEEDED if checkout.get("status") == "completed" else ChargeStatus.PENDING,
            amount=from_minor_units(price.get("price_amount") or 0),
            currency=input.currency,
            provider=self.name,
            email=input.email,
            url=checkout.get("url"),
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        """Checkout for the recurring product ``input.plan``."""
        if not input.email:
            raise ProviderError("Email is required for Polar subscriptions", provider=self.name)
        if _is_placeholder_email(input.email):
            raise ProviderError(
                "Polar validates email domains. Use a real email address "
                "(not @example.com or @test.*)",
                provider=self.name,
            )

        product = await self._request("GET", f"/products/{input.plan}")
        if not product.get("recurring_interval"):
            raise ProviderError(
                f"Product {input.plan} is not a subscription product. "
                "Subscriptions need a product with recurring_interval set.",
                provider=self.name,
            )

        checkout = await self._request(
            "POST",
            "/checkouts",
            json_body={
                "products": [input.plan],
                "success_url": _success_url(input.success_url),
                "return_url": _cancel_url(input.cancel_url),
                "customer_email": input.email,
                "metadata": {
                    "paylayer_provider": self.name,
                    "paylayer_plan": input.plan,
                    "currency": input.currency,
                    "paylayer_type": "subscription",
                    **(input.metadata or {}),
                },
            },
        )
        return SubscriptionResult(
            id=checkout["id"],
            status=SubscriptionStatus.PENDING,
            plan=input.plan,
            currency=input.currency,
            provider=self.name,
            email=input.email,
            url=checkout.get("url"),
        )

    def _subscription_result(self, data: dict[str, Any], status: SubscriptionStatus) -> SubscriptionResult:
        return SubscriptionResult(
            id=data["id"],
            status=status,
            plan=data.get("product_id") or "unknown",
            currency=(data.get("currency") or "USD").upper(),
            provider=self.name,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json_body={"revoke_immediate": True},
        )
        return self._subscription_result(response, SubscriptionStatus.CANCELLED)

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request(
            "PATCH",
            f"/subscriptions/{subscription_id}",
            json_body={"cancel_at_period_end": True},
        )
        return self._subscription_result(response, SubscriptionStatus.PAUSED)

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request(
            "PATCH",
            f"/subscriptions/{subscription_id}",
            json_body={"cancel_at_period_end": False},
        )
        return self._subscription_result(response, SubscriptionStatus.ACTIVE)

    async def portal(self, email: str) -> str:
        customer_id = await self._find_or_create_customer(email)
        session = await self._request(
            "POST", "/customer-sessions", json_body={"customer_id": customer_id}
        )
        return session["customer_portal_url"]

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        if input.mode == CheckoutMode.SUBSCRIPTION:
            plan = input.plan or input.product_id
            if not plan:
                raise ProviderError("Subscription checkout requires a plan", provider=self.name)
            result: ChargeResult | SubscriptionResult = await self.subscribe(
                SubscribeInput(
                    plan=plan,
                    currency=input.currency,
                    email=input.email,
                    success_url=input.success_url,
                    cancel_url=input.cancel_url,
                    metadata=input.metadata,
                )
            )
        else:
            result = await self.charge(
                ChargeInput(
                    currency=input.currency,
                    email=input.email,
                    product_id=input.product_id,
                    success_url=input.success_url,
                    metadata=input.metadata,
                )
            )
        return CheckoutResult(id=result.id, url=result.url or "", provider=self.name, mode=input.mode)

    def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Verify ``x-polar-signature``; falls back to POLAR_WEBHOOK_SECRET."""
        webhook_secret = secret or os.environ.get("POLAR_WEBHOOK_SECRET", "")
        return verify_polar_signature(payload, signature, webhook_secret)

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        data = raw_event.get("data")
        data_id = data.get("id") if isinstance(data, dict) else None
        return {
            "type": raw_event.get("type"),
            "id": raw_event.get("id") or data_id or "",
            "data": data,
            "created_at": raw_event.get("timestamp")
            or raw_event.get("created_at")
            or datetime.now(timezone.utc).isoformat(),
        }
