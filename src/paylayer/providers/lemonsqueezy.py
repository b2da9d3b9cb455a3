"""
Lemon Squeezy provider (JSON:API).

Charges and subscriptions are hosted checkouts; the subscription object is
created by Lemon Squeezy after payment and announced by webhook.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from paylayer.core.config import Config, get_env_var, is_sandbox
from paylayer.core.exceptions import ProviderAPIError, ProviderError
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
    to_minor_units,
)
from paylayer.providers.base import HTTPProvider
from paylayer.webhooks.verification import verify_lemonsqueezy_signature

JSON_API_CONTENT_TYPE = "application/vnd.api+json"

# How long a paused subscription stays paused before Lemon Squeezy resumes it
PAUSE_DURATION = timedelta(days=30)


class LemonSqueezyProvider(HTTPProvider):
    """Lemon Squeezy REST API."""

    name = "lemonsqueezy"

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, http_client)
        self._api_key: str = get_env_var("LEMONSQUEEZY_API_KEY", required=True)  # type: ignore[assignment]
        self.base_url = get_env_var("LEMONSQUEEZY_BASE_URL") or "https://api.lemonsqueezy.com"

    async def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": JSON_API_CONTENT_TYPE,
            "Content-Type": JSON_API_CONTENT_TYPE,
        }

    def _store_id(self, operation: str) -> str:
        store_id = os.environ.get("LEMONSQUEEZY_STORE_ID")
        if not store_id:
            raise ProviderError(
                f"LEMONSQUEEZY_STORE_ID is required for {operation}", provider=self.name
            )
        return store_id

    async def _variant_for(self, product_id: str | None, variant_id: str | None) -> str:
        if product_id:
            product = await self._request("GET", f"/v1/products/{product_id}")
            attributes = (product.get("data") or {}).get("attributes") or {}
            variants = (attributes.get("variants") or {}).get("data") or []
            if not variants:
                raise ProviderError(
                    f'No variants found for product "{product_id}"', provider=self.name
                )
            return variants[0]["id"]

        variant = variant_id or os.environ.get("LEMONSQUEEZY_DEFAULT_VARIANT_ID")
        if not variant:
            raise ProviderError(
                "Lemon Squeezy charges need a product_id, a price_id (variant id) "
                "or LEMONSQUEEZY_DEFAULT_VARIANT_ID",
                provider=self.name,
            )
        return variant

    async def _create_checkout(
        self,
        store_id: str,
        variant_id: str,
        attributes: dict[str, Any],
    ) -> dict[str, Any]:
        body = {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "checkout_options": {"embed": False, "media": False, "logo": False},
                    "expires_at": None,
                    "preview": False,
                    "test_mode": is_sandbox(self.name),
                    **attributes,
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": store_id}},
                    "variant": {"data": {"type": "variants", "id": variant_id}},
                },
            }
        }
        response = await self._request("POST", "/v1/checkouts", json_body=body)
        return response["data"]

    async def charge(self, input: ChargeInput) -> ChargeResult:
        store_id = self._store_id("charges")
        variant_id = await self._variant_for(input.product_id, input.price_id)

        description = (
            f"Payment of {input.amount} {input.currency}"
            if input.amount
            else f"Payment in {input.currency}"
        )
        attributes: dict[str, Any] = {
            "product_options": {"name": "One-time Payment", "description": description},
            "checkout_data": {
                "email": input.email,
                "custom": {"paylayer_provider": self.name, **(input.metadata or {})},
            },
        }
        if input.amount:
            attributes["custom_price"] = to_minor_units(input.amount)

        checkout = await self._create_checkout(store_id, variant_id, attributes)
        checkout_attributes = checkout.get("attributes") or {}
        status = (
            ChargeStatus.SUCCEEDED
            if checkout_attributes.get("status") in ("paid", "completed")
            else ChargeStatus.PENDING
        )
        return ChargeResult(
            id=checkout["id"],
            status=status,
            amount=input.amount or 0,  # type: ignore[arg-type]
            currency=input.currency,
            provider=self.name,
            email=input.email,
            url=checkout_attributes.get("url"),
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        """Open a checkout for the variant ``input.plan``."""
        if not input.email:
            raise ProviderError("Email is required for Lemon Squeezy subscriptions", provider=self.name)
        store_id = self._store_id("subscriptions")

        checkout = await self._create_checkout(
            store_id,
            input.plan,
            {
                "product_options": {"name": input.plan},
                "checkout_data": {
                    "email": input.email,
                    "custom": {
                        "paylayer_provider": self.name,
                        "paylayer_plan": input.plan,
                        **(input.metadata or {}),
                    },
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
            url=(checkout.get("attributes") or {}).get("url"),
        )

    def _subscription_result(self, data: dict[str, Any], status: SubscriptionStatus) -> SubscriptionResult:
        attributes = data.get("attributes") or {}
        return SubscriptionResult(
            id=str(data["id"]),
            status=status,
            plan=str(attributes.get("variant_id") or "unknown"),
            currency=(attributes.get("currency") or "USD").upper(),
            provider=self.name,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request("DELETE", f"/v1/subscriptions/{subscription_id}")
        data = response["data"]
        status = (data.get("attributes") or {}).get("status")
        if status != "cancelled":
            raise ProviderError(
                f"Failed to cancel subscription: status is {status}", provider=self.name
            )
        return self._subscription_result(data, SubscriptionStatus.CANCELLED)

    async def _patch_subscription(self, subscription_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"/v1/subscriptions/{subscription_id}",
            json_body={
                "data": {"type": "subscriptions", "id": subscription_id, "attributes": attributes}
            },
        )
        return response["data"]

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        resumes_at = datetime.now(timezone.utc) + PAUSE_DURATION
        data = await self._patch_subscription(
            subscription_id,
            {"pause": {"mode": "free", "resumes_at": resumes_at.isoformat()}},
        )
        return self._subscription_result(data, SubscriptionStatus.PAUSED)

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        data = await self._patch_subscription(subscription_id, {"pause": None, "cancelled": False})
        return self._subscription_result(data, SubscriptionStatus.ACTIVE)

    async def portal(self, email: str) -> str:
        """
        Customer portal URL.

        Prefers the signed per-customer URL from the API, then the store's
        billing page, then the generic Lemon Squeezy billing page.
        """
        store_id = os.environ.get("LEMONSQUEEZY_STORE_ID")
        if store_id:
            try:
                response = await self._request(
                    "GET",
                    "/v1/customers",
                    params={"filter[store_id]": store_id, "filter[email]": email},
                )
                customers = response.get("data") or []
                if customers:
                    urls = (customers[0].get("attributes") or {}).get("urls") or {}
                    if urls.get("customer_portal"):
                        return urls["customer_portal"]
            except (ProviderAPIError, httpx.HTTPError) as e:
                self._logger.warning(f"Could not fetch signed customer portal URL, using unsigned URL: {e}")

        subdomain = os.environ.get("LEMONSQUEEZY_STORE_SUBDOMAIN")
        if subdomain:
            return f"https://{subdomain}.lemonsqueezy.com/billing"

        base_url = os.environ.get("LEMONSQUEEZY_PORTAL_BASE_URL") or "https://app.lemonsqueezy.com"
        return f"{base_url}/billing"

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        if input.mode == CheckoutMode.SUBSCRIPTION:
            plan = input.plan or input.price_id
            if not plan:
                raise ProviderError("Subscription checkout requires a plan", provider=self.name)
            result = await self.subscribe(
                SubscribeInput(
                    plan=plan,
                    currency=input.currency,
                    email=input.email,
                    metadata=input.metadata,
                )
            )
        else:
            result = await self.charge(
                ChargeInput(
                    currency=input.currency,
                    amount=input.amount,
                    email=input.email,
                    product_id=input.product_id,
                    price_id=input.price_id,
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
        """Verify ``X-Signature``; falls back to LEMONSQUEEZY_WEBHOOK_SECRET."""
        webhook_secret = secret or os.environ.get("LEMONSQUEEZY_WEBHOOK_SECRET", "")
        return verify_lemonsqueezy_signature(payload, signature, webhook_secret)

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        meta = raw_event.get("meta") or {}
        data = raw_event.get("data") or {}
        return {
            "type": meta.get("event_name"),
            "id": data.get("id"),
            "data": data,
            "custom_data": meta.get("custom_data"),
        }
