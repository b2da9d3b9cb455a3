"""
Stripe provider using the Stripe REST API.

Requests are form-encoded with Stripe's bracketed key convention
(``metadata[plan]=pro``, ``items[0][price]=price_123``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

import httpx

from paylayer.core.config import Config, get_env_var, is_sandbox
from paylayer.core.exceptions import ProviderError
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
from paylayer.webhooks.verification import verify_stripe_signature

STRIPE_API_VERSION = "2025-11-17.clover"

DEFAULT_RETURN_URL = "https://app.example.com"

# Stripe subscription status -> PayLayer status
_SUBSCRIPTION_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "incomplete": SubscriptionStatus.ACTIVE,
    "incomplete_expired": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.PAUSED,
}


def flatten_form(params: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    """
    Flatten nested params into Stripe's form encoding.

    ``None`` values are skipped. An empty string or empty dict encodes as an
    empty value, which Stripe treats as "clear this field". Booleans are
    lowercased.
    """
    flat: dict[str, str] = {}
    for key, value in params.items():
        full_key = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            if not value:
                flat[full_key] = ""
            else:
                flat.update(flatten_form(value, full_key))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if isinstance(item, Mapping):
                    flat.update(flatten_form(item, f"{full_key}[{i}]"))
                else:
                    flat[f"{full_key}[{i}]"] = _form_value(item)
        else:
            flat[full_key] = _form_value(value)
    return flat


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class StripeProvider(HTTPProvider):
    """Stripe: PaymentIntents, Subscriptions, Checkout and the billing portal."""

    name = "stripe"

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, http_client)
        self._api_key: str = get_env_var("STRIPE_SECRET_KEY", required=True)  # type: ignore[assignment]
        self.base_url = "https://api.stripe.com"

        sandbox_mode = is_sandbox(self.name)
        if sandbox_mode and self._api_key.startswith("sk_live_"):
            self._logger.warning(
                "Sandbox mode is enabled but STRIPE_SECRET_KEY looks like a live key (sk_live_)"
            )
        elif not sandbox_mode and self._api_key.startswith("sk_test_"):
            self._logger.warning(
                "Production mode is enabled but STRIPE_SECRET_KEY looks like a test key (sk_test_)"
            )

    async def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Stripe-Version": STRIPE_API_VERSION,
        }

    async def _post(self, path: str, params: Mapping[str, Any]) -> Any:
        return await self._request("POST", path, form=flatten_form(params))

    def describe_error(self, body: Any) -> str:
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return "Unknown error"

        message = ""
        if error.get("type"):
            message += f"[{error['type']}] "
        message += error.get("message") or "Unknown error"
        for field_name in ("code", "param", "decline_code"):
            if error.get(field_name):
                message += f" ({field_name}: {error[field_name]})"
        return message

    async def _find_customer(self, email: str) -> str | None:
        customers = await self._request(
            "GET", "/v1/customers", params={"email": email, "limit": 1}
        )
        data = customers.get("data") or []
        return data[0]["id"] if data else None

    async def _find_or_create_customer(self, email: str) -> str:
        # Stripe allows several customers per email; the first match is used
        customer_id = await self._find_customer(email)
        if customer_id:
            return customer_id
        customer = await self._post("/v1/customers", {"email": email})
        return customer["id"]

    async def _price_for_lookup_key(self, lookup_key: str) -> str:
        prices = await self._request(
            "GET",
            "/v1/prices",
            params=[("lookup_keys[]", lookup_key), ("limit", 1)],
        )
        data = prices.get("data") or []
        if not data:
            raise ProviderError(
                f'No price found with lookup_key "{lookup_key}". '
                "Create a price with this lookup_key in the Stripe dashboard first.",
                provider=self.name,
            )
        return data[0]["id"]

    async def charge(self, input: ChargeInput) -> ChargeResult:
        """
        Create a PaymentIntent.

        PaymentIntents need client-side confirmation, so a new intent is
        reported as pending. Charges by ``price_id`` without an amount go
        through a Checkout Session and return its URL instead.
        """
        if input.amount is None:
            session = await self.checkout(
                CheckoutInput(
                    currency=input.currency,
                    mode=CheckoutMode.PAYMENT,
                    email=input.email,
                    price_id=input.price_id or input.product_id,
                    success_url=input.success_url,
                    cancel_url=input.cancel_url,
                    metadata=input.metadata,
                )
            )
            return ChargeResult(
                id=session.id,
                status=ChargeStatus.PENDING,
                amount=input.amount,  # type: ignore[arg-type]
                currency=input.currency,
                provider=self.name,
                email=input.email,
                url=session.url,
            )

        customer_id = await self._find_or_create_customer(input.email) if input.email else None
        intent = await self._post(
            "/v1/payment_intents",
            {
                "amount": to_minor_units(input.amount),
                "currency": input.currency.lower(),
                "customer": customer_id,
                "automatic_payment_methods": {"enabled": True},
                "metadata": {"paylayer_provider": self.name, **(input.metadata or {})},
            },
        )

        status = ChargeStatus.PENDING
        if intent.get("status") == "succeeded":
            status = ChargeStatus.SUCCEEDED
        elif intent.get("status") == "canceled":
            status = ChargeStatus.FAILED

        return ChargeResult(
            id=intent["id"],
            status=status,
            amount=input.amount,
            currency=input.currency,
            provider=self.name,
            email=input.email,
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        """Subscribe a customer to the price whose lookup_key is ``input.plan``."""
        if not input.email:
            raise ProviderError("Email is required for Stripe subscriptions", provider=self.name)

        customer_id = await self._find_or_create_customer(input.email)
        price_id = await self._price_for_lookup_key(input.plan)

        subscription = await self._post(
            "/v1/subscriptions",
            {
                "customer": customer_id,
                "items": [{"price": price_id}],
                # SCA: create even if the first invoice needs customer action
                "payment_behavior": "allow_incomplete",
                "collection_method": "charge_automatically",
                "metadata": {
                    "paylayer_provider": self.name,
                    "paylayer_plan": input.plan,
                    **(input.metadata or {}),
                },
            },
        )

        return SubscriptionResult(
            id=subscription["id"],
            status=_SUBSCRIPTION_STATUS_MAP.get(
                subscription.get("status", ""), SubscriptionStatus.ACTIVE
            ),
            plan=input.plan,
            currency=(subscription.get("currency") or input.currency).upper(),
            provider=self.name,
            email=input.email,
        )

    def _subscription_result(
        self, subscription: dict[str, Any], status: SubscriptionStatus
    ) -> SubscriptionResult:
        items = (subscription.get("items") or {}).get("data") or []
        price = items[0].get("price", {}) if items else {}
        return SubscriptionResult(
            id=subscription["id"],
            status=status,
            plan=price.get("lookup_key") or price.get("id") or "unknown",
            currency=(subscription.get("currency") or "usd").upper(),
            provider=self.name,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        """Cancel at the end of the current billing period."""
        subscription = await self._post(
            f"/v1/subscriptions/{subscription_id}", {"cancel_at_period_end": True}
        )
        status = (
            SubscriptionStatus.CANCELLED
            if subscription.get("cancel_at_period_end")
            else SubscriptionStatus.ACTIVE
        )
        return self._subscription_result(subscription, status)

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        """Pause collection; invoices during the pause are marked uncollectible."""
        subscription = await self._post(
            f"/v1/subscriptions/{subscription_id}",
            {"pause_collection": {"behavior": "mark_uncollectible"}},
        )
        status = (
            SubscriptionStatus.PAUSED
            if subscription.get("pause_collection")
            else SubscriptionStatus.ACTIVE
        )
        return self._subscription_result(subscription, status)

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        # An empty value clears pause_collection
        subscription = await self._post(
            f"/v1/subscriptions/{subscription_id}", {"pause_collection": ""}
        )
        return self._subscription_result(subscription, SubscriptionStatus.ACTIVE)

    async def portal(self, email: str) -> str:
        customer_id = await self._find_customer(email)
        if not customer_id:
            raise ProviderError(f"No customer found with email: {email}", provider=self.name)

        session = await self._post(
            "/v1/billing_portal/sessions",
            {
                "customer": customer_id,
                "return_url": os.environ.get("STRIPE_PORTAL_RETURN_URL") or DEFAULT_RETURN_URL,
            },
        )
        return session["url"]

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        """Create a hosted Checkout Session."""
        if input.mode == CheckoutMode.SUBSCRIPTION:
            price_id = input.price_id or (
                await self._price_for_lookup_key(input.plan) if input.plan else None
            )
            if not price_id:
                raise ProviderError(
                    "Subscription checkout requires a price_id or plan", provider=self.name
                )
            line_item: dict[str, Any] = {"price": price_id, "quantity": 1}
        elif input.price_id:
            line_item = {"price": input.price_id, "quantity": 1}
        elif input.amount is not None:
            line_item = {
                "price_data": {
                    "currency": input.currency.lower(),
                    "unit_amount": to_minor_units(input.amount),
                    "product_data": {"name": input.product_id or "Payment"},
                },
                "quantity": 1,
            }
        else:
            raise ProviderError("Checkout requires an amount or a price_id", provider=self.name)

        return_url = os.environ.get("STRIPE_PORTAL_RETURN_URL") or DEFAULT_RETURN_URL
        session = await self._post(
            "/v1/checkout/sessions",
            {
                "mode": input.mode.value,
                "line_items": [line_item],
                "customer_email": input.email,
                "success_url": input.success_url or return_url,
                "cancel_url": input.cancel_url or return_url,
                "metadata": {"paylayer_provider": self.name, **(input.metadata or {})},
            },
        )

        return CheckoutResult(
            id=session["id"],
            url=session.get("url") or "",
            provider=self.name,
            mode=input.mode,
            status=session.get("status") or "open",
        )

    def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Verify ``stripe-signature``; falls back to STRIPE_WEBHOOK_SECRET."""
        webhook_secret = secret or os.environ.get("STRIPE_WEBHOOK_SECRET", "")
        return verify_stripe_signature(payload, signature, webhook_secret)

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        return {
            "type": raw_event.get("type"),
            "id": raw_event.get("id"),
            "data": raw_event.get("data"),
            "created": raw_event.get("created"),
        }
