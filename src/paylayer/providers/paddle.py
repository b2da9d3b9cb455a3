"""
Paddle Billing provider.

Charges and subscriptions are Paddle transactions: Paddle returns a checkout
URL and the subscription itself is created once the customer pays (reported
through the ``subscription.created`` webhook).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
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
)
from paylayer.providers.base import HTTPProvider
from paylayer.webhooks.verification import verify_paddle_signature

SANDBOX_BASE_URL = "https://sandbox-api.paddle.com"
LIVE_BASE_URL = "https://api.paddle.com"


def _subscription_status(value: str | None, default: SubscriptionStatus) -> SubscriptionStatus:
    status = (value or "").lower()
    if status in ("canceled", "cancelled"):
        return SubscriptionStatus.CANCELLED
    if status == "paused":
        return SubscriptionStatus.PAUSED
    if status == "active":
        return SubscriptionStatus.ACTIVE
    if status == "past_due":
        return SubscriptionStatus.PAST_DUE
    return default


class PaddleProvider(HTTPProvider):
    """Paddle Billing API (v1)."""

    name = "paddle"

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, http_client)
        self._api_key: str = get_env_var("PADDLE_API_KEY", required=True)  # type: ignore[assignment]
        self.base_url = get_env_var("PADDLE_BASE_URL") or (
            SANDBOX_BASE_URL if is_sandbox(self.name) else LIVE_BASE_URL
        )
        self._api_version = get_env_var("PADDLE_API_VERSION", default="1")

    async def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Paddle-Version": self._api_version or "1",
        }

    def _raise_api_error(self, response: httpx.Response) -> None:
        try:
            body: Any = response.json()
        except ValueError:
            body = {"message": response.text or "Unknown error"}

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("code") == "transaction_default_checkout_url_not_set":
            raise ProviderAPIError(
                "Paddle configuration error: no Default Payment Link is set. "
                "Set one under Paddle Dashboard > Checkout > Checkout Settings.",
                provider=self.name,
                status_code=response.status_code,
                response_body=body,
            )
        super()._raise_api_error(response)

    async def _is_recurring_price(self, price_id: str) -> bool | None:
        """True/False for a recurring/one-time price, None if it cannot be fetched."""
        try:
            price = await self._request("GET", f"/prices/{price_id}")
        except ProviderAPIError as e:
            self._logger.debug(f"Could not inspect Paddle price {price_id}: {e}")
            return None
        return bool((price.get("data") or {}).get("billing_cycle"))

    async def _resolve_one_time_price(self, input: ChargeInput) -> str:
        if input.product_id:
            product = await self._request(
                "GET", f"/products/{input.product_id}", params={"include": "prices"}
            )
            prices = (product.get("data") or {}).get("prices") or []
            if not prices:
                raise ProviderError(
                    f'No prices found for product "{input.product_id}". '
                    "The product needs at least one price.",
                    provider=self.name,
                )
            price_id = prices[0]["id"]
        else:
            price_id = input.price_id or os.environ.get("PADDLE_DEFAULT_PRICE_ID", "")
            if not price_id:
                raise ProviderError(
                    "Paddle charges need a product_id, a price_id or PADDLE_DEFAULT_PRICE_ID",
                    provider=self.name,
                )

        if await self._is_recurring_price(price_id):
            raise ProviderError(
                f'Price "{price_id}" is recurring. Use subscribe() for subscriptions '
                "or a one-time price for charge().",
                provider=self.name,
            )
        return price_id

    async def _create_transaction(
        self,
        price_id: str,
        currency: str | None,
        email: str | None,
        custom_data: dict[str, Any],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "items": [{"price_id": price_id, "quantity": 1}],
            "custom_data": custom_data,
        }
        if email:
            payload["customer"] = {"email": email}
        if currency:
            payload["currency_code"] = currency
        response = await self._request("POST", "/transactions", json_body=payload)
        return response["data"]

    async def charge(self, input: ChargeInput) -> ChargeResult:
        price_id = await self._resolve_one_time_price(input)
        transaction = await self._create_transaction(
            price_id,
            input.currency,
            input.email,
            {
                "paylayer_provider": self.name,
                "amount": str(input.amount or 0),
                **(input.metadata or {}),
            },
        )

        checkout_url = (transaction.get("checkout") or {}).get("url")
        if not checkout_url:
            raise ProviderError(
                "No checkout URL returned from Paddle. Check that a Default Payment Link "
                "is configured and its domain is approved.",
                provider=self.name,
                details={"transaction_id": transaction.get("id")},
            )

        totals = (transaction.get("details") or {}).get("totals") or transaction.get("totals") or {}
        raw_amount = totals.get("grand_total") or totals.get("total")
        try:
            # Paddle totals are strings in the smallest currency unit
            amount = Decimal(raw_amount) / 100 if raw_amount else (input.amount or Decimal("0"))
        except InvalidOperation:
            amount = input.amount or Decimal("0")
        currency = (totals.get("currency_code") or transaction.get("currency_code") or input.currency)

        status = ChargeStatus.PENDING
        if transaction.get("status") == "completed":
            status = ChargeStatus.SUCCEEDED
        elif transaction.get("status") == "failed":
            status = ChargeStatus.FAILED

        return ChargeResult(
            id=transaction["id"],
            status=status,
            amount=amount,
            currency=currency.upper(),
            provider=self.name,
            email=input.email,
            url=checkout_url,
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        """
        Start a subscription checkout for the recurring price ``input.plan``.

        The returned id is the transaction id; the subscription id arrives
        with the ``subscription.created`` webhook.
        """
        if not input.email:
            raise ProviderError("Email is required for Paddle subscriptions", provider=self.name)

        if await self._is_recurring_price(input.plan) is False:
            raise ProviderError(
                f'Price "{input.plan}" is a one-time price. Use charge() for one-time '
                "payments or a recurring price for subscribe().",
                provider=self.name,
            )

        transaction = await self._create_transaction(
            input.plan,
            input.currency,
            input.email,
            {
                "paylayer_provider": self.name,
                "paylayer_plan": input.plan,
                **(input.metadata or {}),
            },
        )

        items = transaction.get("items") or []
        return SubscriptionResult(
            id=transaction["id"],
            status=SubscriptionStatus.PENDING,
            plan=(items[0].get("price") or {}).get("id", input.plan) if items else input.plan,
            currency=(transaction.get("currency_code") or input.currency).upper(),
            provider=self.name,
            email=input.email,
            url=(transaction.get("checkout") or {}).get("url"),
        )

    def _subscription_result(
        self, subscription: dict[str, Any], status: SubscriptionStatus
    ) -> SubscriptionResult:
        items = subscription.get("items") or []
        plan = (items[0].get("price") or {}).get("id") if items else None
        return SubscriptionResult(
            id=subscription["id"],
            status=status,
            plan=plan or "unknown",
            currency=(subscription.get("currency_code") or "USD").upper(),
            provider=self.name,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json_body={"effective_from": "next_billing_period"},
        )
        return self._subscription_result(response["data"], SubscriptionStatus.CANCELLED)

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        response = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/pause",
            json_body={"effective_from": "immediately"},
        )
        data = response["data"]
        return self._subscription_result(
            data, _subscription_status(data.get("status"), SubscriptionStatus.PAUSED)
        )

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        """
        Resume a paused subscription.

        Paddle cannot reactivate a cancelled subscription; that raises
        ProviderError. An already active subscription is returned as is.
        """
        current = (await self._request("GET", f"/subscriptions/{subscription_id}"))["data"]
        current_status = (current.get("status") or "").lower()

        if current_status in ("canceled", "cancelled"):
            raise ProviderError(
                f"Cannot resume a cancelled subscription ({subscription_id}). "
                "Create a new subscription with subscribe() instead.",
                provider=self.name,
            )
        if current_status == "active":
            return self._subscription_result(current, SubscriptionStatus.ACTIVE)

        response = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/resume",
            json_body={"effective_from": "immediately"},
        )
        data = response["data"]
        return self._subscription_result(
            data, _subscription_status(data.get("status"), SubscriptionStatus.ACTIVE)
        )

    async def portal(self, email: str) -> str:
        customers = await self._request(
            "GET", "/customers", params={"email": email, "per_page": 1}
        )
        data = customers.get("data") or []
        if not data:
            raise ProviderError(f"No customer found with email: {email}", provider=self.name)

        session = await self._request(
            "POST", f"/customers/{data[0]['id']}/portal-sessions", json_body={}
        )
        return session["data"]["urls"]["general"]["overview"]

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        """Create a transaction and return its hosted checkout URL."""
        if input.mode == CheckoutMode.SUBSCRIPTION:
            price_id = input.price_id or input.plan
            if not price_id:
                raise ProviderError(
                    "Subscription checkout requires a price_id or plan", provider=self.name
                )
        else:
            price_id = await self._resolve_one_time_price(
                ChargeInput(
                    currency=input.currency,
                    amount=input.amount,
                    product_id=input.product_id,
                    price_id=input.price_id,
                )
            )

        transaction = await self._create_transaction(
            price_id,
            input.currency,
            input.email,
            {"paylayer_provider": self.name, **(input.metadata or {})},
        )
        checkout_url = (transaction.get("checkout") or {}).get("url")
        if not checkout_url:
            raise ProviderError(
                "No checkout URL returned from Paddle",
                provider=self.name,
                details={"transaction_id": transaction.get("id")},
            )
        return CheckoutResult(
            id=transaction["id"],
            url=checkout_url,
            provider=self.name,
            mode=input.mode,
            status=transaction.get("status") or "open",
        )

    def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Verify ``paddle-signature``; falls back to PADDLE_WEBHOOK_SECRET."""
        webhook_secret = secret or os.environ.get("PADDLE_WEBHOOK_SECRET", "")
        return verify_paddle_signature(payload, signature, webhook_secret)

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        return {
            "type": raw_event.get("event_type"),
            "id": raw_event.get("event_id"),
            "data": raw_event.get("data"),
            "occurred_at": raw_event.get("occurred_at"),
        }
