"""
PayPal provider (Orders v2, Subscriptions v1).

Authenticates with OAuth client credentials; the access token is cached
until shortly before it expires. Webhooks are verified remotely through
PayPal's verify-webhook-signature endpoint.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
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
)
from paylayer.providers.base import HTTPProvider

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

DEFAULT_RETURN_URL = "https://app.example.com/success"
DEFAULT_CANCEL_URL = "https://app.example.com/cancel"

# Refresh the access token this many seconds before PayPal expires it
TOKEN_REFRESH_MARGIN_SECONDS = 60

# Transmission headers required for remote verification (dash or underscore form)
VERIFICATION_HEADERS = (
    "auth-algo",
    "cert-url",
    "transmission-id",
    "transmission-sig",
    "transmission-time",
)


def _order_status(value: str | None) -> ChargeStatus:
    if value == "COMPLETED":
        return ChargeStatus.SUCCEEDED
    if value in ("FAILED", "VOIDED"):
        return ChargeStatus.FAILED
    return ChargeStatus.PENDING


def _subscription_status(value: str | None) -> SubscriptionStatus:
    return {
        "ACTIVE": SubscriptionStatus.ACTIVE,
        "SUSPENDED": SubscriptionStatus.PAUSED,
        "CANCELLED": SubscriptionStatus.CANCELLED,
    }.get(value or "", SubscriptionStatus.PENDING)


def _approval_url(resource: dict[str, Any]) -> str | None:
    for link in resource.get("links") or []:
        if link.get("rel") in ("approve", "approval_url", "payer-action"):
            return link.get("href")
    return None


class PayPalProvider(HTTPProvider):
    """PayPal REST API."""

    name = "paypal"

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, http_client)
        client_id = get_env_var("PAYPAL_CLIENT_ID")
        client_secret = get_env_var("PAYPAL_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ConfigurationError(
                "PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET environment variables "
                "are required for PayPal provider"
            )
        self._client_id = client_id
        self._client_secret = client_secret
        self.base_url = get_env_var("PAYPAL_BASE_URL") or (
            SANDBOX_BASE_URL if is_sandbox(self.name) else LIVE_BASE_URL
        )

        self._access_token: str | None = None
        self._token_expiry = 0.0

        if not is_sandbox(self.name) and not get_env_var("PAYPAL_WEBHOOK_ID"):
            self._logger.warning("PAYPAL_WEBHOOK_ID should be set for production webhook verification")

    async def get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when it is near expiry."""
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token

        client = await self._get_client()
        response = await client.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self._client_id, self._client_secret),
            data={"grant_type": "client_credentials"},
        )
        if not response.is_success:
            raise ProviderAPIError(
                f"PayPal auth error: {response.status_code} - {response.text}",
                provider=self.name,
                status_code=response.status_code,
                response_body=response.text,
            )

        data = response.json()
        self._access_token = data["access_token"]
        self._token_expiry = time.monotonic() + float(data.get("expires_in", 0)) - TOKEN_REFRESH_MARGIN_SECONDS
        return self._access_token

    async def _auth_headers(self) -> dict[str, str]:
        token = await self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "PayPal-Request-Id": str(uuid.uuid4()),
        }

    def describe_error(self, body: Any) -> str:
        if not isinstance(body, dict):
            return str(body)
        message = f"{body.get('name') or 'UNKNOWN_ERROR'}: {body.get('message') or 'Unknown error'}"
        if body.get("debug_id"):
            message += f" (debug_id: {body['debug_id']})"
        details = body.get("details") or []
        if details:
            issues = ", ".join(
                f"{d.get('field') or 'unknown'}: {d.get('issue') or 'unknown issue'}" for d in details
            )
            message += f" - Details: {issues}"
        return message

    async def _product_amount(self, product_id: str) -> Decimal:
        """Price of a catalog product; rejects products that back subscription plans."""
        product = await self._request("GET", f"/v1/catalogs/products/{product_id}")

        if product.get("type") == "SERVICE":
            plans = await self._request(
                "GET", "/v1/billing/plans", params={"product_id": product_id, "page_size": 1}
            )
            if plans.get("plans"):
                raise ProviderError(
                    f'Product "{product_id}" is associated with subscription plans. '
                    "Use subscribe() or a one-time product for charge().",
                    provider=self.name,
                )

        try:
            tier = product["pricing_models"][0]["pricing_tiers"][0]
            amount = Decimal(tier["amount"]["value"])
        except (KeyError, IndexError, TypeError, InvalidOperation):
            amount = Decimal("0")
        if amount <= 0:
            raise ProviderError(
                f'Could not determine price for product "{product_id}". Provide an amount instead.',
                provider=self.name,
            )
        return amount

    async def _create_order(
        self,
        amount: Decimal,
        currency: str,
        email: str | None,
        metadata: dict[str, Any] | None,
        success_url: str | None,
        cancel_url: str | None,
    ) -> dict[str, Any]:
        purchase_unit: dict[str, Any] = {
            "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
            "description": f"Payment of {amount} {currency}",
        }
        if email:
            purchase_unit["payee"] = {"email_address": email}
        if metadata:
            purchase_unit["custom_id"] = json.dumps(metadata)

        return await self._request(
            "POST",
            "/v2/checkout/orders",
            json_body={
                "intent": "CAPTURE",
                "purchase_units": [purchase_unit],
                "application_context": {
                    "return_url": success_url or os.environ.get("PAYPAL_RETURN_URL") or DEFAULT_RETURN_URL,
                    "cancel_url": cancel_url or os.environ.get("PAYPAL_CANCEL_URL") or DEFAULT_CANCEL_URL,
                },
            },
        )

    async def charge(self, input: ChargeInput) -> ChargeResult:
        """
        Create an order. The customer approves it at ``ChargeResult.url``;
        call ``capture_order`` afterwards to collect the funds.
        """
        if input.product_id:
            amount = await self._product_amount(input.product_id)
        elif input.amount:
            amount = input.amount
        else:
            raise ProviderError(
                "PayPal requires either a product_id or an amount for one-time payments",
                provider=self.name,
            )

        order = await self._create_order(
            amount, input.currency, input.email, input.metadata, input.success_url, input.cancel_url
        )
        return ChargeResult(
            id=order["id"],
            status=_order_status(order.get("status")),
            amount=amount,
            currency=input.currency,
            provider=self.name,
            email=input.email,
            url=_approval_url(order),
        )

    async def capture_order(self, order_id: str) -> ChargeResult:
        """Capture an approved order."""
        capture = await self._request(
            "POST", f"/v2/checkout/orders/{order_id}/capture", json_body={}
        )

        try:
            capture_data = capture["purchase_units"][0]["payments"]["captures"][0]
        except (KeyError, IndexError, TypeError):
            capture_data = {}
        amount_info = capture_data.get("amount") or {}

        return ChargeResult(
            id=capture["id"],
            status=_order_status(capture.get("status")),
            amount=Decimal(amount_info.get("value") or "0"),
            currency=(amount_info.get("currency_code") or "USD").upper(),
            provider=self.name,
        )

    async def subscribe(self, input: SubscribeInput) -> SubscriptionResult:
        if not input.email:
            raise ProviderError("Email is required for PayPal subscriptions", provider=self.name)

        plan = await self._request("GET", f"/v1/billing/plans/{input.plan}")
        cycles = plan.get("billing_cycles") or []
        if not any(c.get("tenure_type") in ("REGULAR", "TRIAL") for c in cycles):
            raise ProviderError(
                f'Plan "{input.plan}" is not configured for recurring billing',
                provider=self.name,
            )

        body: dict[str, Any] = {
            "plan_id": input.plan,
            "subscriber": {"email_address": input.email},
            "application_context": {
                "brand_name": os.environ.get("PAYPAL_BRAND_NAME") or "PayLayer",
                "return_url": input.success_url or os.environ.get("PAYPAL_RETURN_URL") or DEFAULT_RETURN_URL,
                "cancel_url": input.cancel_url or os.environ.get("PAYPAL_CANCEL_URL") or DEFAULT_CANCEL_URL,
            },
        }
        if input.metadata:
            body["custom_id"] = json.dumps(input.metadata)

        subscription = await self._request("POST", "/v1/billing/subscriptions", json_body=body)
        return SubscriptionResult(
            id=subscription["id"],
            status=_subscription_status(subscription.get("status")),
            plan=subscription.get("plan_id") or input.plan,
            currency=input.currency,
            provider=self.name,
            email=input.email,
            url=_approval_url(subscription),
        )

    async def _transition(
        self, subscription_id: str, action: str, reason: str, status: SubscriptionStatus
    ) -> SubscriptionResult:
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/{action}",
            json_body={"reason": reason},
        )
        subscription = await self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")

        billing = subscription.get("billing_info") or {}
        currency = (
            (billing.get("outstanding_balance") or {}).get("currency_code")
            or ((billing.get("last_payment") or {}).get("amount") or {}).get("currency_code")
            or "USD"
        )
        return SubscriptionResult(
            id=subscription.get("id", subscription_id),
            status=status,
            plan=subscription.get("plan_id") or "unknown",
            currency=currency.upper(),
            provider=self.name,
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        return await self._transition(
            subscription_id, "cancel", "User requested cancellation", SubscriptionStatus.CANCELLED
        )

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        return await self._transition(
            subscription_id, "suspend", "User requested pause", SubscriptionStatus.PAUSED
        )

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        return await self._transition(
            subscription_id, "activate", "User requested resume", SubscriptionStatus.ACTIVE
        )

    async def portal(self, email: str) -> str:
        # PayPal has no per-customer portal; subscribers manage autopay on paypal.com
        base_url = os.environ.get("PAYPAL_PORTAL_BASE_URL") or "https://www.paypal.com"
        return f"{base_url}/myaccount/autopay"

    async def checkout(self, input: CheckoutInput) -> CheckoutResult:
        if input.mode == CheckoutMode.SUBSCRIPTION:
            plan = input.plan or input.price_id
            if not plan:
                raise ProviderError("Subscription checkout requires a plan", provider=self.name)
            subscription = await self.subscribe(
                SubscribeInput(
                    plan=plan,
                    currency=input.currency,
                    email=input.email,
                    success_url=input.success_url,
                    cancel_url=input.cancel_url,
                    metadata=input.metadata,
                )
            )
            return CheckoutResult(
                id=subscription.id,
                url=subscription.url or "",
                provider=self.name,
                mode=input.mode,
            )

        charge = await self.charge(
            ChargeInput(
                currency=input.currency,
                amount=input.amount,
                email=input.email,
                product_id=input.product_id,
                success_url=input.success_url,
                cancel_url=input.cancel_url,
                metadata=input.metadata,
            )
        )
        return CheckoutResult(id=charge.id, url=charge.url or "", provider=self.name, mode=input.mode)

    async def verify_webhook(
        self,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """
        Ask PayPal whether a webhook is authentic.

        Missing transmission headers or webhook id fail closed without a
        network call. Transport errors and non-SUCCESS answers are False.
        """
        if not headers:
            self._logger.warning("PayPal webhook verification: missing headers")
            return False

        lowered = {k.lower(): v for k, v in headers.items()}
        values: dict[str, str] = {}
        for name in VERIFICATION_HEADERS:
            value = lowered.get(f"paypal-{name}") or lowered.get(f"paypal_{name.replace('-', '_')}")
            if not value:
                self._logger.warning(f"PayPal webhook verification: missing paypal-{name} header")
                return False
            values[name.replace("-", "_")] = value

        webhook_id = secret or os.environ.get("PAYPAL_WEBHOOK_ID", "")
        if not webhook_id:
            self._logger.warning("PAYPAL_WEBHOOK_ID not set; cannot verify PayPal webhook")
            return False

        try:
            webhook_event = json.loads(payload)
        except (TypeError, ValueError):
            return False

        try:
            token = await self.get_access_token()
            client = await self._get_client()
            response = await client.post(
                f"{self.base_url}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                content=json.dumps({**values, "webhook_id": webhook_id, "webhook_event": webhook_event}),
            )
            if not response.is_success:
                self._logger.error(
                    f"PayPal webhook verification failed: {response.status_code} - {response.text}"
                )
                return False

            verification_status = response.json().get("verification_status")
        except Exception as e:
            self._logger.error(f"PayPal webhook verification error: {e}")
            return False

        if verification_status != "SUCCESS":
            self._logger.warning(f"PayPal webhook verification status: {verification_status}")
            return False
        return True

    @staticmethod
    def normalize_webhook_event(raw_event: Any) -> dict[str, Any]:
        return {
            "type": raw_event.get("event_type") or raw_event.get("eventType") or "",
            "id": raw_event.get("id") or "",
            "resource": raw_event.get("resource") or {},
            "create_time": raw_event.get("create_time")
            or raw_event.get("createTime")
            or time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
