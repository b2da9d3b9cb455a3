"""
Type definitions for PayLayer.

This module contains the enums, data classes, and type definitions
used throughout the package.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, TypeAlias

# ISO 4217 currency code (e.g. "USD", "EUR")
Currency: TypeAlias = str

# Flexible amount input
AmountType: TypeAlias = Decimal | int | float | str


def to_decimal(amount: AmountType | None) -> Decimal | None:
    """Coerce an amount to Decimal (floats go through str to avoid binary noise)."""
    if amount is None or isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to cents (smallest currency unit)."""
    return int((amount * 100).quantize(Decimal("1")))


def from_minor_units(value: int | float | str) -> Decimal:
    """Convert cents back to a major-unit Decimal."""
    return Decimal(str(value)) / Decimal(100)


class ProviderName(str, Enum):
    """Supported payment providers."""

    STRIPE = "stripe"
    PADDLE = "paddle"
    PAYPAL = "paypal"
    LEMONSQUEEZY = "lemonsqueezy"
    POLAR = "polar"
    MOCK = "mock"


class EventType(str, Enum):
    """Canonical webhook event types. This set is closed."""

    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_DELETED = "subscription.deleted"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_RESUMED = "subscription.resumed"


class ChargeStatus(str, Enum):
    """One-time payment status."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Subscription status."""

    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    PENDING = "pending"  # checkout created, subscription not yet live


class CheckoutMode(str, Enum):
    """What a hosted checkout session sells."""

    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"


@dataclass
class ChargeInput:
    """Parameters for a one-time charge."""

    currency: Currency
    amount: Decimal | None = None
    email: str | None = None
    product_id: str | None = None
    price_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)


@dataclass
class ChargeResult:
    """Result of a one-time charge."""

    id: str
    status: ChargeStatus
    amount: Decimal
    currency: Currency
    provider: str
    email: str | None = None
    url: str | None = None  # approval/checkout URL when the customer must act


@dataclass
class SubscribeInput:
    """Parameters for creating a subscription."""

    plan: str
    currency: Currency
    email: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class SubscriptionResult:
    """Result of a subscription operation."""

    id: str
    status: SubscriptionStatus
    plan: str
    currency: Currency
    provider: str
    email: str | None = None
    url: str | None = None


@dataclass
class CheckoutInput:
    """Parameters for a hosted checkout session."""

    currency: Currency
    mode: CheckoutMode = CheckoutMode.PAYMENT
    amount: Decimal | None = None
    plan: str | None = None
    email: str | None = None
    product_id: str | None = None
    price_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.amount = to_decimal(self.amount)
        if isinstance(self.mode, str):
            self.mode = CheckoutMode(self.mode)


@dataclass
class CheckoutResult:
    """A hosted checkout session the customer should be redirected to."""

    id: str
    url: str
    provider: str
    mode: CheckoutMode
    status: str = "open"


@dataclass
class Address:
    """Postal address attached to a customer."""

    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


@dataclass
class CustomerInfo:
    """Customer details extracted from a webhook event."""

    id: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    address: Address | None = None


@dataclass
class NormalizedEvent:
    """
    Canonical webhook event delivered to handlers.

    Independent of the originating provider: ``type`` is always an EventType
    and monetary amounts are in major units.
    """

    type: EventType
    provider: str
    amount: Decimal | None = None
    currency: Currency | None = None
    email: str | None = None
    subscription_id: str | None = None
    payment_id: str | None = None
    customer_id: str | None = None
    customer: CustomerInfo | None = None
    status: str | None = None
    description: str | None = None
    created_at: str | None = None
    plan: str | None = None
    product_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    provider_response: Any = None


@dataclass
class WebhookResponse:
    """HTTP-style acknowledgment returned by the webhook endpoint."""

    status: int
    body: dict[str, bool]

    @classmethod
    def accepted(cls) -> WebhookResponse:
        return cls(status=200, body={"received": True})

    @classmethod
    def rejected(cls) -> WebhookResponse:
        return cls(status=401, body={"received": False})

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "body": dict(self.body)}


EventHandler: TypeAlias = Callable[[NormalizedEvent], Awaitable[None] | None]
