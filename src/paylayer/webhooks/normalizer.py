"""
Webhook event normalization.

Stage 1 is the provider class's ``normalize_webhook_event`` (shallow,
provider-native shape). Stage 2 maps the provider's event type onto the
closed EventType set and extracts amounts, customer details and metadata.
Events with no canonical mapping produce ``None`` and are dropped.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from paylayer.core.logging import get_logger
from paylayer.core.types import Address, CustomerInfo, EventType, NormalizedEvent
from paylayer.providers.registry import PROVIDER_CLASSES

logger = get_logger("webhooks.normalizer")

# (event type, provider-native shape) -> matches?
Rule = tuple[Callable[[str, dict[str, Any]], bool], EventType]


def _contains(*needles: str) -> Callable[[str, dict[str, Any]], bool]:
    return lambda event_type, _event: any(n in event_type for n in needles)


def _data(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data")
    return data if isinstance(data, dict) else {}


def _polar_checkout_status(status: str) -> Callable[[str, dict[str, Any]], bool]:
    return lambda t, e: "checkout.updated" in t and _data(e).get("status") == status


def _polar_paused(t: str, e: dict[str, Any]) -> bool:
    return "subscription.updated" in t and _data(e).get("cancel_at_period_end") is True


def _polar_resumed(t: str, e: dict[str, Any]) -> bool:
    data = _data(e)
    return (
        "subscription.updated" in t
        and data.get("cancel_at_period_end") is False
        and data.get("status") == "active"
    )


# Ordered rules per provider. Matching is substring-based on the lowercased
# provider event type; the first matching rule wins.
EVENT_TYPE_RULES: dict[str, list[Rule]] = {
    "stripe": [
        (
            _contains("payment_intent.succeeded", "charge.succeeded", "checkout.session.completed"),
            EventType.PAYMENT_SUCCESS,
        ),
        (_contains("payment_intent.payment_failed", "charge.failed"), EventType.PAYMENT_FAILED),
        (_contains("customer.subscription.created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("customer.subscription.updated"), EventType.SUBSCRIPTION_UPDATED),
        (_contains("customer.subscription.deleted"), EventType.SUBSCRIPTION_DELETED),
        (_contains("customer.subscription.canceled"), EventType.SUBSCRIPTION_CANCELLED),
        (_contains("customer.subscription.paused"), EventType.SUBSCRIPTION_PAUSED),
        (_contains("customer.subscription.resumed"), EventType.SUBSCRIPTION_RESUMED),
    ],
    "paddle": [
        (_contains("transaction.completed"), EventType.PAYMENT_SUCCESS),
        (_contains("transaction.failed"), EventType.PAYMENT_FAILED),
        (_contains("subscription.created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("subscription.updated"), EventType.SUBSCRIPTION_UPDATED),
        (_contains("subscription.canceled", "subscription.cancelled"), EventType.SUBSCRIPTION_CANCELLED),
        (_contains("subscription.paused"), EventType.SUBSCRIPTION_PAUSED),
        (_contains("subscription.resumed"), EventType.SUBSCRIPTION_RESUMED),
    ],
    "paypal": [
        (_contains("payment.capture.completed"), EventType.PAYMENT_SUCCESS),
        (_contains("payment.capture.denied"), EventType.PAYMENT_FAILED),
        (_contains("billing.subscription.created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("billing.subscription.updated"), EventType.SUBSCRIPTION_UPDATED),
        (_contains("billing.subscription.cancelled"), EventType.SUBSCRIPTION_CANCELLED),
        (_contains("billing.subscription.suspended"), EventType.SUBSCRIPTION_PAUSED),
        (_contains("billing.subscription.activated"), EventType.SUBSCRIPTION_RESUMED),
    ],
    "lemonsqueezy": [
        (_contains("order_created", "subscription_payment_success"), EventType.PAYMENT_SUCCESS),
        (_contains("subscription_payment_failed"), EventType.PAYMENT_FAILED),
        (_contains("subscription_created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("subscription_updated"), EventType.SUBSCRIPTION_UPDATED),
        (_contains("subscription_cancelled", "subscription_canceled"), EventType.SUBSCRIPTION_CANCELLED),
        (_contains("subscription_paused"), EventType.SUBSCRIPTION_PAUSED),
        (_contains("subscription_unpaused", "subscription_resumed"), EventType.SUBSCRIPTION_RESUMED),
        (_contains("subscription_expired"), EventType.SUBSCRIPTION_CANCELLED),
    ],
    "polar": [
        (_contains("checkout.completed"), EventType.PAYMENT_SUCCESS),
        (_polar_checkout_status("completed"), EventType.PAYMENT_SUCCESS),
        (_contains("checkout.failed"), EventType.PAYMENT_FAILED),
        (_polar_checkout_status("failed"), EventType.PAYMENT_FAILED),
        (_contains("subscription.created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("subscription.cancelled", "subscription.canceled"), EventType.SUBSCRIPTION_CANCELLED),
        (_polar_paused, EventType.SUBSCRIPTION_PAUSED),
        (_polar_resumed, EventType.SUBSCRIPTION_RESUMED),
        (_contains("subscription.updated"), EventType.SUBSCRIPTION_UPDATED),
    ],
    "mock": [
        (_contains("subscription.created"), EventType.SUBSCRIPTION_CREATED),
        (_contains("subscription.updated"), EventType.SUBSCRIPTION_UPDATED),
        (_contains("subscription.deleted"), EventType.SUBSCRIPTION_DELETED),
        (_contains("subscription.cancelled", "subscription.canceled"), EventType.SUBSCRIPTION_CANCELLED),
        (_contains("subscription.paused"), EventType.SUBSCRIPTION_PAUSED),
        (_contains("subscription.resumed"), EventType.SUBSCRIPTION_RESUMED),
        (_contains("payment.failed", "charge.failed"), EventType.PAYMENT_FAILED),
        (_contains("payment.success", "charge.succeeded"), EventType.PAYMENT_SUCCESS),
    ],
}


def map_event_type(provider_name: str, event: dict[str, Any]) -> EventType | None:
    """Canonical type for a stage-1 event, or None if it is not modelled."""
    event_type = str(event.get("type") or "").lower()
    for matches, canonical in EVENT_TYPE_RULES.get(provider_name, EVENT_TYPE_RULES["mock"]):
        if matches(event_type, event):
            return canonical
    return None


# -- small accessors that never raise on odd shapes --


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(mapping: dict[str, Any], *keys: str) -> str | None:
    """First string value among keys."""
    for key in keys:
        value = mapping.get(key)
        if isinstance(value, str):
            return value
    return None


def _ident(mapping: dict[str, Any], *keys: str) -> str | None:
    """First id-like value (string or integer) among keys, as a string."""
    for key in keys:
        value = mapping.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
    return None


def _num(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, float)) else None


def _cents(value: Any) -> Decimal | None:
    """Minor units (int, float or numeric string) -> major-unit Decimal."""
    if isinstance(value, str):
        try:
            return Decimal(value) / 100
        except InvalidOperation:
            return None
    number = _num(value)
    return Decimal(str(number)) / 100 if number is not None else None


def _major(value: Any) -> Decimal | None:
    """Major-unit value (PayPal "12.50") -> Decimal."""
    try:
        if isinstance(value, str):
            return Decimal(value)
        number = _num(value)
        return Decimal(str(number)) if number is not None else None
    except InvalidOperation:
        return None


def _upper(value: Any) -> str | None:
    return value.upper() if isinstance(value, str) else None


def _first(value: Any) -> dict[str, Any]:
    return _dict(value[0]) if isinstance(value, list) and value else {}


def _unix_to_iso(value: Any) -> str | None:
    number = _num(value)
    if number is None:
        return None
    return datetime.fromtimestamp(number, tz=timezone.utc).isoformat()


def _customer_id(value: Any) -> str | None:
    """A Stripe-style customer reference: either an id or an expanded object."""
    if isinstance(value, str):
        return value
    return _str(_dict(value), "id")


class _Fields:
    """Mutable accumulator for extracted event fields."""

    def __init__(self) -> None:
        self.amount: Decimal | None = None
        self.currency: str | None = None
        self.email: str | None = None
        self.subscription_id: str | None = None
        self.payment_id: str | None = None
        self.customer_id: str | None = None
        self.customer: CustomerInfo | None = None
        self.status: str | None = None
        self.description: str | None = None
        self.created_at: str | None = None
        self.plan: str | None = None
        self.product_id: str | None = None
        self.metadata: dict[str, Any] | None = None

    def build_customer(self, name: str | None = None) -> None:
        if self.email or self.customer_id:
            self.customer = CustomerInfo(id=self.customer_id, email=self.email, name=name)


# -- Stripe --


def _stripe_price(fields: _Fields, price: dict[str, Any]) -> None:
    fields.plan = _str(price, "lookup_key", "id")
    fields.product_id = _str(price, "product")


def _stripe_subscription(fields: _Fields, data: dict[str, Any], event: dict[str, Any]) -> None:
    fields.subscription_id = _str(data, "id")
    fields.customer_id = _customer_id(data.get("customer"))
    fields.email = _str(_dict(data.get("customer")), "email")

    items = _dict(data.get("items")).get("data")
    plan = _dict(data.get("plan"))
    invoice = _dict(data.get("latest_invoice"))
    if isinstance(items, list) and items:
        price = _dict(_first(items).get("price"))
        unit_amount = _num(price.get("unit_amount"))
        if unit_amount is not None and unit_amount > 0:
            fields.amount = _cents(unit_amount)
        fields.currency = _upper(price.get("currency"))
        _stripe_price(fields, price)
    elif plan:
        plan_amount = _num(plan.get("amount"))
        if plan_amount is not None and plan_amount > 0:
            fields.amount = _cents(plan_amount)
        fields.currency = _upper(plan.get("currency"))
        _stripe_price(fields, plan)
    elif invoice:
        fields.amount = _cents(invoice.get("amount_due"))
        if fields.amount is None:
            fields.amount = _cents(invoice.get("total"))
        fields.currency = _upper(invoice.get("currency"))

    # Email fallbacks, most specific first
    if not fields.email and invoice:
        fields.email = (
            _str(_dict(invoice.get("customer_details")), "email")
            or _str(invoice, "customer_email")
            or _str(_dict(invoice.get("customer")), "email")
        )
    if not fields.email:
        payment_method = _dict(data.get("default_payment_method"))
        fields.email = _str(_dict(payment_method.get("customer")), "email")
    if not fields.email:
        source = _dict(data.get("default_source"))
        fields.email = _str(_dict(source.get("customer")), "email")
    if not fields.email:
        fields.email = _str(_dict(data.get("metadata")), "email", "customer_email")
    if not fields.email:
        setup_intent = _dict(data.get("pending_setup_intent"))
        fields.email = _str(_dict(setup_intent.get("customer")), "email")

    fields.status = _str(data, "status")
    fields.description = _str(data, "description")
    fields.build_customer()
    fields.created_at = _unix_to_iso(data.get("created")) or _unix_to_iso(event.get("created"))


def _stripe_payment(fields: _Fields, data: dict[str, Any], event: dict[str, Any], event_type: str) -> None:
    fields.amount = _cents(data.get("amount_total"))
    if fields.amount is None:
        fields.amount = _cents(data.get("amount"))
    fields.currency = _upper(data.get("currency"))

    fields.customer_id = (
        _customer_id(data.get("customer"))
        or _customer_id(_dict(data.get("payment_intent")).get("customer"))
        or _customer_id(_dict(data.get("subscription")).get("customer"))
        or _str(_dict(data.get("payment_method")), "customer")
        or _str(_dict(data.get("charge")), "customer")
    )

    details = _dict(data.get("customer_details"))
    fields.email = _str(data, "customer_email") or _str(details, "email")

    if fields.email or fields.customer_id:
        address = _dict(details.get("address"))
        fields.customer = CustomerInfo(
            id=fields.customer_id,
            email=fields.email,
            name=_str(details, "name"),
            phone=_str(details, "phone"),
            address=Address(
                line1=_str(address, "line1"),
                line2=_str(address, "line2"),
                city=_str(address, "city"),
                state=_str(address, "state"),
                postal_code=_str(address, "postal_code", "postalCode"),
                country=_str(address, "country"),
            )
            if address
            else None,
        )

    fields.subscription_id = _str(data, "subscription")
    if not fields.subscription_id and "subscription" in event_type:
        fields.subscription_id = _str(data, "id")
    fields.payment_id = _str(data, "id")
    fields.status = _str(data, "status")
    fields.description = _str(data, "description")

    line_items = data.get("line_items")
    items = data.get("items")
    if isinstance(line_items, list) and line_items:
        _stripe_price(fields, _dict(_first(line_items).get("price")))
    elif isinstance(items, list) and items:
        _stripe_price(fields, _dict(_first(items).get("price")))

    fields.created_at = _unix_to_iso(event.get("created")) or _unix_to_iso(data.get("created"))


def _extract_stripe(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    data = _dict(_dict(event.get("data")).get("object"))
    if not data:
        return

    is_subscription = (
        "subscription" in event_type
        and isinstance(data.get("id"), str)
        and any(data.get(k) is not None for k in ("items", "plan", "status", "customer"))
    )
    if is_subscription:
        _stripe_subscription(fields, data, event)
    else:
        _stripe_payment(fields, data, event, event_type)

    fields.metadata = _dict(data.get("metadata")) or _dict(_dict(data.get("subscription")).get("metadata")) or None


# -- Paddle --


def _extract_paddle(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    data = _dict(event.get("data"))
    if not data:
        return
    is_subscription = "subscription" in event_type

    items = data.get("items")
    if is_subscription and isinstance(items, list) and items:
        item = _first(items)
        price = _dict(item.get("price"))
        if price:
            unit_price = _dict(price.get("unit_price"))
            fields.amount = _cents(unit_price.get("amount"))
            fields.currency = _upper(unit_price.get("currency_code"))
            if not fields.amount:
                fields.amount = _cents(_num(price.get("amount")))
            fields.currency = fields.currency or _upper(price.get("currency_code"))
            fields.plan = _str(price, "id")
            fields.product_id = _str(price, "product_id")
        fields.plan = fields.plan or _str(item, "price_id")
        fields.product_id = fields.product_id or _str(item, "product_id")

    if fields.amount is None:
        fields.amount = _cents(_num(data.get("amount")))
    if fields.amount is None:
        # Transactions carry totals as minor-unit strings
        totals = _dict(_dict(data.get("details")).get("totals"))
        fields.amount = _cents(totals.get("grand_total") or totals.get("total"))
    fields.currency = fields.currency or _upper(data.get("currency_code"))

    transaction = _dict(data.get("transaction"))
    raw_data = _dict(_dict(raw).get("data"))
    fields.email = (
        _str(data, "customer_email")
        or _str(_dict(data.get("customer")), "email")
        or _str(transaction, "customer_email")
        or _str(_dict(transaction.get("customer")), "email")
        or _str(_dict(raw_data.get("customer")), "email")
        or _str(raw_data, "customer_email")
    )
    if not fields.email:
        for resource in _dict(raw).get("included") or []:
            resource = _dict(resource)
            if resource.get("type") == "customer":
                fields.email = _str(_dict(resource.get("attributes")), "email")
                if fields.email:
                    break
    if not fields.email:
        fields.email = _str(_dict(data.get("custom_data")), "email") or _str(
            _dict(data.get("metadata")), "email", "customer_email"
        )

    fields.subscription_id = _str(data, "subscription_id") or (
        _str(data, "id") if is_subscription else None
    )
    fields.payment_id = _str(data, "id")
    fields.customer_id = _str(data, "customer_id")
    fields.status = _str(data, "status")
    fields.description = _str(data, "description")
    fields.build_customer(name=_str(data, "customer_name"))

    fields.plan = fields.plan or _str(data, "product_id")
    fields.product_id = fields.product_id or fields.plan
    fields.created_at = _str(data, "created_at", "event_time", "occurred_at")

    fields.metadata = (
        _dict(data.get("custom_data")) or _dict(_dict(data.get("subscription")).get("custom_data")) or None
    )


# -- PayPal --


def _paypal_metadata(resource: dict[str, Any]) -> dict[str, Any] | None:
    metadata: dict[str, Any] | None = None
    custom_id = resource.get("custom_id")
    if isinstance(custom_id, str):
        try:
            parsed = json.loads(custom_id)
        except ValueError:
            parsed = None
        metadata = parsed if isinstance(parsed, dict) else {"custom_id": custom_id}

    custom = _dict(resource.get("custom"))
    if custom:
        metadata = {**(metadata or {}), **custom}
    return metadata


def _extract_paypal(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    resource = _dict(event.get("resource"))
    if not resource:
        return
    is_subscription = "billing.subscription" in event_type

    fields.subscription_id = _str(resource, "id")
    fields.payment_id = fields.subscription_id
    fields.status = _str(resource, "status")
    fields.description = _str(resource, "description")

    if is_subscription:
        fields.plan = _str(resource, "plan_id")
        fields.product_id = fields.plan
        balance = _dict(_dict(resource.get("billing_info")).get("outstanding_balance"))
        if balance:
            fields.amount = _major(balance.get("value"))
            fields.currency = _upper(balance.get("currency_code"))

    amount = _dict(resource.get("amount"))
    if fields.amount is None and isinstance(amount.get("value"), str):
        fields.amount = _major(amount.get("value"))
    fields.currency = fields.currency or _upper(amount.get("currency_code"))

    subscriber = _dict(resource.get("subscriber"))
    if is_subscription and subscriber:
        fields.email = _str(subscriber, "email_address")
        name = _dict(subscriber.get("name"))
        full_name = " ".join(
            part for part in (_str(name, "given_name"), _str(name, "surname")) if part
        ) or None
        if fields.email or full_name:
            fields.customer = CustomerInfo(email=fields.email, name=full_name)

    if not fields.email:
        payer_info = _dict(_dict(resource.get("payer")).get("payer_info"))
        if payer_info:
            payer_email = _str(payer_info, "email")
            first_name = _str(payer_info, "first_name")
            last_name = _str(payer_info, "last_name")
            payer_name = f"{first_name} {last_name}" if first_name and last_name else first_name
            if payer_email or payer_name:
                fields.customer = CustomerInfo(email=payer_email, name=payer_name)
                fields.email = payer_email

    if is_subscription:
        fields.created_at = _str(resource, "start_time", "status_update_time", "create_time", "update_time")
    else:
        fields.created_at = _str(resource, "create_time", "update_time")

    fields.metadata = _paypal_metadata(resource)


# -- Polar --


def _extract_polar(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    data = _dict(event.get("data"))
    if not data:
        return

    fields.amount = _cents(_num(data.get("price_amount")))
    if fields.amount is None:
        fields.amount = _cents(_num(data.get("amount")))
    fields.currency = _upper(data.get("price_currency")) or _upper(data.get("currency"))

    customer = _dict(data.get("customer"))
    fields.email = _str(data, "customer_email") or _str(customer, "email")
    fields.subscription_id = _str(data, "subscription_id") or (
        _str(data, "id") if "subscription" in event_type else None
    )
    fields.payment_id = _str(data, "checkout_id") or (
        _str(data, "id") if "checkout" in event_type else None
    )
    fields.status = _str(data, "status")
    fields.description = _str(data, "description")

    if customer:
        fields.customer_id = _str(customer, "id")
        fields.customer = CustomerInfo(
            id=fields.customer_id,
            email=_str(customer, "email") or fields.email,
            name=_str(customer, "name"),
        )
    elif fields.email:
        fields.customer = CustomerInfo(email=fields.email)

    fields.product_id = _str(data, "product_id")
    fields.plan = _str(data, "price_id") or fields.product_id
    fields.created_at = _str(data, "created_at") or _str(event, "created_at")

    fields.metadata = _dict(data.get("metadata")) or _dict(_dict(data.get("checkout")).get("metadata")) or None


# -- Lemon Squeezy --


def _lemonsqueezy_item_amount(fields: _Fields, item: dict[str, Any]) -> None:
    unit_price = _num(item.get("unit_price"))
    if unit_price is not None:
        quantity = _num(item.get("quantity"))
        fields.amount = _cents(unit_price * (quantity if quantity and quantity > 0 else 1))
    fields.currency = _upper(item.get("currency"))


def _extract_lemonsqueezy(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    data = _dict(event.get("data"))
    attributes = _dict(data.get("attributes"))
    if not attributes and (data.get("status") or data.get("variant_id")):
        attributes = data

    if data:
        is_subscription = data.get("type") == "subscriptions" or "subscription" in event_type
        if is_subscription:
            first_item = _dict(attributes.get("first_subscription_item"))
            if not first_item:
                # JSON:API: the item may only be referenced and sent in "included"
                ref = _dict(_dict(_dict(data.get("relationships")).get("first_subscription_item")).get("data"))
                for included in _dict(raw).get("included") or []:
                    included = _dict(included)
                    if ref and included.get("type") == ref.get("type") and included.get("id") == ref.get("id"):
                        first_item = _dict(included.get("attributes"))
                        break
            if first_item:
                _lemonsqueezy_item_amount(fields, first_item)
            if not fields.amount and _num(attributes.get("unit_price")) is not None:
                _lemonsqueezy_item_amount(fields, attributes)
            fields.currency = fields.currency or _upper(attributes.get("currency"))
            if not fields.amount or not fields.currency:
                logger.debug(
                    f"Lemon Squeezy {event_type}: amount/currency not found "
                    f"(attribute keys: {sorted(attributes)})"
                )
        else:
            fields.amount = _cents(_num(attributes.get("total")))
            if fields.amount is None:
                fields.amount = _cents(_num(attributes.get("subtotal")))
            fields.currency = _upper(attributes.get("currency"))

        fields.email = _str(attributes, "user_email", "customer_email")
        fields.subscription_id = (
            _str(data, "id") if data.get("type") == "subscriptions" else None
        ) or _ident(attributes, "subscription_id")
        fields.payment_id = (_str(data, "id") if data.get("type") == "orders" else None) or _ident(
            attributes, "order_id"
        )
        fields.customer_id = _ident(attributes, "customer_id")
        fields.status = _str(attributes, "status")
        fields.description = _str(attributes, "notes")
        fields.build_customer(name=_str(attributes, "customer_name"))
        fields.product_id = _ident(attributes, "product_id")
        fields.plan = _ident(attributes, "variant_id") or fields.product_id
        fields.created_at = _str(attributes, "created_at", "updated_at")

    # meta.custom_data overrides attributes.custom
    from_custom_data = _dict(event.get("custom_data"))
    from_attributes = _dict(_dict(data.get("attributes")).get("custom"))
    if from_custom_data or from_attributes:
        fields.metadata = {**from_attributes, **from_custom_data}


# -- Mock / generic --


def _extract_generic(fields: _Fields, event: dict[str, Any], raw: Any, event_type: str) -> None:
    fields.amount = _major(event.get("amount"))
    fields.currency = _upper(event.get("currency"))
    fields.email = _str(event, "email")
    fields.subscription_id = _str(event, "subscription_id", "subscriptionId")
    fields.payment_id = _str(event, "payment_id", "paymentId")
    fields.customer_id = _str(event, "customer_id", "customerId")
    fields.status = _str(event, "status")
    fields.description = _str(event, "description")
    fields.plan = _str(event, "plan")
    fields.product_id = _str(event, "product_id", "productId")

    customer = _dict(event.get("customer"))
    if customer:
        fields.customer = CustomerInfo(
            id=_str(customer, "id") or fields.customer_id,
            email=_str(customer, "email") or fields.email,
            name=_str(customer, "name"),
            phone=_str(customer, "phone"),
        )
    else:
        fields.build_customer()

    fields.created_at = _str(event, "created_at", "createdAt", "timestamp")
    fields.metadata = _dict(event.get("metadata")) or _dict(event.get("custom_data")) or None


_EXTRACTORS: dict[str, Callable[[_Fields, dict[str, Any], Any, str], None]] = {
    "stripe": _extract_stripe,
    "paddle": _extract_paddle,
    "paypal": _extract_paypal,
    "lemonsqueezy": _extract_lemonsqueezy,
    "polar": _extract_polar,
    "mock": _extract_generic,
}


def normalize_event(provider_name: str, raw_event: Any) -> NormalizedEvent | None:
    """
    Normalize a parsed provider webhook into a NormalizedEvent.

    Args:
        provider_name: Canonical provider name that sent the event
        raw_event: Parsed JSON body

    Returns:
        The canonical event, or None when the provider event type has no
        canonical mapping (or the payload is not a provider event at all)
    """
    provider_class = PROVIDER_CLASSES.get(provider_name, PROVIDER_CLASSES["mock"])
    try:
        event = provider_class.normalize_webhook_event(raw_event)
    except (AttributeError, TypeError, KeyError, ValueError) as e:
        logger.warning(f"Could not read {provider_name} webhook envelope: {e}")
        return None
    if not isinstance(event, dict):
        logger.debug(f"Ignoring non-object {provider_name} webhook payload")
        return None

    event_type = map_event_type(provider_name, event)
    if event_type is None:
        logger.debug(f"Ignoring unmapped {provider_name} event type: {event.get('type')!r}")
        return None

    fields = _Fields()
    extractor = _EXTRACTORS.get(provider_name, _extract_generic)
    try:
        extractor(fields, event, raw_event, str(event.get("type") or "").lower())
    except (AttributeError, TypeError, KeyError, IndexError, ValueError, ArithmeticError) as e:
        # Type is known; keep whatever was extracted before the odd field
        logger.warning(f"Partial field extraction for {provider_name} event: {e}")

    metadata = dict(fields.metadata or {})
    metadata["_raw_event"] = raw_event

    return NormalizedEvent(
        type=event_type,
        provider=provider_name,
        amount=fields.amount,
        currency=fields.currency,
        email=fields.email,
        subscription_id=fields.subscription_id,
        payment_id=fields.payment_id,
        customer_id=fields.customer_id,
        customer=fields.customer,
        status=fields.status,
        description=fields.description,
        created_at=fields.created_at,
        plan=fields.plan,
        product_id=fields.product_id,
        metadata=metadata,
        provider_response=raw_event,
    )
