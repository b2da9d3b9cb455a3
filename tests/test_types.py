"""Unit tests for types module."""

from decimal import Decimal

import pytest

from paylayer.core.types import (
    ChargeInput,
    CheckoutInput,
    CheckoutMode,
    EventType,
    NormalizedEvent,
    WebhookResponse,
    from_minor_units,
    to_decimal,
    to_minor_units,
)


class TestAmounts:
    def test_float_goes_through_str(self) -> None:
        assert to_decimal(29.99) == Decimal("29.99")

    def test_passthrough(self) -> None:
        assert to_decimal(None) is None
        value = Decimal("1.5")
        assert to_decimal(value) is value

    @pytest.mark.parametrize(
        "amount,cents",
        [(Decimal("29.99"), 2999), (Decimal("10"), 1000), (Decimal("0.015"), 2)],
    )
    def test_to_minor_units(self, amount, cents) -> None:
        assert to_minor_units(amount) == cents

    def test_from_minor_units(self) -> None:
        assert from_minor_units(2999) == Decimal("29.99")
        assert from_minor_units("500") == Decimal("5")


class TestInputs:
    def test_charge_input_coerces_amount(self) -> None:
        assert ChargeInput(currency="USD", amount="12.50").amount == Decimal("12.50")

    def test_checkout_input_coerces_mode(self) -> None:
        assert CheckoutInput(currency="USD", mode="subscription").mode == CheckoutMode.SUBSCRIPTION


def test_event_types_are_closed() -> None:
    assert {e.value for e in EventType} == {
        "payment.success",
        "payment.failed",
        "subscription.created",
        "subscription.cancelled",
        "subscription.updated",
        "subscription.deleted",
        "subscription.paused",
        "subscription.resumed",
    }


def test_normalized_event_defaults() -> None:
    event = NormalizedEvent(type=EventType.PAYMENT_SUCCESS, provider="mock")
    assert event.metadata == {}
    assert event.amount is None


def test_webhook_responses() -> None:
    assert WebhookResponse.accepted().to_dict() == {"status": 200, "body": {"received": True}}
    assert WebhookResponse.rejected().to_dict() == {"status": 401, "body": {"received": False}}
