"""Tests for the PayLayer client facade."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from paylayer import PayLayer
from paylayer.core.config import Config
from paylayer.core.exceptions import ConfigurationError, ValidationError
from paylayer.core.types import ChargeStatus, CheckoutMode, EventType, SubscriptionStatus
from paylayer.providers import MockProvider, get_default_registry
from paylayer.providers.registry import ProviderRegistry


@pytest.fixture
def pay():
    return PayLayer(Config(provider="mock"))


class TestInit:
    def test_default_uses_process_registry(self):
        assert PayLayer().registry is get_default_registry()

    def test_config_gets_private_registry(self):
        client = PayLayer(Config(provider="mock"))
        assert client.registry is not get_default_registry()
        assert client.config.provider == "mock"

    def test_explicit_registry(self):
        registry = ProviderRegistry(Config())
        assert PayLayer(registry=registry).registry is registry

    def test_provider_is_lazy(self):
        client = PayLayer(Config(provider="stripe"))
        assert not client.registry.is_initialized
        with pytest.raises(ConfigurationError):
            _ = client.provider

    def test_configure_logs(self):
        with patch("paylayer.client.configure_logging") as mock_configure:
            PayLayer(Config(log_level="DEBUG"), configure_logs=True)
        mock_configure.assert_called_once_with(level="DEBUG")


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, "-1.00", Decimal("0")])
    async def test_charge_rejects_non_positive_amount(self, pay, amount):
        with pytest.raises(ValidationError, match="greater than 0"):
            await pay.charge(currency="USD", amount=amount)

    @pytest.mark.asyncio
    async def test_charge_rejects_garbage_amount(self, pay):
        with pytest.raises(ValidationError, match="Invalid amount"):
            await pay.charge(currency="USD", amount="ten dollars")

    @pytest.mark.asyncio
    async def test_charge_requires_currency(self, pay):
        with pytest.raises(ValidationError, match="Currency is required"):
            await pay.charge(currency="", amount="5")

    @pytest.mark.asyncio
    async def test_charge_requires_amount_or_catalog_reference(self, pay):
        with pytest.raises(ValidationError, match="Amount, product_id or price_id"):
            await pay.charge(currency="USD")

    @pytest.mark.asyncio
    async def test_subscribe_requires_plan(self, pay):
        with pytest.raises(ValidationError, match="Plan is required"):
            await pay.subscribe(plan="", currency="USD")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["cancel", "pause", "resume"])
    async def test_subscription_id_required(self, pay, method):
        with pytest.raises(ValidationError, match="Subscription ID is required"):
            await getattr(pay, method)("")

    @pytest.mark.asyncio
    async def test_portal_requires_email(self, pay):
        with pytest.raises(ValidationError, match="Email is required"):
            await pay.portal("")

    @pytest.mark.asyncio
    async def test_checkout_invalid_mode(self, pay):
        with pytest.raises(ValidationError, match="Invalid checkout mode"):
            await pay.checkout(currency="USD", mode="rental", amount="5")

    @pytest.mark.asyncio
    async def test_subscription_checkout_requires_plan(self, pay):
        with pytest.raises(ValidationError, match="requires a plan"):
            await pay.checkout(currency="USD", mode="subscription")


class TestOperations:
    @pytest.mark.asyncio
    async def test_charge_through_mock(self, pay):
        result = await pay.charge(currency="USD", amount=29.99, email="a@b.co")
        assert result.provider == "mock"
        assert result.amount == Decimal("29.99")
        assert result.status == ChargeStatus.PENDING

    @pytest.mark.asyncio
    async def test_subscription_lifecycle(self, pay):
        subscription = await pay.subscribe(plan="pro", currency="USD")
        assert subscription.status == SubscriptionStatus.ACTIVE

        assert (await pay.pause(subscription.id)).status == SubscriptionStatus.PAUSED
        assert (await pay.resume(subscription.id)).status == SubscriptionStatus.ACTIVE
        assert (await pay.cancel(subscription.id)).status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_checkout(self, pay):
        result = await pay.checkout(currency="USD", mode="subscription", plan="pro")
        assert result.mode == CheckoutMode.SUBSCRIPTION

    @pytest.mark.asyncio
    async def test_delegates_to_provider(self):
        provider = MagicMock(spec=MockProvider)
        provider.portal = AsyncMock(return_value="https://portal.test")
        registry = ProviderRegistry(Config(provider="mock"), factories={"mock": lambda config: provider})

        client = PayLayer(registry=registry)

        assert await client.portal("a@b.co") == "https://portal.test"
        provider.portal.assert_awaited_once_with("a@b.co")

    @pytest.mark.asyncio
    async def test_close_without_provider_is_noop(self, pay):
        await pay.close()
        assert not pay.registry.is_initialized

    @pytest.mark.asyncio
    async def test_close_releases_webhook_only_providers(self):
        paypal = MagicMock()
        paypal.name = "paypal"
        paypal.close = AsyncMock()
        registry = ProviderRegistry(Config(provider="mock"), factories={"paypal": lambda config: paypal})
        client = PayLayer(registry=registry)

        assert client.registry.provider_for("paypal") is paypal
        await client.close()

        paypal.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with PayLayer(Config(provider="mock")) as client:
            await client.charge(currency="USD", amount="1")


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_webhook_dispatches_to_registered_handler(self, pay):
        events = []

        @pay.on_payment_success
        async def record(event):
            events.append(event)

        response = await pay.webhook(
            {"body": json.dumps({"type": "payment.success", "amount": 5, "currency": "usd"}), "headers": {}}
        )
        await pay.wait_for_handlers()

        assert response.to_dict() == {"status": 200, "body": {"received": True}}
        assert events[0].type == EventType.PAYMENT_SUCCESS
        assert events[0].amount == Decimal("5")

    @pytest.mark.asyncio
    async def test_on_with_event_type(self, pay):
        handler = AsyncMock()
        pay.on("subscription.cancelled", handler)

        await pay.webhook({"body": {"type": "subscription.cancelled"}, "headers": {}})
        await pay.wait_for_handlers()

        handler.assert_awaited_once()

    def test_all_registration_methods(self, pay):
        for event_type in EventType:
            getattr(pay, "on_" + event_type.value.replace(".", "_"))(MagicMock())
            assert len(pay.handlers.handlers_for(event_type)) == 1
