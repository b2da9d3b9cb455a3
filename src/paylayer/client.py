"""PayLayer - Main SDK entry point."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from paylayer.core.config import Config
from paylayer.core.exceptions import ValidationError
from paylayer.core.logging import configure_logging, get_logger
from paylayer.core.types import (
    AmountType,
    ChargeInput,
    ChargeResult,
    CheckoutInput,
    CheckoutMode,
    CheckoutResult,
    EventHandler,
    EventType,
    SubscribeInput,
    SubscriptionResult,
    WebhookResponse,
    to_decimal,
)
from paylayer.providers import get_default_registry
from paylayer.providers.base import PaymentProvider
from paylayer.providers.registry import ProviderRegistry
from paylayer.webhooks.dispatcher import HandlerRegistry, WebhookDispatcher


def _require(value: str | None, message: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(message)
    return value


def _positive_amount(amount: AmountType | None) -> Decimal | None:
    try:
        value = to_decimal(amount)
    except (ArithmeticError, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if value is not None and value <= 0:
        raise ValidationError("Amount must be greater than 0", details={"amount": str(value)})
    return value


class PayLayer:
    """
    Main client for PayLayer.

    Business code calls ``charge``/``subscribe``/... and registers event
    handlers; the active provider is chosen by ``PAYLAYER_PROVIDER`` (or
    ``config.provider``) and built on first use.

    Example:
        pay = PayLayer()

        @pay.on_payment_success
        async def fulfil(event):
            ...

        result = await pay.charge(amount="29.99", currency="USD", email="a@b.com")
    """

    def __init__(
        self,
        config: Config | None = None,
        registry: ProviderRegistry | None = None,
        configure_logs: bool = False,
        log_level: int | str | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Configuration (default: loaded from environment)
            registry: Provider registry (default: the process-wide registry,
                or a private one when ``config`` is given)
            configure_logs: Install the stdout log handler
            log_level: Level for ``configure_logs`` (default PAYLAYER_LOG_LEVEL)
        """
        if registry is None:
            registry = ProviderRegistry(config) if config is not None else get_default_registry()
        self._registry = registry

        if configure_logs:
            level = log_level or (config.log_level if config else None)
            configure_logging(level=level)
        self._logger = get_logger("client")

        self._handlers = HandlerRegistry()
        self._dispatcher = WebhookDispatcher(registry, config=config, handlers=self._handlers)

    @property
    def config(self) -> Config:
        return self._registry.config

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def handlers(self) -> HandlerRegistry:
        return self._handlers

    @property
    def dispatcher(self) -> WebhookDispatcher:
        return self._dispatcher

    @property
    def provider(self) -> PaymentProvider:
        """The active provider (constructed on first access)."""
        return self._registry.get_provider()

    async def __aenter__(self) -> PayLayer:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the HTTP clients of every provider built so far."""
        await self._registry.close()

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def charge(
        self,
        currency: str,
        amount: AmountType | None = None,
        email: str | None = None,
        product_id: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        """
        Create a one-time charge.

        Either ``amount`` or a catalog reference (``product_id``/``price_id``)
        is required. Providers that only sell catalog products reject an
        explicit amount.

        Raises:
            ValidationError: If the input is invalid
            ProviderError: If the provider rejects the charge
        """
        _require(currency, "Currency is required")
        value = _positive_amount(amount)
        if value is None and not product_id and not price_id:
            raise ValidationError("Amount, product_id or price_id is required")

        self._logger.info(f"Charge: {value if value is not None else product_id or price_id} {currency}")
        return await self.provider.charge(
            ChargeInput(
                currency=currency,
                amount=value,
                email=email,
                product_id=product_id,
                price_id=price_id,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        )

    async def subscribe(
        self,
        plan: str,
        currency: str,
        email: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SubscriptionResult:
        """Start a subscription to ``plan``."""
        _require(plan, "Plan is required")
        _require(currency, "Currency is required")

        self._logger.info(f"Subscribe: plan={plan} currency={currency}")
        return await self.provider.subscribe(
            SubscribeInput(
                plan=plan,
                currency=currency,
                email=email,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        )

    async def cancel(self, subscription_id: str) -> SubscriptionResult:
        _require(subscription_id, "Subscription ID is required")
        return await self.provider.cancel(subscription_id)

    async def pause(self, subscription_id: str) -> SubscriptionResult:
        _require(subscription_id, "Subscription ID is required")
        return await self.provider.pause(subscription_id)

    async def resume(self, subscription_id: str) -> SubscriptionResult:
        _require(subscription_id, "Subscription ID is required")
        return await self.provider.resume(subscription_id)

    async def portal(self, email: str) -> str:
        """Billing portal URL for the customer with ``email``."""
        _require(email, "Email is required for billing portal")
        return await self.provider.portal(email)

    async def checkout(
        self,
        currency: str,
        mode: CheckoutMode | str = CheckoutMode.PAYMENT,
        amount: AmountType | None = None,
        plan: str | None = None,
        email: str | None = None,
        product_id: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CheckoutResult:
        """Create a hosted checkout session."""
        _require(currency, "Currency is required")
        try:
            checkout_mode = CheckoutMode(mode)
        except ValueError:
            raise ValidationError(f"Invalid checkout mode: {mode!r}") from None
        value = _positive_amount(amount)

        if checkout_mode == CheckoutMode.SUBSCRIPTION:
            if not (plan or price_id or product_id):
                raise ValidationError("Subscription checkout requires a plan, price_id or product_id")
        elif value is None and not product_id and not price_id:
            raise ValidationError("Amount, product_id or price_id is required")

        return await self.provider.checkout(
            CheckoutInput(
                currency=currency,
                mode=checkout_mode,
                amount=value,
                plan=plan,
                email=email,
                product_id=product_id,
                price_id=price_id,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def webhook(self, request: Any, secret: str | None = None) -> WebhookResponse:
        """
        Handle an inbound webhook request.

        Returns the acknowledgment immediately; handlers keep running in the
        background (see ``wait_for_handlers``).
        """
        return await self._dispatcher.handle(request, secret=secret)

    async def wait_for_handlers(self) -> None:
        await self._dispatcher.wait_for_handlers()

    def on(self, event_type: EventType | str, handler: EventHandler) -> EventHandler:
        return self._handlers.register(event_type, handler)

    def on_payment_success(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_payment_success(handler)

    def on_payment_failed(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_payment_failed(handler)

    def on_subscription_created(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_created(handler)

    def on_subscription_updated(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_updated(handler)

    def on_subscription_deleted(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_deleted(handler)

    def on_subscription_cancelled(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_cancelled(handler)

    def on_subscription_paused(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_paused(handler)

    def on_subscription_resumed(self, handler: EventHandler) -> EventHandler:
        return self._handlers.on_subscription_resumed(handler)
