"""
Webhook intake and handler dispatch.

``WebhookDispatcher.handle`` authenticates an inbound webhook, normalizes it
and hands it to every handler registered for its canonical type. Handlers run
as independent asyncio tasks; the acknowledgment is returned without waiting
for them.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Mapping
from typing import Any

from paylayer.core.config import Config, WebhookPolicy
from paylayer.core.exceptions import WebhookError
from paylayer.core.logging import get_logger
from paylayer.core.types import EventHandler, EventType, NormalizedEvent, WebhookResponse
from paylayer.providers.registry import ProviderRegistry, resolve_name
from paylayer.webhooks.normalizer import normalize_event
from paylayer.webhooks.resolver import get_signature, normalize_headers, resolve_provider
from paylayer.webhooks.verification import SignatureVerifier

logger = get_logger("webhooks.dispatcher")

_MISSING = object()


class HandlerRegistry:
    """Event type -> ordered handlers. Append-only."""

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = {t: [] for t in EventType}

    def register(self, event_type: EventType | str, handler: EventHandler) -> EventHandler:
        """Append handler for event_type. Returns the handler so it can be used as a decorator."""
        if not callable(handler):
            raise TypeError(f"Handler for {event_type} must be callable")
        self._handlers[EventType(event_type)].append(handler)
        return handler

    def handlers_for(self, event_type: EventType | str) -> list[EventHandler]:
        return list(self._handlers[EventType(event_type)])

    def on_payment_success(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.PAYMENT_SUCCESS, handler)

    def on_payment_failed(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.PAYMENT_FAILED, handler)

    def on_subscription_created(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_CREATED, handler)

    def on_subscription_updated(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_UPDATED, handler)

    def on_subscription_deleted(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_DELETED, handler)

    def on_subscription_cancelled(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_CANCELLED, handler)

    def on_subscription_paused(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_PAUSED, handler)

    def on_subscription_resumed(self, handler: EventHandler) -> EventHandler:
        return self.register(EventType.SUBSCRIPTION_RESUMED, handler)


async def _call_accessor(request: Any, name: str) -> Any:
    accessor = getattr(request, name, None)
    if not callable(accessor):
        return _MISSING
    result = accessor()
    if inspect.isawaitable(result):
        result = await result
    return result


def _serialize(body: Any) -> str:
    # Compact separators match what JSON.stringify senders sign
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


async def extract_request(request: Any) -> tuple[str | bytes | None, Any, dict[str, str]]:
    """
    Pull (raw payload, parsed body, headers) out of a webhook request.

    Parsed body is ``None`` unless the request only offered an already parsed
    value. The request is never mutated.

    Raises:
        WebhookError: If the request carries neither a body nor headers
    """
    if isinstance(request, Mapping):
        body = request.get("body")
        raw_headers = request.get("headers")
    elif isinstance(getattr(request, "body", None), (bytes, str)):
        body = request.body
        raw_headers = getattr(request, "headers", None)
    elif callable(getattr(request, "body", None)) or callable(getattr(request, "json", None)):
        # Framework request: raw bytes are byte-exact, prefer them
        body = await _call_accessor(request, "body")
        if body is _MISSING:
            body = await _call_accessor(request, "json")
        raw_headers = getattr(request, "headers", None)
    else:
        body = getattr(request, "body", None)
        raw_headers = getattr(request, "headers", None)

    if body is None and raw_headers is None:
        raise WebhookError("Webhook request has neither a body nor headers")

    headers = normalize_headers(raw_headers)
    if body is None:
        return None, None, headers
    if isinstance(body, (bytes, bytearray)):
        return bytes(body), None, headers
    if isinstance(body, str):
        return body, None, headers
    return _serialize(body), body, headers


class WebhookDispatcher:
    """
    Verifies, normalizes and dispatches inbound webhooks.

    Args:
        registry: Provider registry used for the configured override and for
            providers that verify remotely
        config: Configuration (defaults to the registry's)
        handlers: Handler registry (a new, empty one by default)
        verifier: Signature verifier (defaults to one bound to ``registry``)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: Config | None = None,
        handlers: HandlerRegistry | None = None,
        verifier: SignatureVerifier | None = None,
    ) -> None:
        self._registry = registry
        self._config = config
        self.handlers = handlers or HandlerRegistry()
        self._verifier = verifier or SignatureVerifier(provider_factory=registry.provider_for)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> Config:
        return self._config or self._registry.config

    @property
    def pending_handlers(self) -> int:
        return len(self._tasks)

    async def handle(self, request: Any, secret: str | None = None) -> WebhookResponse:
        """
        Process one inbound webhook.

        Args:
            request: Framework request (async ``body()``/``json()`` plus
                ``headers``) or a ``{"body": ..., "headers": ...}`` envelope
            secret: Webhook secret; overrides the environment value

        Returns:
            200 ``{"received": True}`` when accepted (dispatched or not),
            401 ``{"received": False}`` when authentication failed

        Raises:
            WebhookError: If the request is malformed
        """
        payload, parsed, headers = await extract_request(request)

        override = self.config.provider
        provider_name = resolve_provider(headers, resolve_name(override) if override else None)
        signature = get_signature(headers, provider_name)
        webhook_secret = secret if secret else self.config.webhook_secret(provider_name)

        if not await self._authenticate(provider_name, payload, signature, webhook_secret, headers):
            return WebhookResponse.rejected()

        if parsed is None:
            if payload is None:
                logger.warning(f"Empty {provider_name} webhook body, nothing to dispatch")
                return WebhookResponse.accepted()
            try:
                parsed = json.loads(payload)
            except ValueError as e:
                logger.error(f"Could not parse {provider_name} webhook body as JSON: {e}")
                return WebhookResponse.accepted()

        event = normalize_event(provider_name, parsed)
        if event is None:
            return WebhookResponse.accepted()

        self._dispatch(event)
        return WebhookResponse.accepted()

    async def _authenticate(
        self,
        provider_name: str,
        payload: str | bytes | None,
        signature: str,
        secret: str,
        headers: Mapping[str, str],
    ) -> bool:
        if provider_name == "mock":
            if self.config.webhook_policy != WebhookPolicy.STRICT:
                return True
            # No signature header matched: only an explicitly configured mock is trusted
            configured = self.config.provider
            if configured and resolve_name(configured) == "mock":
                return True
            logger.warning("Rejecting unsigned webhook under strict policy")
            return False

        if not secret or not signature:
            if self.config.webhook_policy == WebhookPolicy.STRICT:
                logger.warning(
                    f"Rejecting {provider_name} webhook: "
                    f"{'secret' if not secret else 'signature'} missing under strict policy"
                )
                return False
            logger.warning(
                f"Skipping {provider_name} webhook verification: "
                f"{'no secret configured' if not secret else 'no signature header'}"
            )
            return True

        verified = await self._verifier.verify(
            provider_name, payload if payload is not None else b"", signature, secret, headers
        )
        if not verified:
            logger.warning(f"Invalid {provider_name} webhook signature")
        return verified

    def _dispatch(self, event: NormalizedEvent) -> None:
        handlers = self.handlers.handlers_for(event.type)
        logger.info(
            f"Dispatching {event.type.value} from {event.provider} to {len(handlers)} handler(s)"
        )
        for handler in handlers:
            task = asyncio.get_running_loop().create_task(self._run_handler(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, handler: EventHandler, event: NormalizedEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            name = getattr(handler, "__qualname__", repr(handler))
            logger.exception(f"Handler {name} failed for {event.type.value} event")

    async def wait_for_handlers(self) -> None:
        """Wait until every in-flight handler task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
