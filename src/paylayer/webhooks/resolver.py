"""
Provider auto-detection for inbound webhooks.

An explicit override always wins. Otherwise signature headers are checked in a
fixed order, and a request that matches none of them is attributed to the
mock provider.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from paylayer.core.exceptions import WebhookError

# Header carrying each provider's signature
SIGNATURE_HEADERS: dict[str, str] = {
    "stripe": "stripe-signature",
    "paddle": "paddle-signature",
    "paypal": "paypal-transmission-sig",
    "lemonsqueezy": "x-signature",
    "polar": "x-polar-signature",
}

# Detection order: first header present decides the provider
_DETECTION_ORDER: list[tuple[str, tuple[str, ...]]] = [
    ("stripe", ("stripe-signature",)),
    ("paddle", ("paddle-signature",)),
    ("paypal", ("paypal-transmission-sig", "paypal-transmission-id")),
    ("lemonsqueezy", ("x-signature",)),
    ("polar", ("x-polar-signature",)),
]


def normalize_headers(headers: Any) -> dict[str, str]:
    """
    Build a lowercase-keyed header dict from any supported header shape.

    Accepts a mapping, an object with ``items()`` (e.g. Starlette ``Headers``),
    or an iterable of ``(name, value)`` pairs. Bytes are decoded as latin-1,
    the HTTP header encoding. For repeated names the first value wins.
    """
    if headers is None:
        return {}

    if isinstance(headers, Mapping) or hasattr(headers, "items"):
        pairs: Iterable[Any] = headers.items()
    elif isinstance(headers, (str, bytes)):
        raise WebhookError("Headers must be a mapping or a list of pairs")
    else:
        pairs = headers

    normalized: dict[str, str] = {}
    try:
        for name, value in pairs:
            key = _decode(name).lower()
            if key not in normalized:
                normalized[key] = _decode(value)
    except (TypeError, ValueError) as e:
        raise WebhookError(
            "Headers must be a mapping or a list of pairs",
            details={"error": str(e)},
        ) from e
    return normalized


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    if isinstance(value, (list, tuple)):
        return ", ".join(_decode(v) for v in value)
    return "" if value is None else str(value)


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive lookup in a normalized header dict."""
    return headers.get(name.lower())


def resolve_provider(headers: Mapping[str, str], override: str | None = None) -> str:
    """
    Determine which provider sent a webhook.

    Args:
        headers: Normalized (lowercased) request headers
        override: Canonical provider name configured explicitly. Always wins.

    Returns:
        Canonical provider name
    """
    if override:
        return override

    for provider_name, header_names in _DETECTION_ORDER:
        if any(get_header(headers, h) for h in header_names):
            return provider_name
    return "mock"


def get_signature(headers: Mapping[str, str], provider_name: str) -> str:
    """The signature header value for provider_name, or an empty string."""
    header = SIGNATURE_HEADERS.get(provider_name)
    if header is None:
        return ""
    return get_header(headers, header) or ""


def signature_header(provider_name: str) -> str | None:
    """Name of the header carrying provider_name's signature, if it has one."""
    return SIGNATURE_HEADERS.get(provider_name)
