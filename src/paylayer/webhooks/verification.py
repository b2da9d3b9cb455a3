"""
Webhook signature verification.

One strategy per provider. Local schemes (Stripe, Paddle, Lemon Squeezy,
Polar) are synchronous HMAC-SHA256 checks; PayPal is verified remotely by the
PayPal provider itself. Every strategy reports a plain boolean: any failure
(missing secret, malformed header, stale timestamp, digest mismatch,
transport error) is ``False`` and never an exception.
"""

from __future__ import annotations

import base64
import binascii
import inspect
import time
from collections.abc import Callable, Mapping

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from paylayer.core.logging import get_logger

logger = get_logger("webhooks.verification")

# Maximum age (either direction) of a Stripe signature timestamp
STRIPE_TIMESTAMP_TOLERANCE_SECONDS = 300

# Hex-encoded SHA-256 digest length
SHA256_HEX_LENGTH = 64


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def constant_time_equals(a: str | bytes, b: str | bytes) -> bool:
    """
    Compare two values without short-circuiting on the first differing byte.

    A length mismatch is rejected immediately: this leaks the length of the
    expected digest (public anyway for hex SHA-256) but nothing about its
    content. Otherwise every byte pair is XOR-accumulated.
    """
    a_bytes = _to_bytes(a)
    b_bytes = _to_bytes(b)
    if len(a_bytes) != len(b_bytes):
        return False

    result = 0
    for x, y in zip(a_bytes, b_bytes):
        result |= x ^ y
    return result == 0


def hmac_sha256_hex(key: str | bytes, message: str | bytes) -> str:
    """Hex-encoded HMAC-SHA256 of message under key."""
    mac = crypto_hmac.HMAC(_to_bytes(key), hashes.SHA256())
    mac.update(_to_bytes(message))
    return mac.finalize().hex()


def _parse_signature_header(signature: str, separator: str) -> dict[str, str]:
    """Parse "k=v<sep>k=v" pairs. The first occurrence of a key wins."""
    parts: dict[str, str] = {}
    for element in signature.split(separator):
        key, sep, value = element.strip().partition("=")
        if sep and key not in parts:
            parts[key] = value
    return parts


def verify_stripe_signature(
    payload: str | bytes,
    signature: str,
    secret: str,
    now: float | None = None,
) -> bool:
    """
    Verify a Stripe ``stripe-signature`` header (``t=<ts>,v1=<hex>``).

    The signed message is ``"{t}.{payload}"``. Timestamps further than five
    minutes from ``now`` are rejected even when the digest matches.
    """
    if not secret or not signature:
        return False

    try:
        parts = _parse_signature_header(signature, ",")
        timestamp = parts.get("t")
        signature_v1 = parts.get("v1")
        if not timestamp or not signature_v1:
            return False
        if len(signature_v1) != SHA256_HEX_LENGTH:
            return False

        current_time = int(time.time() if now is None else now)
        if abs(current_time - int(timestamp)) > STRIPE_TIMESTAMP_TOLERANCE_SECONDS:
            logger.debug("Stripe signature timestamp outside tolerance")
            return False

        signed_payload = _to_bytes(timestamp) + b"." + _to_bytes(payload)
        expected = hmac_sha256_hex(secret, signed_payload)
        return constant_time_equals(signature_v1, expected)
    except Exception:
        return False


def verify_paddle_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """
    Verify a Paddle ``paddle-signature`` header (``ts=<ts>;h1=<hex>``).

    The signed message is ``"{ts}:{payload}"``. No timestamp tolerance is
    enforced.
    """
    if not secret or not signature:
        return False

    try:
        parts = _parse_signature_header(signature, ";")
        timestamp = parts.get("ts")
        provided_hash = parts.get("h1")
        if not timestamp or not provided_hash:
            return False
        if len(provided_hash) != SHA256_HEX_LENGTH:
            return False

        signed_payload = _to_bytes(timestamp) + b":" + _to_bytes(payload)
        expected = hmac_sha256_hex(secret, signed_payload)
        return constant_time_equals(provided_hash, expected)
    except Exception:
        return False


def verify_lemonsqueezy_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """Verify a Lemon Squeezy ``X-Signature`` header: raw hex HMAC of the body."""
    if not secret or not signature or len(signature) != SHA256_HEX_LENGTH:
        return False

    try:
        expected = hmac_sha256_hex(secret, payload)
        return constant_time_equals(signature, expected)
    except Exception:
        return False


def _decode_standard_webhooks_secret(secret: str) -> bytes | None:
    """Base64-decode a Standard Webhooks secret (optional ``whsec_`` prefix)."""
    encoded = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None


def verify_polar_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """
    Verify a Polar ``x-polar-signature`` header: raw hex HMAC of the body.

    Polar follows the Standard Webhooks convention where the secret is
    base64-encoded, so the decoded secret is tried first and the raw secret
    second. Both comparisons always run.
    """
    if not secret or not signature or len(signature) != SHA256_HEX_LENGTH:
        return False

    try:
        candidate_keys: list[bytes] = []
        decoded = _decode_standard_webhooks_secret(secret)
        if decoded:
            candidate_keys.append(decoded)
        candidate_keys.append(_to_bytes(secret))

        matched = False
        for key in candidate_keys:
            if constant_time_equals(signature, hmac_sha256_hex(key, payload)):
                matched = True
        return matched
    except Exception:
        return False


def verify_mock_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """Mock provider: always trusted. Local development only."""
    return True


# Local (synchronous) schemes by provider name
LOCAL_VERIFIERS: dict[str, Callable[[str | bytes, str, str], bool]] = {
    "stripe": verify_stripe_signature,
    "paddle": verify_paddle_signature,
    "lemonsqueezy": verify_lemonsqueezy_signature,
    "polar": verify_polar_signature,
    "mock": verify_mock_signature,
}

# Providers whose trust decision needs an out-of-band call to the provider
REMOTE_VERIFIED_PROVIDERS = frozenset({"paypal"})


class SignatureVerifier:
    """
    Dispatches signature verification by provider name.

    Local schemes run synchronously. Remote schemes are delegated to the
    provider instance obtained from ``provider_factory`` (normally
    ``ProviderRegistry.provider_for``); if that provider cannot be built the
    request is treated as unverified.
    """

    def __init__(self, provider_factory: Callable[[str], object] | None = None) -> None:
        self._provider_factory = provider_factory

    async def verify(
        self,
        provider_name: str,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> bool:
        """Return True only if the payload is authenticated for provider_name."""
        name = provider_name.lower()

        if name in REMOTE_VERIFIED_PROVIDERS:
            return await self._verify_remote(name, payload, signature, secret, headers)

        verifier = LOCAL_VERIFIERS.get(name)
        if verifier is None:
            logger.warning(f"No signature scheme for provider '{provider_name}'")
            return False
        return verifier(payload, signature, secret) is True

    async def _verify_remote(
        self,
        name: str,
        payload: str | bytes,
        signature: str,
        secret: str,
        headers: Mapping[str, str] | None,
    ) -> bool:
        if self._provider_factory is None:
            logger.error(f"Cannot verify {name} webhook: no provider factory configured")
            return False

        try:
            provider = self._provider_factory(name)
            result = provider.verify_webhook(payload, signature, secret, headers)  # type: ignore[attr-defined]
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"{name} webhook verification could not run: {e}")
            return False
        return result is True
