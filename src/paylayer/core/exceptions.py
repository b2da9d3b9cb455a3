"""
Exception hierarchy for PayLayer.

All PayLayer-specific exceptions inherit from PayLayerError for easy catching.
Webhook signature failures are NOT exceptions: verification always reports a
boolean and the webhook endpoint answers with a 401 acknowledgment.
"""

from __future__ import annotations

from typing import Any


class PayLayerError(Exception):
    """
    Base exception for all PayLayer errors.

    Catch this to handle any PayLayer-related exception.

    Example:
        >>> try:
        ...     await pay.charge(ChargeInput(amount=Decimal("9.99"), currency="USD"))
        ... except PayLayerError as e:
        ...     print(f"Payment error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PayLayerError):
    """
    Configuration is missing or invalid.

    Raised when:
    - A provider is constructed without its required credentials
    - Configuration values fail validation

    Fatal: raised once at provider construction and never retried.
    """

    pass


class ValidationError(PayLayerError):
    """
    Input validation error.

    Raised when:
    - Required operation parameters are missing
    - Parameter values are invalid (e.g. non-positive amount)
    """

    pass


class ProviderError(PayLayerError):
    """
    A payment provider rejected or could not complete an operation.

    Raised when:
    - The provider does not support the requested operation shape
    - The provider's resource is in a state that forbids the operation
    """

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider = provider

    def __str__(self) -> str:
        return f"[{self.provider}] {super().__str__()}"


class ProviderAPIError(ProviderError):
    """
    Provider REST API returned a non-success response.

    Raised when:
    - HTTP status is outside the 2xx range
    - Authentication against the provider fails
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        response_body: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, provider=provider, details=details)
        self.status_code = status_code
        self.response_body = response_body

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class WebhookError(PayLayerError):
    """
    Webhook request is structurally unusable.

    Raised only when the request carries neither a readable body nor a
    header collection. Provider-originated conditions never raise.
    """

    pass
