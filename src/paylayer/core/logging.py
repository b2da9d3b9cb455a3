import logging
import os
import re
import sys

# Default Logger Name
LOGGER_NAME = "paylayer"

# Provider credentials that can surface in error messages and response bodies
CREDENTIAL_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]{6,}"), "stripe_key"),
    (re.compile(r"\bwhsec_[A-Za-z0-9+/=]{8,}"), "webhook_secret"),
    (re.compile(r"\bpolar_(?:oat|pat|at)_[A-Za-z0-9_-]{8,}"), "polar_token"),
    (re.compile(r"\bpdl_(?:live|sdbx)_apikey_[A-Za-z0-9_]{8,}"), "paddle_key"),
    (re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]{16,}"), "authorization"),
]


def redact_credentials(text: str) -> str:
    """Replace provider credentials in text with ``[REDACTED:<kind>]``."""
    for pattern, kind in CREDENTIAL_PATTERNS:
        if kind == "authorization":
            text = pattern.sub(lambda m: f"{m.group(1)} [REDACTED:{kind}]", text)
        else:
            text = pattern.sub(f"[REDACTED:{kind}]", text)
    return text


class CredentialRedactionFilter(logging.Filter):
    """Masks API keys, webhook secrets and auth headers in formatted records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_credentials(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: int | str | None = None, json_format: bool = False) -> logging.Logger:
    """
    Configure the PayLayer logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG"). Defaults to
            PAYLAYER_LOG_LEVEL, then INFO.
        json_format: Whether to emit JSON-shaped log lines

    Returns:
        The configured logger instance.
    """
    if level is None:
        level = os.environ.get("PAYLAYER_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Re-configuring replaces the previous handler
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CredentialRedactionFilter())

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of paylayer."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
