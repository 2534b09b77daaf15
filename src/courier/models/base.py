"""Base helpers shared by Courier models."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_secret() -> str:
    """Generate a shared secret for HMAC signing or inbound authentication.

    Returns:
        A cryptographically secure random hex string (64 characters).
    """
    return secrets.token_hex(32)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


_HTTP_URL_ADAPTER: TypeAdapter[AnyHttpUrl] = TypeAdapter(AnyHttpUrl)


def validate_http_url(value: str) -> str:
    """Check that a value is a well-formed absolute http(s) URL.

    The original string is returned unchanged so that the stored target is
    exactly what the owner entered (pydantic would normalize trailing slashes).

    Raises:
        ValueError: If the URL is relative, malformed, or not http/https.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("URL must be a non-empty string")
    value = value.strip()
    try:
        parsed = _HTTP_URL_ADAPTER.validate_python(value)
    except PydanticValidationError as e:
        raise ValueError(f"not a well-formed absolute http(s) URL: {value}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValueError(f"not a well-formed absolute http(s) URL: {value}")
    return value
