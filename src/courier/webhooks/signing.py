"""HMAC-SHA256 request signing for outbound webhooks.

Receivers recompute the signature over the raw request body with their copy
of the subscription secret and compare it to X-Courier-Signature. The
X-Courier-Timestamp header lets them reject stale or replayed requests.

Example:
    ```python
    from courier.webhooks.signing import SIGNATURE_HEADER, verify_signature

    ok = verify_signature(request.body, secret, request.headers[SIGNATURE_HEADER])
    ```
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import UTC, datetime

SIGNATURE_HEADER = "X-Courier-Signature"
TIMESTAMP_HEADER = "X-Courier-Timestamp"
EVENT_HEADER = "X-Courier-Event"
EVENT_ID_HEADER = "X-Courier-Event-Id"
DELIVERY_ID_HEADER = "X-Courier-Delivery-Id"
ATTEMPT_HEADER = "X-Courier-Attempt"

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(body: str | bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature for a webhook body.

    Args:
        body: Exact request body (text is signed as UTF-8).
        secret: Shared secret for HMAC.

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=_as_bytes(body),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: str | bytes, secret: str, signature: str | None) -> bool:
    """Verify HMAC-SHA256 signature for a webhook body.

    Comparison is constant-time. A missing signature never verifies.

    Args:
        body: Request body that was signed.
        secret: Shared secret for HMAC.
        signature: Signature to verify (format: "sha256=<hex_digest>").

    Returns:
        True if signature is valid, False otherwise.
    """
    if not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def format_timestamp(timestamp: datetime) -> str:
    """ISO-8601 UTC rendering shared by the envelope and the timestamp header."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC).isoformat()


def signature_headers(body: str | bytes, secret: str, timestamp: datetime | str) -> dict[str, str]:
    """Build the signature and timestamp headers for one request."""
    if isinstance(timestamp, datetime):
        timestamp = format_timestamp(timestamp)
    return {
        SIGNATURE_HEADER: compute_signature(body, secret),
        TIMESTAMP_HEADER: timestamp,
    }


def is_timestamp_fresh(
    timestamp: str | datetime,
    tolerance_seconds: float,
    now: datetime | None = None,
) -> bool:
    """Check a received X-Courier-Timestamp against a freshness window.

    Unparseable timestamps are never fresh.
    """
    if isinstance(timestamp, str):
        try:
            timestamp = datetime.fromisoformat(timestamp)
        except ValueError:
            return False
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return abs((now - timestamp).total_seconds()) <= tolerance_seconds


__all__ = [
    "ATTEMPT_HEADER",
    "DELIVERY_ID_HEADER",
    "EVENT_HEADER",
    "EVENT_ID_HEADER",
    "SIGNATURE_HEADER",
    "SIGNATURE_PREFIX",
    "TIMESTAMP_HEADER",
    "compute_signature",
    "format_timestamp",
    "is_timestamp_fresh",
    "signature_headers",
    "verify_signature",
]
