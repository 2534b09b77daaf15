"""Webhook delivery system for Courier.

Provides HMAC-signed webhook delivery with exponential backoff retry,
plus manual resend and test sends.

Example:
    ```python
    from courier.webhooks import DeliveryWorker, WebhookDispatcher

    worker = DeliveryWorker(storage, storage, settings)
    dispatcher = WebhookDispatcher(storage, worker)
    await dispatcher.trigger("record_submitted", payload, EventScope(record_id="rec_1"))
    ```
"""

from .delivery import (
    ABORT_ERROR,
    CancellationToken,
    ChainState,
    DeliveryChain,
    DeliveryWorker,
    LoggingNotifier,
    Notifier,
)
from .dispatcher import WebhookDispatcher
from .replay import SIMULATED_FAILURE, SIMULATED_OK, ReplayService
from .signing import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
    is_timestamp_fresh,
    signature_headers,
    verify_signature,
)

__all__ = [
    "ABORT_ERROR",
    "CancellationToken",
    "ChainState",
    "DeliveryChain",
    "DeliveryWorker",
    "LoggingNotifier",
    "Notifier",
    "ReplayService",
    "SIGNATURE_HEADER",
    "SIMULATED_FAILURE",
    "SIMULATED_OK",
    "TIMESTAMP_HEADER",
    "WebhookDispatcher",
    "compute_signature",
    "is_timestamp_fresh",
    "signature_headers",
    "verify_signature",
]
