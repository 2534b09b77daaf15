"""Courier: signed outbound webhooks and mapped inbound webhooks.

Lets external parties subscribe to domain events and receive HMAC-signed
HTTP callbacks with bounded retries, and lets external systems push data in
through per-integration endpoints that map their fields onto internal records.

Quick Start:
    from courier import CourierService, EventScope

    async with CourierService.create() as courier:
        view = await courier.subscriptions.create(
            {
                "url": "https://example.com/hooks/records",
                "events": ["record_submitted"],
                "account_id": "acct_1",
            }
        )
        # view.secret is shown once; receivers verify X-Courier-Signature with it

        await courier.trigger(
            "record_submitted",
            {"recordTypeId": "rt_contact", "data": {"email": "a@example.com"}},
            EventScope(record_id="rec_1", account_id="acct_1"),
        )

Components:
    - SubscriptionRegistry / MappingRegistry: owner-facing CRUD
    - WebhookDispatcher: event fan-out, one delivery chain per subscription
    - DeliveryWorker: signed POSTs, exponential backoff, append-only delivery log
    - ReplayService: resend and test sends
    - InboundIngestor: shared-secret check, field mapping, submission
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    CourierError,
    DeliveryError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    UpstreamError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    DeliveryLogFilter,
    EventScope,
    InboundMapping,
    WebhookEvent,
    WebhookSubscription,
)

# Service
from .service import CourierService

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    # Exceptions
    "CourierError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "AuthenticationError",
    "DeliveryError",
    "UpstreamError",
    "StorageError",
    "ConfigurationError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "DeliveryAttempt",
    "DeliveryLogFilter",
    "EventScope",
    "InboundMapping",
    "WebhookEvent",
    "WebhookSubscription",
    # Service
    "CourierService",
]
