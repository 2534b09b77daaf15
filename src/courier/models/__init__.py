"""Data models for Courier.

Outbound:
    - WebhookSubscription: Registered interest in event types, with URL and secret
    - WebhookEvent / EventScope: Transient event input to the dispatcher
    - DeliveryAttempt: One row of the append-only delivery log

Inbound:
    - InboundMapping: External field name -> internal field id rules for an endpoint
"""

from .base import generate_id, generate_secret, utc_now, validate_http_url
from .delivery import (
    TERMINAL_OUTCOMES,
    DeliveryAttempt,
    DeliveryKind,
    DeliveryLogFilter,
    DeliveryOutcome,
)
from .event import EventScope, WebhookEvent
from .inbound import InboundMapping, MappingPatch, MappingSpec, MappingView
from .subscription import (
    ALL_EVENT_TYPES,
    RESERVED_HEADERS,
    EventType,
    SubscriptionPatch,
    SubscriptionSpec,
    SubscriptionView,
    WebhookSubscription,
)

__all__ = [
    # Helpers
    "generate_id",
    "generate_secret",
    "utc_now",
    "validate_http_url",
    # Subscriptions
    "ALL_EVENT_TYPES",
    "EventType",
    "RESERVED_HEADERS",
    "SubscriptionPatch",
    "SubscriptionSpec",
    "SubscriptionView",
    "WebhookSubscription",
    # Events
    "EventScope",
    "WebhookEvent",
    # Delivery log
    "DeliveryAttempt",
    "DeliveryKind",
    "DeliveryLogFilter",
    "DeliveryOutcome",
    "TERMINAL_OUTCOMES",
    # Inbound
    "InboundMapping",
    "MappingPatch",
    "MappingSpec",
    "MappingView",
]
