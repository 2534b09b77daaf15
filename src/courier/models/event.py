"""Transient event models.

An event only exists as the input to Dispatcher.trigger and as the payload
captured inside each DeliveryAttempt; it is never stored on its own.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now


class EventScope(BaseModel):
    """Boundary used to resolve which subscriptions receive an event.

    Attributes:
        record_id: Record the event concerns (matches record-level subscriptions).
        account_id: Account owning the record (matches account-wide subscriptions).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    record_id: str | None = Field(default=None)
    account_id: str | None = Field(default=None)

    @property
    def is_empty(self) -> bool:
        return self.record_id is None and self.account_id is None


class WebhookEvent(BaseModel):
    """One occurrence of a domain event.

    Every delivery chain started for it records this id as event_id.

    Attributes:
        id: Unique identifier for this occurrence.
        event_type: Event type name.
        payload: Event-specific data (schemaless, insertion-ordered).
        scope: Record/account scope of the event.
        timestamp: When the event occurred.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    event_type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    scope: EventScope = Field(default_factory=EventScope)
    timestamp: datetime = Field(default_factory=utc_now)

    def envelope(self) -> dict[str, Any]:
        """Wire envelope sent to subscribers: {eventType, payload, timestamp}."""
        return {
            "eventType": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = [
    "EventScope",
    "WebhookEvent",
]
