"""Outbound webhook subscription models.

A subscription is a registered interest in one or more event types, scoped to
a single record or to a whole account, with a target URL and a shared secret
used to sign every delivery.
"""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .base import generate_id, generate_secret, utc_now, validate_http_url
from .event import EventScope

# Event types that can trigger webhooks
EventType = Literal[
    "record_submitted",
    "record_updated",
    "record_deleted",
]

# All available event types for subscription
ALL_EVENT_TYPES: list[EventType] = [
    "record_submitted",
    "record_updated",
    "record_deleted",
]

# Headers set by the delivery worker; custom headers may not override them
RESERVED_HEADERS: frozenset[str] = frozenset(
    {
        "x-courier-signature",
        "x-courier-timestamp",
        "x-courier-event",
        "x-courier-event-id",
        "x-courier-delivery-id",
        "x-courier-attempt",
    }
)


def _check_events(events: list[str]) -> list[str]:
    if not events:
        raise ValueError("at least one event type is required")
    unknown = [e for e in events if e not in ALL_EVENT_TYPES]
    if unknown:
        raise ValueError(f"unknown event types: {', '.join(unknown)}")
    return list(dict.fromkeys(events))


# RFC 7230 token characters for header names
_HEADER_NAME = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")
# Visible ASCII plus space and tab; no CR/LF or other control characters
_HEADER_VALUE = re.compile(r"[\t\x20-\x7e]*")


def _check_headers(headers: dict[str, str]) -> dict[str, str]:
    reserved = [name for name in headers if name.lower() in RESERVED_HEADERS]
    if reserved:
        raise ValueError(f"reserved headers cannot be overridden: {', '.join(reserved)}")
    bad_names = [name for name in headers if not _HEADER_NAME.fullmatch(name)]
    if bad_names:
        raise ValueError(f"invalid header names: {', '.join(map(repr, bad_names))}")
    bad_values = [name for name, value in headers.items() if not _HEADER_VALUE.fullmatch(value)]
    if bad_values:
        raise ValueError(
            f"header values must be printable ASCII without line breaks: {', '.join(bad_values)}"
        )
    return headers


class WebhookSubscription(BaseModel):
    """A registered outbound webhook.

    Attributes:
        id: Unique identifier for this subscription.
        record_id: Owning record for record-level subscriptions.
        account_id: Owning account; account-wide when record_id is None.
        url: Absolute http(s) endpoint receiving deliveries.
        secret: Shared secret for HMAC-SHA256 signatures (never echoed after creation).
        events: Event types this subscription receives.
        enabled: Whether new deliveries are made.
        name: Optional display name.
        description: Optional human-readable description.
        headers: Extra request headers sent with every delivery.
        payload_template: Optional body template replacing the JSON envelope.
        notification_email: Address notified about delivery outcomes.
        notify_on_success: Send a notice when a delivery chain succeeds.
        notify_on_failure: Send a notice when a delivery chain is exhausted.
        created_at: When the subscription was registered.
        updated_at: When the subscription was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    record_id: str | None = Field(default=None, description="Owning record (record-level)")
    account_id: str | None = Field(default=None, description="Owning account")
    url: str = Field(description="Absolute http(s) endpoint")
    secret: str = Field(default_factory=generate_secret, min_length=1)
    events: list[EventType] = Field(description="Event types to subscribe to")
    enabled: bool = Field(default=True)
    name: str | None = Field(default=None)
    description: str | None = Field(default=None)
    headers: dict[str, str] = Field(default_factory=dict)
    payload_template: str | None = Field(default=None)
    notification_email: str | None = Field(default=None)
    notify_on_success: bool = Field(default=False)
    notify_on_failure: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return validate_http_url(value)

    @field_validator("events", mode="before")
    @classmethod
    def _validate_events(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return _check_events(list(value))
        return value

    @field_validator("headers")
    @classmethod
    def _validate_headers(cls, value: dict[str, str]) -> dict[str, str]:
        return _check_headers(value)

    @model_validator(mode="after")
    def _require_scope(self) -> "WebhookSubscription":
        if self.record_id is None and self.account_id is None:
            raise ValueError("either record_id or account_id is required")
        # Content-Type is only negotiable when a template renders a non-envelope body
        if self.payload_template is None and any(
            name.lower() == "content-type" for name in self.headers
        ):
            raise ValueError("Content-Type can only be overridden together with payload_template")
        return self

    @property
    def is_account_wide(self) -> bool:
        """True when the subscription covers every record of its account."""
        return self.record_id is None

    def matches_scope(self, scope: EventScope) -> bool:
        """Check whether an event raised in `scope` belongs to this subscription.

        Record-level subscriptions match their own record only. Account-wide
        subscriptions match any event raised in their account.
        """
        if self.record_id is not None:
            return scope.record_id is not None and self.record_id == scope.record_id
        return scope.account_id is not None and self.account_id == scope.account_id

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription is enabled and receives the given event type."""
        return self.enabled and event_type in self.events


class SubscriptionSpec(BaseModel):
    """Input for creating a subscription.

    Validation beyond presence (URL shape, scope, event domain) happens when the
    full WebhookSubscription is built so create and update share one rule set.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(min_length=1)
    events: list[str] = Field(min_length=1)
    record_id: str | None = None
    account_id: str | None = None
    secret: str | None = Field(default=None, min_length=1)
    enabled: bool = True
    name: str | None = None
    description: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    payload_template: str | None = None
    notification_email: str | None = None
    notify_on_success: bool = False
    notify_on_failure: bool = True


class SubscriptionPatch(BaseModel):
    """Partial update for a subscription. Unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    events: list[str] | None = None
    record_id: str | None = None
    account_id: str | None = None
    enabled: bool | None = None
    name: str | None = None
    description: str | None = None
    headers: dict[str, str] | None = None
    payload_template: str | None = None
    notification_email: str | None = None
    notify_on_success: bool | None = None
    notify_on_failure: bool | None = None


class SubscriptionView(BaseModel):
    """Subscription as returned to owners.

    The secret only appears on the view returned by create (or rotate);
    list and get responses carry has_secret instead.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    record_id: str | None
    account_id: str | None
    url: str
    events: list[str]
    enabled: bool
    name: str | None
    description: str | None
    headers: dict[str, str]
    payload_template: str | None
    notification_email: str | None
    notify_on_success: bool
    notify_on_failure: bool
    has_secret: bool
    secret: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(
        cls, subscription: WebhookSubscription, reveal_secret: bool = False
    ) -> "SubscriptionView":
        """Build a view, optionally revealing the secret (creation only)."""
        data = subscription.model_dump(exclude={"secret"})
        return cls(
            **data,
            has_secret=bool(subscription.secret),
            secret=subscription.secret if reveal_secret else None,
        )


__all__ = [
    "ALL_EVENT_TYPES",
    "EventType",
    "RESERVED_HEADERS",
    "SubscriptionPatch",
    "SubscriptionSpec",
    "SubscriptionView",
    "WebhookSubscription",
]
