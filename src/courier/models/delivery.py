"""Delivery log models.

Every HTTP try against a subscription's target (initial, retry, resend or
test) is one DeliveryAttempt row. Rows are appended as pending when the try
starts and finalized exactly once.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

# pending is the only non-final outcome; succeeded and exhausted end a chain
DeliveryOutcome = Literal["pending", "succeeded", "failed", "exhausted"]

TERMINAL_OUTCOMES: frozenset[str] = frozenset({"succeeded", "exhausted"})

# What started the chain an attempt belongs to
DeliveryKind = Literal["delivery", "resend", "test"]


class DeliveryAttempt(BaseModel):
    """Record of one webhook delivery attempt.

    Attributes:
        id: Unique identifier for this attempt.
        subscription_id: Subscription the attempt was made for.
        chain_id: Delivery chain (one per event occurrence and subscription,
            or one per resend/test run) this attempt belongs to.
        event_id: Event occurrence that started the chain (None for test sends).
        event_type: Event type name, or "test" for synthetic sends.
        request_body: Exact body text sent (UTF-8 on the wire).
        response_status: HTTP status, None if no response was received.
        response_body: Response body truncated for the log.
        attempt: 1-based attempt number within the chain.
        outcome: pending, succeeded, failed, or exhausted.
        kind: delivery, resend, or test.
        is_test: True for synthetic test sends.
        resent_from: Log id a resend was copied from.
        record_id: Subscription's record scope when the attempt was made.
        account_id: Subscription's account scope when the attempt was made.
        error: Transport error or abort reason.
        duration_ms: Wall time of the HTTP call.
        next_retry_delay_seconds: Backoff scheduled after a failed attempt.
        created_at: When the attempt started.
        completed_at: When the attempt was finalized.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str
    chain_id: str
    event_id: str | None = Field(default=None)
    event_type: str
    request_body: str
    response_status: int | None = Field(default=None)
    response_body: str | None = Field(default=None)
    attempt: int = Field(default=1, ge=1)
    outcome: DeliveryOutcome = Field(default="pending")
    kind: DeliveryKind = Field(default="delivery")
    is_test: bool = Field(default=False)
    resent_from: str | None = Field(default=None)
    record_id: str | None = Field(default=None)
    account_id: str | None = Field(default=None)
    error: str | None = Field(default=None)
    duration_ms: int | None = Field(default=None, ge=0)
    next_retry_delay_seconds: float | None = Field(default=None, ge=0.0)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES

    @property
    def payload_bytes(self) -> bytes:
        """The exact bytes that went over the wire."""
        return self.request_body.encode("utf-8")


class DeliveryLogFilter(BaseModel):
    """Query over the delivery log.

    Any combination of subscription, record and account may be given. Test
    sends are hidden unless include_tests is set.
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str | None = None
    record_id: str | None = None
    account_id: str | None = None
    chain_id: str | None = None
    event_id: str | None = None
    outcome: DeliveryOutcome | None = None
    include_tests: bool = False
    since: datetime | None = None
    limit: int = Field(default=100, ge=1, le=1000)

    def matches(self, attempt: DeliveryAttempt) -> bool:
        if self.subscription_id is not None and attempt.subscription_id != self.subscription_id:
            return False
        if self.record_id is not None and attempt.record_id != self.record_id:
            return False
        if self.account_id is not None and attempt.account_id != self.account_id:
            return False
        if self.chain_id is not None and attempt.chain_id != self.chain_id:
            return False
        if self.event_id is not None and attempt.event_id != self.event_id:
            return False
        if self.outcome is not None and attempt.outcome != self.outcome:
            return False
        if not self.include_tests and attempt.is_test:
            return False
        if self.since is not None and attempt.created_at < self.since:
            return False
        return True


__all__ = [
    "DeliveryAttempt",
    "DeliveryKind",
    "DeliveryLogFilter",
    "DeliveryOutcome",
    "TERMINAL_OUTCOMES",
]
