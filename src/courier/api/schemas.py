"""Pydantic schemas for API request/response models.

Subscription and mapping bodies reuse the model-layer specs, patches and
views directly; this module only holds shapes that exist for HTTP.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from courier.models import DeliveryAttempt


class ResendRequest(BaseModel):
    """Request body for re-sending a logged delivery.

    Attributes:
        log_id: Delivery attempt whose body is sent again.
    """

    model_config = ConfigDict(extra="forbid")

    log_id: str = Field(min_length=1, description="Delivery log ID to resend")


class SendTestRequest(BaseModel):
    """Request body for a test send.

    Attributes:
        sample_payload: Payload for the test envelope. {"simulate": "success"}
            or {"simulate": "failure"} writes a simulated row instead.
    """

    model_config = ConfigDict(extra="forbid")

    sample_payload: dict[str, Any] | None = Field(default=None)


class TriggerEventRequest(BaseModel):
    """Request body for the producer hook.

    Attributes:
        event_type: Domain event name.
        payload: Event data.
        record_id: Record the event concerns.
        account_id: Account owning the record.
    """

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    record_id: str | None = None
    account_id: str | None = None


class TriggerEventResponse(BaseModel):
    """Response for the producer hook."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    chain_ids: list[str]
    scheduled: int = Field(ge=0)


class DeliveryLogResponse(BaseModel):
    """Delivery history page, newest first."""

    model_config = ConfigDict(extra="forbid")

    logs: list[DeliveryAttempt]
    count: int = Field(ge=0)


class InboundAcceptedResponse(BaseModel):
    """Response for an accepted inbound webhook."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool = True
    submission_id: str = Field(serialization_alias="submissionId")


class HealthResponse(BaseModel):
    """Response model for health check.

    Attributes:
        status: Service health status.
        version: API version.
        active_chains: Delivery chains currently in flight.
        subscriptions: Registered subscriptions.
        deliveries: Rows in the delivery log.
    """

    model_config = ConfigDict(extra="forbid")

    status: str
    version: str
    active_chains: int = Field(ge=0)
    subscriptions: int = Field(ge=0)
    deliveries: int = Field(ge=0)


__all__ = [
    "DeliveryLogResponse",
    "HealthResponse",
    "InboundAcceptedResponse",
    "ResendRequest",
    "SendTestRequest",
    "TriggerEventRequest",
    "TriggerEventResponse",
]
