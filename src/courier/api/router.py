"""FastAPI routers for Courier API endpoints.

`router` is the management surface mounted under /api/v1. `inbound_router`
is the public ingestion endpoint, authenticated per mapping by shared secret.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from courier import __version__
from courier.models import (
    DeliveryAttempt,
    DeliveryLogFilter,
    DeliveryOutcome,
    EventScope,
    MappingPatch,
    MappingSpec,
    MappingView,
    SubscriptionPatch,
    SubscriptionSpec,
    SubscriptionView,
)
from courier.service import CourierService

from .schemas import (
    DeliveryLogResponse,
    HealthResponse,
    InboundAcceptedResponse,
    ResendRequest,
    SendTestRequest,
    TriggerEventRequest,
    TriggerEventResponse,
)

router = APIRouter()
inbound_router = APIRouter()


async def get_service(request: Request) -> CourierService:
    """Dependency to get the CourierService from application state."""
    service: CourierService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return service


ServiceDep = Annotated[CourierService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check(service: ServiceDep) -> HealthResponse:
    """Check service health and report delivery activity."""
    stats = await service.storage.get_stats()
    return HealthResponse(
        status="healthy",
        version=__version__,
        active_chains=len(service.dispatcher.active_chains()),
        subscriptions=stats.subscriptions,
        deliveries=stats.deliveries,
    )


# ---------------------------------------------------------------------------
# Webhook subscriptions
# ---------------------------------------------------------------------------


@router.post(
    "/webhooks",
    response_model=SubscriptionView,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(spec: SubscriptionSpec, service: ServiceDep) -> SubscriptionView:
    """Register a webhook subscription.

    The response is the only time the signing secret is returned.
    """
    return await service.subscriptions.create(spec)


@router.get("/webhooks", response_model=list[SubscriptionView], tags=["webhooks"])
async def list_webhooks(
    service: ServiceDep,
    record_id: str | None = None,
    account_id: str | None = None,
) -> list[SubscriptionView]:
    """List subscriptions, newest first."""
    return await service.subscriptions.list(record_id=record_id, account_id=account_id)


# Declared before /webhooks/{webhook_id} so "logs" is not taken for an id
@router.get("/webhooks/logs", response_model=DeliveryLogResponse, tags=["webhooks"])
async def get_webhook_logs(
    service: ServiceDep,
    webhook_id: str | None = None,
    record_id: str | None = None,
    account_id: str | None = None,
    chain_id: str | None = None,
    outcome: DeliveryOutcome | None = None,
    include_tests: bool = False,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> DeliveryLogResponse:
    """Query delivery history, newest first. Test sends are opt-in."""
    logs = await service.get_logs(
        DeliveryLogFilter(
            subscription_id=webhook_id,
            record_id=record_id,
            account_id=account_id,
            chain_id=chain_id,
            outcome=outcome,
            include_tests=include_tests,
            limit=limit,
        )
    )
    return DeliveryLogResponse(logs=logs, count=len(logs))


@router.get("/webhooks/{webhook_id}", response_model=SubscriptionView, tags=["webhooks"])
async def get_webhook(webhook_id: str, service: ServiceDep) -> SubscriptionView:
    return await service.subscriptions.get(webhook_id)


@router.patch("/webhooks/{webhook_id}", response_model=SubscriptionView, tags=["webhooks"])
async def update_webhook(
    webhook_id: str, patch: SubscriptionPatch, service: ServiceDep
) -> SubscriptionView:
    """Partially update a subscription. Disabling cancels its pending retries."""
    return await service.subscriptions.update(webhook_id, patch)


@router.delete(
    "/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(webhook_id: str, service: ServiceDep) -> Response:
    """Delete a subscription. Its delivery history is kept."""
    await service.subscriptions.delete(webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/webhooks/{webhook_id}/rotate-secret",
    response_model=SubscriptionView,
    tags=["webhooks"],
)
async def rotate_webhook_secret(webhook_id: str, service: ServiceDep) -> SubscriptionView:
    return await service.subscriptions.rotate_secret(webhook_id)


@router.post(
    "/webhooks/{webhook_id}/resend",
    response_model=DeliveryAttempt,
    tags=["webhooks"],
)
async def resend_webhook(
    webhook_id: str, request: ResendRequest, service: ServiceDep
) -> DeliveryAttempt:
    """Send a logged request body again as a new one-attempt chain."""
    return await service.replay.resend(webhook_id, request.log_id)


@router.post(
    "/webhooks/{webhook_id}/test",
    response_model=DeliveryAttempt,
    tags=["webhooks"],
)
async def test_webhook(
    webhook_id: str,
    service: ServiceDep,
    request: SendTestRequest | None = None,
) -> DeliveryAttempt:
    """Send a synthetic test event to the subscription's URL."""
    sample = request.sample_payload if request is not None else None
    return await service.replay.test(webhook_id, sample)


# ---------------------------------------------------------------------------
# Inbound mappings
# ---------------------------------------------------------------------------


@router.post(
    "/inbound-mappings",
    response_model=MappingView,
    status_code=status.HTTP_201_CREATED,
    tags=["inbound"],
)
async def create_inbound_mapping(spec: MappingSpec, service: ServiceDep) -> MappingView:
    """Create an inbound mapping. The response is the only time the secret is returned."""
    return await service.mappings.create(spec)


@router.get("/inbound-mappings", response_model=list[MappingView], tags=["inbound"])
async def list_inbound_mappings(
    service: ServiceDep,
    target_record_type_id: str | None = None,
) -> list[MappingView]:
    return await service.mappings.list(target_record_type_id=target_record_type_id)


@router.get("/inbound-mappings/{mapping_id}", response_model=MappingView, tags=["inbound"])
async def get_inbound_mapping(mapping_id: str, service: ServiceDep) -> MappingView:
    return await service.mappings.get(mapping_id)


@router.patch("/inbound-mappings/{mapping_id}", response_model=MappingView, tags=["inbound"])
async def update_inbound_mapping(
    mapping_id: str, patch: MappingPatch, service: ServiceDep
) -> MappingView:
    return await service.mappings.update(mapping_id, patch)


@router.delete(
    "/inbound-mappings/{mapping_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["inbound"],
)
async def delete_inbound_mapping(mapping_id: str, service: ServiceDep) -> Response:
    await service.mappings.delete(mapping_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/inbound-mappings/{mapping_id}/rotate-secret",
    response_model=MappingView,
    tags=["inbound"],
)
async def rotate_inbound_mapping_secret(mapping_id: str, service: ServiceDep) -> MappingView:
    return await service.mappings.rotate_secret(mapping_id)


# ---------------------------------------------------------------------------
# Producer hook
# ---------------------------------------------------------------------------


@router.post(
    "/events",
    response_model=TriggerEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def trigger_event(request: TriggerEventRequest, service: ServiceDep) -> TriggerEventResponse:
    """Fan a domain event out to matching subscriptions.

    Returns as soon as deliveries are scheduled; outcomes appear in the
    delivery log.
    """
    chain_ids = await service.trigger(
        request.event_type,
        request.payload,
        EventScope(record_id=request.record_id, account_id=request.account_id),
    )
    return TriggerEventResponse(
        event_type=request.event_type,
        chain_ids=chain_ids,
        scheduled=len(chain_ids),
    )


# ---------------------------------------------------------------------------
# Public inbound endpoint
# ---------------------------------------------------------------------------


@inbound_router.post(
    "/webhook/inbound/{mapping_id}",
    response_model=InboundAcceptedResponse,
    response_model_by_alias=True,
    tags=["inbound"],
)
async def receive_inbound_webhook(
    mapping_id: str, request: Request, service: ServiceDep
) -> InboundAcceptedResponse:
    """Map an external JSON payload onto a record and submit it."""
    raw_body = await request.body()
    result = await service.ingest(mapping_id, request.headers, raw_body)
    return InboundAcceptedResponse(submission_id=result.submission_id)


__all__ = ["get_service", "inbound_router", "router"]
