"""Storage capabilities consumed by registries, dispatcher and worker.

Components depend on these protocols rather than on CourierStorage, so a
database-backed store can be injected without touching them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from courier.models import (
        DeliveryAttempt,
        DeliveryLogFilter,
        DeliveryOutcome,
        EventScope,
        InboundMapping,
        WebhookSubscription,
    )


@runtime_checkable
class SubscriptionStore(Protocol):
    """CRUD and event matching over webhook subscriptions."""

    async def store_subscription(self, subscription: WebhookSubscription) -> str: ...

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None: ...

    async def list_subscriptions(
        self,
        record_id: str | None = None,
        account_id: str | None = None,
        enabled_only: bool = False,
    ) -> list[WebhookSubscription]: ...

    async def get_subscriptions_for_event(
        self, event_type: str, scope: EventScope
    ) -> list[WebhookSubscription]: ...

    async def update_subscription(
        self, subscription_id: str, **updates: Any
    ) -> WebhookSubscription | None: ...

    async def delete_subscription(self, subscription_id: str) -> bool: ...


@runtime_checkable
class MappingStore(Protocol):
    """CRUD over inbound mappings."""

    async def store_mapping(self, mapping: InboundMapping) -> str: ...

    async def get_mapping(self, mapping_id: str) -> InboundMapping | None: ...

    async def list_mappings(
        self, target_record_type_id: str | None = None
    ) -> list[InboundMapping]: ...

    async def update_mapping(self, mapping_id: str, **updates: Any) -> InboundMapping | None: ...

    async def delete_mapping(self, mapping_id: str) -> bool: ...


@runtime_checkable
class DeliveryLogStore(Protocol):
    """Append-only delivery history."""

    async def log_delivery(self, delivery: DeliveryAttempt) -> str: ...

    async def finalize_delivery(
        self,
        delivery_id: str,
        outcome: DeliveryOutcome,
        response_status: int | None = None,
        response_body: str | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
        next_retry_delay_seconds: float | None = None,
    ) -> DeliveryAttempt: ...

    async def get_delivery(self, delivery_id: str) -> DeliveryAttempt | None: ...

    async def get_delivery_logs(
        self, filters: DeliveryLogFilter | None = None
    ) -> list[DeliveryAttempt]: ...

    async def get_chain(self, chain_id: str) -> list[DeliveryAttempt]: ...
