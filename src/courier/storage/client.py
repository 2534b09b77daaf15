"""In-memory storage client for Courier.

This module provides the CourierStorage class that combines all storage
operations through mixins.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        await storage.store_subscription(subscription)
        logs = await storage.get_delivery_logs(DeliveryLogFilter(subscription_id=subscription.id))
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .base import StorageBase
from .deliveries import DeliveryLogMixin
from .mappings import MappingMixin
from .subscriptions import SubscriptionMixin


class StorageStats(BaseModel):
    """Row counts per table."""

    model_config = ConfigDict(extra="forbid")

    subscriptions: int = Field(default=0, ge=0)
    mappings: int = Field(default=0, ge=0)
    deliveries: int = Field(default=0, ge=0)
    pending_deliveries: int = Field(default=0, ge=0)


class CourierStorage(SubscriptionMixin, MappingMixin, DeliveryLogMixin, StorageBase):
    """Single-node storage for subscriptions, inbound mappings and the delivery log.

    Satisfies SubscriptionStore, MappingStore and DeliveryLogStore. State lives
    in process memory; restarting the process loses it.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: store/get/list/update/delete subscriptions, event matching
    - MappingMixin: store/get/list/update/delete inbound mappings
    - DeliveryLogMixin: log_delivery, finalize_delivery, get_delivery_logs, get_chain
    """

    async def get_stats(self) -> StorageStats:
        """Count rows in every table."""
        return StorageStats(
            subscriptions=len(self._subscriptions),
            mappings=len(self._mappings),
            deliveries=len(self._deliveries),
            pending_deliveries=sum(
                1 for d in self._deliveries.values() if d.outcome == "pending"
            ),
        )
