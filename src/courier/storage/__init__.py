"""Storage backends for Courier.

This module provides the storage layer for subscriptions, inbound mappings
and the append-only delivery log.

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        await storage.store_subscription(subscription)
        subscriptions = await storage.list_subscriptions(account_id="acct_1")
    ```
"""

from .client import CourierStorage, StorageStats
from .protocols import DeliveryLogStore, MappingStore, SubscriptionStore

__all__ = [
    "CourierStorage",
    "DeliveryLogStore",
    "MappingStore",
    "StorageStats",
    "SubscriptionStore",
]
