"""Base storage class and helpers.

Contains the in-memory tables, the write lock and lifecycle hooks shared by
the storage mixins.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

if TYPE_CHECKING:
    from courier.models import DeliveryAttempt, InboundMapping, WebhookSubscription

ModelT = TypeVar("ModelT", bound=BaseModel)


class StorageBase:
    """Base class for Courier storage with tables and helpers.

    Provides:
    - One table (dict keyed by id) per entity, kept in insertion order
    - A single asyncio.Lock serializing writes, so every write is atomic per record
    - Copy-on-read so callers never hold a reference into a table
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._mappings: dict[str, InboundMapping] = {}
        self._deliveries: dict[str, DeliveryAttempt] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Prepare the storage backend. In-memory tables need no setup."""
        self._initialized = True

    async def close(self) -> None:
        """Release storage resources."""
        self._initialized = False

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @staticmethod
    def _copy(model: ModelT) -> ModelT:
        return model.model_copy(deep=True)

    @staticmethod
    def _newest_first(items: list[ModelT], attr: str = "created_at") -> list[ModelT]:
        # Reverse insertion order first so ties on the timestamp keep newest-first
        return sorted(reversed(items), key=lambda item: getattr(item, attr), reverse=True)
