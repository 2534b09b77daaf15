"""Inbound mapping storage operations for Courier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from courier.exceptions import StorageError
from courier.models import InboundMapping, utc_now

if TYPE_CHECKING:
    import asyncio


class MappingMixin:
    """Mixin providing inbound mapping operations for CourierStorage.

    Expects _mappings, _lock, _copy and _newest_first from the base class.
    """

    _mappings: dict[str, InboundMapping]
    _lock: asyncio.Lock
    _copy: Any
    _newest_first: Any

    async def store_mapping(self, mapping: InboundMapping) -> str:
        """Store a new inbound mapping and return its ID."""
        async with self._lock:
            if mapping.id in self._mappings:
                raise StorageError(f"inbound mapping already exists: {mapping.id}")
            self._mappings[mapping.id] = self._copy(mapping)
        return mapping.id

    async def get_mapping(self, mapping_id: str) -> InboundMapping | None:
        mapping = self._mappings.get(mapping_id)
        return self._copy(mapping) if mapping is not None else None

    async def list_mappings(
        self,
        target_record_type_id: str | None = None,
    ) -> list[InboundMapping]:
        """List inbound mappings, newest first, optionally for one record type."""
        results = [
            m
            for m in self._mappings.values()
            if target_record_type_id is None or m.target_record_type_id == target_record_type_id
        ]
        return [self._copy(m) for m in self._newest_first(results)]

    async def update_mapping(self, mapping_id: str, **updates: Any) -> InboundMapping | None:
        """Update an inbound mapping atomically.

        Returns:
            Updated InboundMapping or None if not found.

        Raises:
            pydantic.ValidationError: If the merged record is invalid.
        """
        async with self._lock:
            current = self._mappings.get(mapping_id)
            if current is None:
                return None
            data = current.model_dump()
            data.update(updates)
            data["id"] = current.id
            data["created_at"] = current.created_at
            data["updated_at"] = utc_now()
            updated = InboundMapping.model_validate(data)
            self._mappings[mapping_id] = updated
            return self._copy(updated)

    async def delete_mapping(self, mapping_id: str) -> bool:
        async with self._lock:
            return self._mappings.pop(mapping_id, None) is not None
