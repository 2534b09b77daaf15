"""Inbound mapping registry: owner-facing CRUD over inbound integration endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import NotFoundError
from courier.logging import get_logger
from courier.models import InboundMapping, MappingPatch, MappingSpec, MappingView, generate_secret

from .subscriptions import as_validation_error

if TYPE_CHECKING:
    from courier.storage import MappingStore

logger = get_logger(__name__)


class MappingRegistry:
    """Create, list, read, update and delete inbound mappings.

    A secret is generated for every new mapping unless one is supplied or the
    caller opts out with require_secret=False (an open endpoint).
    """

    def __init__(self, storage: MappingStore) -> None:
        self._storage = storage

    async def create(self, spec: MappingSpec | dict[str, Any]) -> MappingView:
        """Register a new inbound mapping.

        Returns:
            View of the stored mapping, including its secret.

        Raises:
            ValidationError: If the target record type or rules are missing.
        """
        try:
            if isinstance(spec, dict):
                spec = MappingSpec.model_validate(spec)
            data = spec.model_dump(exclude={"require_secret"})
            if data.get("secret") is None and spec.require_secret:
                data["secret"] = generate_secret()
            mapping = InboundMapping.model_validate(data)
        except PydanticValidationError as e:
            raise as_validation_error(e) from e

        await self._storage.store_mapping(mapping)
        logger.info(
            "Inbound mapping created",
            mapping_id=mapping.id,
            target_record_type_id=mapping.target_record_type_id,
            rules=len(mapping.mapping_rules),
            has_secret=mapping.secret is not None,
        )
        return MappingView.from_mapping(mapping, reveal_secret=True)

    async def list(self, target_record_type_id: str | None = None) -> list[MappingView]:
        mappings = await self._storage.list_mappings(target_record_type_id=target_record_type_id)
        return [MappingView.from_mapping(m) for m in mappings]

    async def get(self, mapping_id: str) -> MappingView:
        return MappingView.from_mapping(await self.get_mapping(mapping_id))

    async def get_mapping(self, mapping_id: str) -> InboundMapping:
        """Get the full stored mapping, secret included.

        Raises:
            NotFoundError: If the mapping doesn't exist.
        """
        mapping = await self._storage.get_mapping(mapping_id)
        if mapping is None:
            raise NotFoundError("inbound_mapping", mapping_id)
        return mapping

    async def update(self, mapping_id: str, patch: MappingPatch | dict[str, Any]) -> MappingView:
        """Apply a partial update, validated like create.

        Raises:
            ValidationError: If the patched mapping is invalid.
            NotFoundError: If the mapping doesn't exist.
        """
        try:
            if isinstance(patch, dict):
                patch = MappingPatch.model_validate(patch)
            updates = patch.model_dump(exclude_unset=True)
            updated = await self._storage.update_mapping(mapping_id, **updates)
        except PydanticValidationError as e:
            raise as_validation_error(e) from e

        if updated is None:
            raise NotFoundError("inbound_mapping", mapping_id)
        logger.info("Inbound mapping updated", mapping_id=mapping_id, fields=sorted(updates))
        return MappingView.from_mapping(updated)

    async def delete(self, mapping_id: str) -> None:
        if not await self._storage.delete_mapping(mapping_id):
            raise NotFoundError("inbound_mapping", mapping_id)
        logger.info("Inbound mapping deleted", mapping_id=mapping_id)

    async def rotate_secret(self, mapping_id: str) -> MappingView:
        """Replace the shared secret and return it once.

        Raises:
            NotFoundError: If the mapping doesn't exist.
        """
        updated = await self._storage.update_mapping(mapping_id, secret=generate_secret())
        if updated is None:
            raise NotFoundError("inbound_mapping", mapping_id)
        logger.info("Inbound mapping secret rotated", mapping_id=mapping_id)
        return MappingView.from_mapping(updated, reveal_secret=True)


__all__ = ["MappingRegistry"]
