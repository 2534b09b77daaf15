"""Inbound mapping models.

An inbound mapping turns a per-integration endpoint into a record submission:
external field names in the POSTed body are renamed to internal field ids.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import generate_id, utc_now


def _check_rules(rules: dict[str, str]) -> dict[str, str]:
    if not rules:
        raise ValueError("at least one mapping rule is required")
    for external, internal in rules.items():
        if not external:
            raise ValueError("external field names must be non-empty")
        if not internal:
            raise ValueError(f"rule for {external!r} has an empty internal field id")
    return rules


class InboundMapping(BaseModel):
    """Configuration for one inbound integration endpoint.

    Attributes:
        id: Public endpoint token (POST /webhook/inbound/{id}).
        target_record_type_id: Record type mapped records are submitted into.
        mapping_rules: Ordered external field name -> internal field id.
        secret: Shared secret required in the inbound secret header (optional).
        name: Optional label for the integration.
        enabled: Whether the endpoint accepts requests.
        created_at: When the mapping was created.
        updated_at: When the mapping was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("inb"))
    target_record_type_id: str = Field(min_length=1)
    mapping_rules: dict[str, str]
    secret: str | None = Field(default=None)
    name: str | None = Field(default=None)
    enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("mapping_rules")
    @classmethod
    def _validate_rules(cls, value: dict[str, str]) -> dict[str, str]:
        return _check_rules(value)


class MappingSpec(BaseModel):
    """Input for creating an inbound mapping.

    A secret is generated unless one is supplied or require_secret is False.
    """

    model_config = ConfigDict(extra="forbid")

    target_record_type_id: str = Field(min_length=1)
    mapping_rules: dict[str, str]
    secret: str | None = Field(default=None, min_length=1)
    require_secret: bool = True
    name: str | None = None
    enabled: bool = True


class MappingPatch(BaseModel):
    """Partial update for an inbound mapping. Unset fields are left alone.

    An explicit ``secret: null`` removes the secret and opens the endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    target_record_type_id: str | None = None
    mapping_rules: dict[str, str] | None = None
    secret: str | None = Field(default=None, min_length=1)
    name: str | None = None
    enabled: bool | None = None


class MappingView(BaseModel):
    """Inbound mapping as returned to owners (secret only on create/rotate)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    target_record_type_id: str
    mapping_rules: dict[str, str]
    name: str | None
    enabled: bool
    has_secret: bool
    secret: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_mapping(cls, mapping: InboundMapping, reveal_secret: bool = False) -> "MappingView":
        data = mapping.model_dump(exclude={"secret"})
        return cls(
            **data,
            has_secret=mapping.secret is not None,
            secret=mapping.secret if reveal_secret else None,
        )


__all__ = [
    "InboundMapping",
    "MappingPatch",
    "MappingSpec",
    "MappingView",
]
