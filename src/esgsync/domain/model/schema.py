"""Versioned canonical schema definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .enums import DataType

if TYPE_CHECKING:
    from .connector import FieldMappingRule
    from .enums import EntityType


@dataclass(slots=True, frozen=True)
class AttributeDefinition:
    name: str
    required: bool = False
    data_type: DataType = DataType.ANY


@dataclass(eq=False, kw_only=True)
class SchemaVersion:
    """One immutable version of the canonical schema for an entity type."""

    entity_type: EntityType
    version_number: int
    attribute_definitions: tuple[AttributeDefinition, ...]
    backward_compatible_with: int | None = None
    is_deprecated: bool = False
    description: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def definition_for(self, name: str) -> AttributeDefinition | None:
        for definition in self.attribute_definitions:
            if definition.name == name:
                return definition
        return None

    @property
    def attribute_names(self) -> frozenset[str]:
        return frozenset(definition.name for definition in self.attribute_definitions)

    @property
    def required_attributes(self) -> tuple[str, ...]:
        return tuple(d.name for d in self.attribute_definitions if d.required)


@dataclass(eq=False, kw_only=True)
class MappingSet:
    """Field-mapping rules one connector registered against a schema version."""

    connector_id: str
    entity_type: EntityType
    schema_version: int
    rules: tuple[FieldMappingRule, ...]


@dataclass(eq=False)
class StagingPolicy:
    """Whether freshly staged entities of a type start out approved.

    High-risk domains (finance) default to ``auto_approve=False`` so imported
    values wait for human review.
    """

    entity_type: EntityType
    auto_approve: bool = False
