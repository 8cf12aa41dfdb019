"""Staged canonical entities and their provenance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from .enums import EntityType


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True, frozen=True)
class Provenance:
    """Where an entity's current data came from. All fields are mandatory."""

    source_system: str
    extract_timestamp: datetime
    import_job_id: str
    schema_version: int


@dataclass(slots=True, frozen=True)
class AttributeSource:
    """The connector rule that last wrote an attribute."""

    connector_id: str
    priority: int


@dataclass(eq=False, kw_only=True)
class StagedEntity:
    """Canonical entity imported from an external system, pending or past review.

    ``revision`` is bumped on every persisted write and acts as the
    compare-and-set token between sync runs and manual approvals.
    """

    entity_type: EntityType
    external_id: str
    provenance: Provenance
    attributes: dict[str, object] = field(default_factory=dict[str, object])
    vendor_extensions: dict[str, object] = field(default_factory=dict[str, object])
    attribute_sources: dict[str, AttributeSource] = field(
        default_factory=dict[str, AttributeSource]
    )
    approved: bool = False
    approved_by: str | None = None
    revision: int = 0
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    @property
    def schema_version(self) -> int:
        return self.provenance.schema_version

    def snapshot(self) -> StagedEntity:
        """Return a detached copy, used to decide against a stable view."""

        return StagedEntity(
            entity_type=self.entity_type,
            external_id=self.external_id,
            provenance=self.provenance,
            attributes=dict(self.attributes),
            vendor_extensions=dict(self.vendor_extensions),
            attribute_sources=dict(self.attribute_sources),
            approved=self.approved,
            approved_by=self.approved_by,
            revision=self.revision,
            id=self.id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
