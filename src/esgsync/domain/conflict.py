"""Conflict resolution between imported values and human-approved staging data."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from esgsync.domain.model import AttributeSource, ConflictResolution, SyncStatus

if TYPE_CHECKING:
    from collections.abc import Mapping

    from esgsync.domain.model import FieldMappingRule, SchemaVersion, StagedEntity
    from esgsync.domain.transformation import MappingResult

PRESERVED_MANUAL_REASON = (
    "Cannot overwrite approved manual data. Admin approval required for override."
)


class DecisionAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    PRESERVE = "preserve"
    REJECT = "reject"


@dataclass(slots=True, frozen=True)
class Decision:
    action: DecisionAction
    status: SyncStatus
    conflict_resolution: ConflictResolution = ConflictResolution.NONE
    rejection_reason: str | None = None
    override_approved_by: str | None = None

    @property
    def writes(self) -> bool:
        return self.action in (DecisionAction.CREATE, DecisionAction.UPDATE)


class ConflictResolutionPolicy:
    """Decide what one mapped record does to the staging area.

    The decision depends only on the mapping result, the currently staged
    entity and the override supplied for this record's external id.
    """

    def decide(
        self,
        mapping: MappingResult,
        existing: StagedEntity | None,
        override_approved_by: str | None = None,
        *,
        schema: SchemaVersion | None = None,
    ) -> Decision:
        if not mapping.ok:
            return Decision(
                action=DecisionAction.REJECT,
                status=SyncStatus.REJECTED,
                rejection_reason=mapping.rejection_reason,
            )

        if existing is None:
            if schema is not None and schema.is_deprecated:
                return Decision(
                    action=DecisionAction.REJECT,
                    status=SyncStatus.REJECTED,
                    rejection_reason=(
                        f"Schema {schema.entity_type} v{schema.version_number} is deprecated; "
                        "new entities cannot be created against it"
                    ),
                )
            return Decision(action=DecisionAction.CREATE, status=SyncStatus.SUCCESS)

        if not existing.approved:
            return Decision(action=DecisionAction.UPDATE, status=SyncStatus.SUCCESS)

        override = (override_approved_by or "").strip()
        if not override:
            return Decision(
                action=DecisionAction.PRESERVE,
                status=SyncStatus.CONFLICT_PRESERVED,
                conflict_resolution=ConflictResolution.PRESERVED_MANUAL,
                rejection_reason=PRESERVED_MANUAL_REASON,
            )
        return Decision(
            action=DecisionAction.UPDATE,
            status=SyncStatus.SUCCESS,
            conflict_resolution=ConflictResolution.ADMIN_OVERRIDE,
            override_approved_by=override,
        )


def merge_attributes(
    entity: StagedEntity,
    attributes: Mapping[str, object],
    sources: Mapping[str, FieldMappingRule],
    *,
    connector_id: str,
) -> list[str]:
    """Write ``attributes`` onto ``entity`` honouring cross-connector priority.

    A value last written by another connector's higher-priority rule is kept.
    Returns the names of attributes that were left untouched for that reason.
    """

    kept: list[str] = []
    for name, value in attributes.items():
        rule = sources.get(name)
        priority = rule.priority if rule is not None else 0
        current = entity.attribute_sources.get(name)
        if (
            current is not None
            and current.connector_id != connector_id
            and current.priority > priority
        ):
            kept.append(name)
            continue
        entity.attributes[name] = value
        entity.attribute_sources[name] = AttributeSource(connector_id, priority)
    return kept
