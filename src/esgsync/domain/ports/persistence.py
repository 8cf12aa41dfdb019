"""Ports for persisting staged entities, outcomes, jobs and schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from esgsync.domain.model import (
        CallAttempt,
        EntityType,
        JobStatus,
        MappingSet,
        SchemaVersion,
        StagedEntity,
        StagingPolicy,
        SyncJob,
        SyncOutcomeRecord,
        SyncStatus,
    )


@runtime_checkable
class StagedEntityRepository(Protocol):
    """Staged entities keyed by ``(entity_type, external_id)``.

    Writes are compare-and-set on ``revision`` so a sync decision never lands on
    top of a concurrent manual approval.
    """

    def get(self, entity_type: EntityType, external_id: str) -> StagedEntity | None: ...

    def get_by_id(self, entity_id: UUID) -> StagedEntity | None: ...

    def add(self, entity: StagedEntity) -> bool:
        """Insert ``entity`` unless the key already exists; return whether it was inserted."""
        ...

    def compare_and_set(self, entity: StagedEntity, *, expected_revision: int) -> bool:
        """Persist ``entity`` only if the stored revision still equals ``expected_revision``.

        On success ``entity.revision`` is advanced to the stored value.
        """
        ...

    def list_by_type(
        self, entity_type: EntityType, *, limit: int = 100
    ) -> Sequence[StagedEntity]: ...


@runtime_checkable
class SyncOutcomeRepository(Protocol):
    def add(self, outcome: SyncOutcomeRecord) -> None: ...

    def for_connector(
        self,
        connector_id: str,
        *,
        limit: int,
        status: SyncStatus | None = None,
    ) -> Sequence[SyncOutcomeRecord]:
        """Newest first."""
        ...

    def for_job(self, import_job_id: str) -> Sequence[SyncOutcomeRecord]: ...

    def overrides(
        self,
        *,
        connector_id: str | None = None,
        approved_by: str | None = None,
        limit: int,
    ) -> Sequence[SyncOutcomeRecord]: ...


@runtime_checkable
class SyncJobRepository(Protocol):
    def add(self, job: SyncJob) -> None:
        """Insert ``job`` or replace the stored job with the same id."""
        ...

    def get(self, job_id: str) -> SyncJob | None: ...

    def search(
        self,
        *,
        connector_id: str | None = None,
        status: JobStatus | None = None,
        limit: int,
    ) -> Sequence[SyncJob]: ...


@runtime_checkable
class CallAttemptRepository(Protocol):
    def add(self, attempt: CallAttempt) -> None: ...

    def for_correlation_id(self, correlation_id: str) -> Sequence[CallAttempt]: ...

    def search(
        self, *, connector_id: str | None = None, limit: int
    ) -> Sequence[CallAttempt]:
        """Newest first."""
        ...


@runtime_checkable
class SchemaRepository(Protocol):
    def add_version(self, version: SchemaVersion) -> None:
        """Insert or replace the version with the same entity type and number."""
        ...

    def get_version(self, entity_type: EntityType, version_number: int) -> SchemaVersion | None: ...

    def list_versions(self, entity_type: EntityType) -> Sequence[SchemaVersion]:
        """Ascending by version number."""
        ...

    def get_mapping_set(self, connector_id: str) -> MappingSet | None: ...

    def list_mapping_sets(
        self, entity_type: EntityType, schema_version: int
    ) -> Sequence[MappingSet]: ...

    def save_mapping_set(self, mapping_set: MappingSet) -> None:
        """Insert or replace the mapping set registered for its connector."""
        ...

    def get_staging_policy(self, entity_type: EntityType) -> StagingPolicy | None: ...

    def save_staging_policy(self, policy: StagingPolicy) -> None:
        """Insert or replace the policy for its entity type."""
        ...
