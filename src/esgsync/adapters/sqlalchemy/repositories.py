"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from esgsync.adapters.sqlalchemy.mappings import (
    call_attempt_table,
    mapping_set_table,
    schema_version_table,
    staged_entity_table,
    sync_job_table,
    sync_outcome_table,
)
from esgsync.domain.model import (
    AttributeSource,
    CallAttempt,
    ConflictResolution,
    MappingSet,
    Provenance,
    SchemaVersion,
    StagedEntity,
    StagingPolicy,
    SyncJob,
    SyncOutcomeRecord,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from sqlalchemy import CursorResult
    from sqlalchemy.orm import Session

    from esgsync.domain.model import EntityType, JobStatus, SyncStatus


class SqlAlchemyStagedEntityRepository:
    """Staged entities written through Core so updates can compare-and-set on ``revision``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, entity_type: EntityType, external_id: str) -> StagedEntity | None:
        stmt = (
            select(staged_entity_table)
            .where(staged_entity_table.c.entity_type == entity_type)
            .where(staged_entity_table.c.external_id == external_id)
        )
        row = self.session.execute(stmt).mappings().one_or_none()
        return None if row is None else _entity_from_row(row)

    def get_by_id(self, entity_id: UUID) -> StagedEntity | None:
        stmt = select(staged_entity_table).where(staged_entity_table.c.id == entity_id)
        row = self.session.execute(stmt).mappings().one_or_none()
        return None if row is None else _entity_from_row(row)

    def add(self, entity: StagedEntity) -> bool:
        if self.get(entity.entity_type, entity.external_id) is not None:
            return False
        values = _entity_values(entity)
        values["id"] = entity.id
        values["revision"] = entity.revision + 1
        try:
            self.session.execute(insert(staged_entity_table).values(**values))
        except IntegrityError:
            return False
        entity.revision += 1
        return True

    def compare_and_set(self, entity: StagedEntity, *, expected_revision: int) -> bool:
        values = _entity_values(entity)
        values["revision"] = expected_revision + 1
        stmt = (
            update(staged_entity_table)
            .where(staged_entity_table.c.id == entity.id)
            .where(staged_entity_table.c.revision == expected_revision)
            .values(**values)
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        if result.rowcount != 1:
            return False
        entity.revision = expected_revision + 1
        return True

    def list_by_type(self, entity_type: EntityType, *, limit: int = 100) -> list[StagedEntity]:
        stmt = (
            select(staged_entity_table)
            .where(staged_entity_table.c.entity_type == entity_type)
            .order_by(staged_entity_table.c.external_id)
            .limit(limit)
        )
        return [_entity_from_row(row) for row in self.session.execute(stmt).mappings()]


def _entity_values(entity: StagedEntity) -> dict[str, object]:
    provenance = entity.provenance
    return {
        "entity_type": entity.entity_type,
        "external_id": entity.external_id,
        "attributes": dict(entity.attributes),
        "vendor_extensions": dict(entity.vendor_extensions),
        "attribute_sources": {
            name: {"connector_id": source.connector_id, "priority": source.priority}
            for name, source in entity.attribute_sources.items()
        },
        "approved": entity.approved,
        "approved_by": entity.approved_by,
        "source_system": provenance.source_system,
        "extract_timestamp": provenance.extract_timestamp,
        "import_job_id": provenance.import_job_id,
        "schema_version": provenance.schema_version,
        "created_at": entity.created_at,
        "updated_at": entity.updated_at,
    }


def _entity_from_row(row: Mapping[str, Any]) -> StagedEntity:
    sources = cast(dict[str, dict[str, Any]], row["attribute_sources"])
    return StagedEntity(
        id=row["id"],
        entity_type=row["entity_type"],
        external_id=row["external_id"],
        provenance=Provenance(
            row["source_system"],
            row["extract_timestamp"],
            row["import_job_id"],
            row["schema_version"],
        ),
        attributes=dict(row["attributes"]),
        vendor_extensions=dict(row["vendor_extensions"]),
        attribute_sources={
            name: AttributeSource(str(source["connector_id"]), int(source["priority"]))
            for name, source in sources.items()
        },
        approved=row["approved"],
        approved_by=row["approved_by"],
        revision=row["revision"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SqlAlchemySyncOutcomeRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, outcome: SyncOutcomeRecord) -> None:
        self.session.add(outcome)

    def for_connector(
        self,
        connector_id: str,
        *,
        limit: int,
        status: SyncStatus | None = None,
    ) -> list[SyncOutcomeRecord]:
        stmt = select(SyncOutcomeRecord).where(sync_outcome_table.c.connector_id == connector_id)
        if status is not None:
            stmt = stmt.where(sync_outcome_table.c.status == status)
        stmt = stmt.order_by(sync_outcome_table.c.recorded_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def for_job(self, import_job_id: str) -> list[SyncOutcomeRecord]:
        stmt = (
            select(SyncOutcomeRecord)
            .where(sync_outcome_table.c.import_job_id == import_job_id)
            .order_by(sync_outcome_table.c.recorded_at)
        )
        return list(self.session.execute(stmt).scalars())

    def overrides(
        self,
        *,
        connector_id: str | None = None,
        approved_by: str | None = None,
        limit: int,
    ) -> list[SyncOutcomeRecord]:
        stmt = (
            select(SyncOutcomeRecord)
            .where(sync_outcome_table.c.override_approved_by.is_not(None))
            .where(sync_outcome_table.c.conflict_resolution == ConflictResolution.ADMIN_OVERRIDE)
        )
        if connector_id is not None:
            stmt = stmt.where(sync_outcome_table.c.connector_id == connector_id)
        if approved_by is not None:
            stmt = stmt.where(sync_outcome_table.c.override_approved_by == approved_by)
        stmt = stmt.order_by(sync_outcome_table.c.recorded_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySyncJobRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, job: SyncJob) -> None:
        self.session.merge(job)

    def get(self, job_id: str) -> SyncJob | None:
        return self.session.get(SyncJob, job_id)

    def search(
        self,
        *,
        connector_id: str | None = None,
        status: JobStatus | None = None,
        limit: int,
    ) -> list[SyncJob]:
        stmt = select(SyncJob)
        if connector_id is not None:
            stmt = stmt.where(sync_job_table.c.connector_id == connector_id)
        if status is not None:
            stmt = stmt.where(sync_job_table.c.status == status)
        stmt = stmt.order_by(sync_job_table.c.started_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyCallAttemptRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, attempt: CallAttempt) -> None:
        self.session.add(attempt)

    def for_correlation_id(self, correlation_id: str) -> list[CallAttempt]:
        stmt = (
            select(CallAttempt)
            .where(call_attempt_table.c.correlation_id == correlation_id)
            .order_by(call_attempt_table.c._id)  # noqa: SLF001
        )
        return list(self.session.execute(stmt).scalars())

    def search(self, *, connector_id: str | None = None, limit: int) -> list[CallAttempt]:
        stmt = select(CallAttempt)
        if connector_id is not None:
            stmt = stmt.where(call_attempt_table.c.connector_id == connector_id)
        stmt = stmt.order_by(call_attempt_table.c._id.desc()).limit(limit)  # noqa: SLF001
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySchemaRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add_version(self, version: SchemaVersion) -> None:
        self.session.merge(version)

    def get_version(self, entity_type: EntityType, version_number: int) -> SchemaVersion | None:
        return self.session.get(SchemaVersion, (entity_type, version_number))

    def list_versions(self, entity_type: EntityType) -> list[SchemaVersion]:
        stmt = (
            select(SchemaVersion)
            .where(schema_version_table.c.entity_type == entity_type)
            .order_by(schema_version_table.c.version_number)
        )
        return list(self.session.execute(stmt).scalars())

    def get_mapping_set(self, connector_id: str) -> MappingSet | None:
        return self.session.get(MappingSet, connector_id)

    def list_mapping_sets(self, entity_type: EntityType, schema_version: int) -> list[MappingSet]:
        stmt = (
            select(MappingSet)
            .where(mapping_set_table.c.entity_type == entity_type)
            .where(mapping_set_table.c.schema_version == schema_version)
            .order_by(mapping_set_table.c.connector_id)
        )
        return list(self.session.execute(stmt).scalars())

    def save_mapping_set(self, mapping_set: MappingSet) -> None:
        self.session.merge(mapping_set)

    def get_staging_policy(self, entity_type: EntityType) -> StagingPolicy | None:
        return self.session.get(StagingPolicy, entity_type)

    def save_staging_policy(self, policy: StagingPolicy) -> None:
        self.session.merge(policy)
