"""SQLAlchemy table metadata and imperative mappings for the sync domain.

Staged entities are persisted through Core statements so writes can be
expressed as compare-and-set updates on ``revision``; every other record type
is mapped imperatively onto its domain dataclass.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)

from esgsync.adapters.payloads import (
    dump_attribute_definitions,
    dump_rules,
    load_attribute_definitions,
    load_rules,
)
from esgsync.domain.model import (
    AttemptOutcome,
    AttributeDefinition,
    CallAttempt,
    ConflictResolution,
    EntityType,
    FieldMappingRule,
    JobStatus,
    MappingSet,
    SchemaVersion,
    StagingPolicy,
    SyncJob,
    SyncOutcomeRecord,
    SyncStatus,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class JSONObjectType(TypeDecorator[dict[str, object]]):
    """JSON object stored as text; values that are not JSON-native are stringified."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: dict[str, object] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, default=str, sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, object]:
        _ = dialect
        if value is None:
            return {}
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return {}
        return cast(dict[str, Any], loaded)


class MappingRulesType(TypeDecorator[tuple[FieldMappingRule, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: Sequence[FieldMappingRule] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return dump_rules(value)

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> tuple[FieldMappingRule, ...]:
        _ = dialect
        if value is None:
            return ()
        return load_rules(value)


class AttributeDefinitionsType(TypeDecorator[tuple[AttributeDefinition, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: Sequence[AttributeDefinition] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return dump_attribute_definitions(value)

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> tuple[AttributeDefinition, ...]:
        _ = dialect
        if value is None:
            return ()
        return load_attribute_definitions(value)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Staging ---------------------------------------------------------------------

staged_entity_table = Table(
    "staged_entity",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("entity_type", Enum(EntityType, native_enum=False), nullable=False),
    Column("external_id", String, nullable=False),
    Column("attributes", JSONObjectType, nullable=False),
    Column("vendor_extensions", JSONObjectType, nullable=False),
    Column("attribute_sources", JSONObjectType, nullable=False),
    Column("approved", Boolean, nullable=False, default=False),
    Column("approved_by", String, nullable=True),
    Column("revision", Integer, nullable=False),
    Column("source_system", String, nullable=False),
    Column("extract_timestamp", UTCDateTime(), nullable=False),
    Column("import_job_id", String, nullable=False),
    Column("schema_version", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=True),
    UniqueConstraint("entity_type", "external_id"),
)

# Outcomes and job metadata ---------------------------------------------------

sync_outcome_table = Table(
    "sync_outcome",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("connector_id", String, nullable=False),
    Column("import_job_id", String, nullable=False, index=True),
    Column("correlation_id", String, nullable=False),
    Column("external_id", String, nullable=False),
    Column("status", Enum(SyncStatus, native_enum=False), nullable=False),
    Column("rejection_reason", Text, nullable=True),
    Column(
        "conflict_resolution",
        Enum(ConflictResolution, native_enum=False),
        nullable=False,
    ),
    Column("override_approved_by", String, nullable=True),
    Column("staged_entity_id", UUIDColumnType, nullable=True),
    Column("created", Boolean, nullable=False, default=False),
    Column("raw_data", JSONObjectType, nullable=False, default=dict),
    Column("recorded_at", UTCDateTime(), nullable=False),
    Index("ix_sync_outcome_connector_recorded", "connector_id", "recorded_at"),
)

sync_job_table = Table(
    "sync_job",
    mapper_registry.metadata,
    Column("job_id", String, primary_key=True),
    Column("connector_id", String, nullable=False, index=True),
    Column("correlation_id", String, nullable=False),
    Column("status", Enum(JobStatus, native_enum=False), nullable=False),
    Column("started_at", UTCDateTime(), nullable=False),
    Column("initiated_by", String, nullable=True),
    Column("completed_at", UTCDateTime(), nullable=True),
    Column("imported_count", Integer, nullable=False, default=0),
    Column("updated_count", Integer, nullable=False, default=0),
    Column("conflicts_preserved_count", Integer, nullable=False, default=0),
    Column("rejected_count", Integer, nullable=False, default=0),
    Column("failed_count", Integer, nullable=False, default=0),
    Column("error_summary", Text, nullable=True),
)

call_attempt_table = Table(
    "call_attempt",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True, key="_id"),
    Column("connector_id", String, nullable=False),
    Column("correlation_id", String, nullable=False, index=True),
    Column("attempt", Integer, nullable=False),
    Column("outcome", Enum(AttemptOutcome, native_enum=False), nullable=False),
    Column("duration_ms", Float, nullable=False),
    Column("method", String, nullable=True),
    Column("endpoint", String, nullable=True),
    Column("status_code", Integer, nullable=True),
    Column("error", Text, nullable=True),
    Column("recorded_at", UTCDateTime(), nullable=False),
    Index("ix_call_attempt_connector_recorded", "connector_id", "recorded_at"),
)

# Schema registry -------------------------------------------------------------

schema_version_table = Table(
    "schema_version",
    mapper_registry.metadata,
    Column("entity_type", Enum(EntityType, native_enum=False), primary_key=True),
    Column("version_number", Integer, primary_key=True),
    Column("attribute_definitions", AttributeDefinitionsType, nullable=False),
    Column("backward_compatible_with", Integer, nullable=True),
    Column("is_deprecated", Boolean, nullable=False, default=False),
    Column("description", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
)

mapping_set_table = Table(
    "mapping_set",
    mapper_registry.metadata,
    Column("connector_id", String, primary_key=True),
    Column("entity_type", Enum(EntityType, native_enum=False), nullable=False),
    Column("schema_version", Integer, nullable=False),
    Column("rules", MappingRulesType, nullable=False),
    Index("ix_mapping_set_target", "entity_type", "schema_version"),
)

staging_policy_table = Table(
    "staging_policy",
    mapper_registry.metadata,
    Column("entity_type", Enum(EntityType, native_enum=False), primary_key=True),
    Column("auto_approve", Boolean, nullable=False, default=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(SyncOutcomeRecord, sync_outcome_table)
    mapper_registry.map_imperatively(SyncJob, sync_job_table)
    mapper_registry.map_imperatively(CallAttempt, call_attempt_table)
    mapper_registry.map_imperatively(SchemaVersion, schema_version_table)
    mapper_registry.map_imperatively(MappingSet, mapping_set_table)
    mapper_registry.map_imperatively(StagingPolicy, staging_policy_table)

    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
