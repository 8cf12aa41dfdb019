"""Domain model for the synchronization engine."""

from __future__ import annotations

from .connector import (
    AverageTransform,
    ConnectorConfig,
    DirectTransform,
    FieldMappingRule,
    FteTransform,
    LookupTransform,
    RawRecord,
    RetryPolicy,
    SumTransform,
    Transform,
)
from .enums import (
    AttemptOutcome,
    CallStatus,
    ConflictResolution,
    DataType,
    EntityType,
    JobStatus,
    SyncStatus,
    TransformKind,
)
from .outcomes import CallAttempt, SyncJob, SyncOutcomeRecord, SyncResult
from .schema import AttributeDefinition, MappingSet, SchemaVersion, StagingPolicy
from .staging import AttributeSource, Provenance, StagedEntity

__all__ = [
    "AttemptOutcome",
    "AttributeDefinition",
    "AttributeSource",
    "AverageTransform",
    "CallAttempt",
    "CallStatus",
    "ConflictResolution",
    "ConnectorConfig",
    "DataType",
    "DirectTransform",
    "EntityType",
    "FieldMappingRule",
    "FteTransform",
    "JobStatus",
    "LookupTransform",
    "MappingSet",
    "Provenance",
    "RawRecord",
    "RetryPolicy",
    "SchemaVersion",
    "StagedEntity",
    "StagingPolicy",
    "SumTransform",
    "SyncJob",
    "SyncOutcomeRecord",
    "SyncResult",
    "SyncStatus",
    "Transform",
    "TransformKind",
]
