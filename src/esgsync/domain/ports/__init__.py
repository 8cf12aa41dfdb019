"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import RecordPage, RecordSource
from .persistence import (
    CallAttemptRepository,
    SchemaRepository,
    StagedEntityRepository,
    SyncJobRepository,
    SyncOutcomeRepository,
)
from .unit_of_work import RepositoryCollection, SyncRepositories, SyncUnitOfWork, UnitOfWork

__all__ = [
    "CallAttemptRepository",
    "RecordPage",
    "RecordSource",
    "RepositoryCollection",
    "SchemaRepository",
    "StagedEntityRepository",
    "SyncJobRepository",
    "SyncOutcomeRepository",
    "SyncRepositories",
    "SyncUnitOfWork",
    "UnitOfWork",
]
