"""SQLAlchemy adapter package for esgsync."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyCallAttemptRepository,
    SqlAlchemySchemaRepository,
    SqlAlchemyStagedEntityRepository,
    SqlAlchemySyncJobRepository,
    SqlAlchemySyncOutcomeRepository,
)
from .unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyCallAttemptRepository",
    "SqlAlchemySchemaRepository",
    "SqlAlchemyStagedEntityRepository",
    "SqlAlchemySyncJobRepository",
    "SqlAlchemySyncOutcomeRepository",
    "SqlAlchemySyncUnitOfWork",
    "StartupError",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "startup",
    "start_mappers",
]
