"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from esgsync.adapters.http import HttpRecordSource
from esgsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, is_started, startup
from esgsync.adapters.static import StaticRecordSource
from esgsync.config import get_http_source_config, get_sync_config
from esgsync.domain.monitoring import SyncMonitor
from esgsync.domain.orchestrator import SyncOrchestrator, SyncRequest
from esgsync.domain.ports.unit_of_work import SyncUnitOfWork
from esgsync.domain.schema_registry import SchemaRegistry
from esgsync.domain.staging import StagingService

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from esgsync.adapters.payloads import SchemaDefinitionPayload
    from esgsync.config import SyncConfig
    from esgsync.domain.execution import SlidingWindowRateLimiter
    from esgsync.domain.model import ConnectorConfig, MappingSet, SchemaVersion, SyncResult
    from esgsync.domain.orchestrator import SyncRun
    from esgsync.domain.ports.fetching import RecordSource

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]

log = getLogger(__name__)

_rate_limiters: dict[str, SlidingWindowRateLimiter] = {}


def ensure_started(*, database_uri: str | None = None) -> None:
    """Start the SQLAlchemy adapter unless a caller (or a test) already did."""

    if not is_started():
        startup(database_uri=database_uri)


def build_registry(unit_of_work_factory: UnitOfWorkFactory | None = None) -> SchemaRegistry:
    ensure_started()
    return SchemaRegistry(unit_of_work_factory or SqlAlchemySyncUnitOfWork)


def build_monitor(
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    *,
    sync_config: SyncConfig | None = None,
) -> SyncMonitor:
    ensure_started()
    config = sync_config or get_sync_config()
    return SyncMonitor(
        unit_of_work_factory or SqlAlchemySyncUnitOfWork,
        default_limit=config.history_limit,
    )


def build_staging_service(
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    *,
    sync_config: SyncConfig | None = None,
) -> StagingService:
    ensure_started()
    config = sync_config or get_sync_config()
    return StagingService(
        unit_of_work_factory or SqlAlchemySyncUnitOfWork,
        cas_retries=config.cas_retries,
    )


def build_record_source(records_path: Path | str | None = None) -> RecordSource:
    """Read records from a JSONL file when given one, otherwise from the HTTP source."""

    if records_path is not None:
        return StaticRecordSource.from_jsonl(records_path)
    return HttpRecordSource(get_http_source_config())


def create_schema_version(
    definition: SchemaDefinitionPayload,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> SchemaVersion:
    registry = build_registry(unit_of_work_factory)
    return registry.create_version(
        definition.entity_type,
        definition.definitions(),
        backward_compatible_with=definition.backward_compatible_with,
        description=definition.description,
    )


def register_mapping(
    connector: ConnectorConfig,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> MappingSet:
    """Validate ``connector``'s rules and store them as its mapping set.

    Priority collisions with other connectors surface here, before any sync.
    """

    registry = build_registry(unit_of_work_factory)
    return registry.register_mapping(connector)


def sync_connector(  # noqa: PLR0913
    connector: ConnectorConfig,
    *,
    source: RecordSource | None = None,
    records_path: Path | str | None = None,
    overrides: Mapping[str, str] | None = None,
    initiated_by: str | None = None,
    handle: SyncRun | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
) -> SyncResult:
    """Run one sync of ``connector`` using the configured adapters.

    The connector must have been registered with ``register_mapping`` using
    the same rules. Rate limits are shared by every sync in this process.
    """

    ensure_started()
    config = sync_config or get_sync_config()
    effective_uow = unit_of_work_factory or SqlAlchemySyncUnitOfWork
    effective_source = source or build_record_source(records_path)
    orchestrator = SyncOrchestrator(
        effective_uow,
        effective_source,
        registry=SchemaRegistry(effective_uow),
        max_workers=config.max_workers,
        cas_retries=config.cas_retries,
        rate_limiters=_rate_limiters,
        require_registered_mapping=True,
    )
    request = SyncRequest(overrides=dict(overrides or {}), initiated_by=initiated_by)
    log.info(
        "Starting sync: connector=%s, entity_type=%s, schema=v%s, overrides=%s",
        connector.id,
        connector.entity_type,
        connector.schema_version,
        len(request.overrides),
    )

    result = asyncio.run(orchestrator.run(connector, request, handle=handle))
    log.info(
        f"Finished sync of {connector.id}: status={result.status}, "
        f"total={result.total}, job={result.import_job_id}"
    )
    return result
