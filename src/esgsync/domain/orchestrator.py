"""Sync orchestrator: one connector run from fetch to persisted outcomes.

A run validates the connector's mapping, pulls records page by page through
the execution coordinator, maps each record and lets the conflict policy
decide what happens to the staging area. Every fetched record yields exactly
one persisted outcome.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from functools import partial
from logging import getLogger
from types import MappingProxyType
from typing import TYPE_CHECKING
from uuid import uuid4

from esgsync.domain.clock import SystemClock
from esgsync.domain.conflict import ConflictResolutionPolicy, DecisionAction, merge_attributes
from esgsync.domain.errors import ConcurrentModificationError, PermanentTransportError
from esgsync.domain.execution import ExecutionCoordinator, SlidingWindowRateLimiter, classify
from esgsync.domain.model import (
    CallStatus,
    JobStatus,
    Provenance,
    StagedEntity,
    SyncJob,
    SyncOutcomeRecord,
    SyncResult,
    SyncStatus,
)
from esgsync.domain.schema_registry import SchemaRegistry
from esgsync.domain.transformation import TransformationEngine

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, MutableMapping

    from esgsync.domain.clock import Clock
    from esgsync.domain.conflict import Decision
    from esgsync.domain.execution import FailureKind
    from esgsync.domain.model import (
        CallAttempt,
        ConnectorConfig,
        RawRecord,
        SchemaVersion,
        StagingPolicy,
    )
    from esgsync.domain.ports.fetching import RecordPage, RecordSource
    from esgsync.domain.ports.unit_of_work import SyncUnitOfWork
    from esgsync.domain.transformation import MappingResult

log = getLogger(__name__)

DEFAULT_MAX_WORKERS = 8
DEFAULT_CAS_RETRIES = 3
AUTO_APPROVER = "auto-approve"


@dataclass(slots=True, frozen=True)
class SyncRequest:
    """Per-run inputs supplied by the caller.

    ``overrides`` maps an external id to the administrator who approved
    overwriting that record's approved staging data.
    """

    overrides: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    initiated_by: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    def override_for(self, external_id: str) -> str | None:
        return self.overrides.get(external_id)


class SyncRun:
    """Cancellation handle for an in-flight run.

    ``cancel`` may be called from any thread (for example a signal handler);
    the run stops pulling records, lets in-flight work finish and ends as
    ``Cancelled``.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


@dataclass(slots=True)
class _RunContext:
    connector: ConnectorConfig
    request: SyncRequest
    schema: SchemaVersion
    staging: StagingPolicy
    result: SyncResult
    locks: dict[str, asyncio.Lock] = field(default_factory=dict[str, asyncio.Lock])
    skipped: int = 0

    def lock_for(self, external_id: str) -> asyncio.Lock:
        lock = self.locks.get(external_id)
        if lock is None:
            lock = self.locks[external_id] = asyncio.Lock()
        return lock


class SyncOrchestrator:
    """Run connector syncs against the staging area.

    Rate limiters are kept per connector id for the orchestrator's lifetime,
    so consecutive runs of one connector share a single call budget. Pass
    ``rate_limiters`` to share them between orchestrators as well. With
    ``require_registered_mapping`` a run only starts when the connector's
    rules match the mapping set registered for it.
    """

    def __init__(  # noqa: PLR0913
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        source: RecordSource,
        *,
        clock: Clock | None = None,
        registry: SchemaRegistry | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cas_retries: int = DEFAULT_CAS_RETRIES,
        engine: TransformationEngine | None = None,
        policy: ConflictResolutionPolicy | None = None,
        classify: Callable[[BaseException], FailureKind] = classify,
        rate_limiters: MutableMapping[str, SlidingWindowRateLimiter] | None = None,
        require_registered_mapping: bool = False,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if cas_retries < 0:
            raise ValueError("cas_retries must be non-negative")
        self._unit_of_work_factory = unit_of_work_factory
        self._source = source
        self._clock = clock or SystemClock()
        self._registry = registry or SchemaRegistry(unit_of_work_factory, clock=self._clock)
        self._engine = engine or TransformationEngine()
        self._policy = policy or ConflictResolutionPolicy()
        self._classify = classify
        self._rate_limiters = rate_limiters if rate_limiters is not None else {}
        self.max_workers = max_workers
        self.cas_retries = cas_retries
        self.require_registered_mapping = require_registered_mapping

    def run_sync(
        self,
        connector: ConnectorConfig,
        request: SyncRequest | None = None,
        *,
        handle: SyncRun | None = None,
    ) -> SyncResult:
        return asyncio.run(self.run(connector, request, handle=handle))

    async def run(
        self,
        connector: ConnectorConfig,
        request: SyncRequest | None = None,
        *,
        handle: SyncRun | None = None,
    ) -> SyncResult:
        """Synchronise ``connector`` once and return the aggregate result.

        Raises ``MappingConfigurationError`` before anything is fetched when the
        connector's mapping does not fit its schema; the job is still recorded
        as ``Failed``. Any other exception escaping record processing also
        marks the job ``Failed`` before it propagates.
        """

        request = request or SyncRequest()
        handle = handle or SyncRun()
        result = SyncResult(
            import_job_id=str(uuid4()),
            correlation_id=str(uuid4()),
            connector_id=connector.id,
            started_at=self._clock.now(),
        )
        log.info(
            "Starting sync of connector %s (job %s, correlation %s)",
            connector.id,
            result.import_job_id,
            result.correlation_id,
        )

        if not connector.enabled:
            log.info("Connector %s is disabled; skipping sync", connector.id)
            result.status = JobStatus.SKIPPED
            result.completed_at = self._clock.now()
            self._save_job(SyncJob.from_result(result, initiated_by=request.initiated_by))
            return result

        self._save_job(SyncJob.from_result(result, initiated_by=request.initiated_by))
        try:
            schema = self._registry.validate_mapping(connector)
            if self.require_registered_mapping:
                self._registry.require_registered(connector)
            staging = self._registry.staging_policy(connector.entity_type)
        except Exception as exc:
            self._finish(result, JobStatus.FAILED, error_summary=str(exc))
            raise

        context = _RunContext(
            connector=connector,
            request=request,
            schema=schema,
            staging=staging,
            result=result,
        )
        try:
            page_error = await self._pull_and_process(context, handle)
        except Exception as exc:
            log.exception("Sync of connector %s aborted", connector.id)
            self._finish(result, JobStatus.FAILED, error_summary=_describe_crash(exc))
            raise

        summary = page_error
        if handle.cancelled:
            status = JobStatus.CANCELLED
            if context.skipped:
                summary = f"Cancelled with {context.skipped} fetched record(s) left unprocessed"
        elif page_error is not None:
            status = JobStatus.FAILED
        elif result.failed_count or result.rejected_count:
            status = JobStatus.COMPLETED_WITH_ERRORS
        else:
            status = JobStatus.COMPLETED
        self._finish(result, status, error_summary=summary)
        return result

    async def _pull_and_process(self, context: _RunContext, handle: SyncRun) -> str | None:
        connector = context.connector
        correlation_id = context.result.correlation_id
        coordinator = ExecutionCoordinator(
            connector,
            clock=self._clock,
            classify=self._classify,
            rate_limiter=self._rate_limiter_for(connector),
            on_attempt=self._save_attempt,
        )
        workers = asyncio.Semaphore(self.max_workers)
        page_error: str | None = None
        cursor: str | None = None

        async with asyncio.TaskGroup() as tasks:
            while not handle.cancelled:
                call = partial(
                    self._source.fetch_page,
                    connector,
                    correlation_id=correlation_id,
                    cursor=cursor,
                )
                outcome = await coordinator.execute(correlation_id, call)
                if outcome.status is not CallStatus.SUCCESS or outcome.value is None:
                    page_error = _describe_page_error(outcome.error)
                    log.error("Fetching records for %s failed: %s", connector.id, page_error)
                    break
                page: RecordPage = outcome.value
                records = list(page.records)
                for index, record in enumerate(records):
                    if handle.cancelled:
                        context.skipped += len(records) - index
                        break
                    await workers.acquire()
                    tasks.create_task(self._process_with_slot(context, record, workers))
                if page.next_cursor is None:
                    break
                cursor = page.next_cursor

        if handle.cancelled:
            log.info(
                "Sync of connector %s cancelled; %s fetched record(s) left unprocessed",
                connector.id,
                context.skipped,
            )
        return page_error

    def _rate_limiter_for(self, connector: ConnectorConfig) -> SlidingWindowRateLimiter | None:
        limit = connector.rate_limit_per_minute
        if limit is None:
            return None
        limiter = self._rate_limiters.get(connector.id)
        if limiter is None or limiter.limit != limit:
            limiter = SlidingWindowRateLimiter(limit, clock=self._clock)
            self._rate_limiters[connector.id] = limiter
        return limiter

    async def _process_with_slot(
        self,
        context: _RunContext,
        record: RawRecord,
        workers: asyncio.Semaphore,
    ) -> None:
        try:
            async with context.lock_for(record.external_id):
                outcome = self._process_record(context, record)
            context.result.count(outcome)
        finally:
            workers.release()

    def _process_record(self, context: _RunContext, record: RawRecord) -> SyncOutcomeRecord:
        try:
            mapping = self._engine.map(record, context.connector.mapping_rules, context.schema)
            return self._decide_and_write(context, record, mapping)
        except Exception as exc:
            log.exception("Processing record %s failed", record.external_id)
            outcome = self._outcome(
                context,
                record,
                status=SyncStatus.FAILED,
                rejection_reason=f"Processing error: {exc}",
            )
            with self._unit_of_work_factory() as uow:
                uow.repositories.outcomes.add(outcome)
                uow.commit()
            return outcome

    def _decide_and_write(
        self,
        context: _RunContext,
        record: RawRecord,
        mapping: MappingResult,
    ) -> SyncOutcomeRecord:
        connector = context.connector
        override = context.request.override_for(record.external_id)
        for attempt in range(self.cas_retries + 1):
            with self._unit_of_work_factory() as uow:
                staged = uow.repositories.staged_entities
                existing = staged.get(connector.entity_type, record.external_id)
                decision = self._policy.decide(mapping, existing, override, schema=context.schema)
                entity = self._apply(context, record, mapping, decision, existing)

                if decision.action is DecisionAction.CREATE:
                    written = staged.add(entity)
                elif decision.action is DecisionAction.UPDATE and existing is not None:
                    written = staged.compare_and_set(entity, expected_revision=existing.revision)
                else:
                    written = True

                if not written:
                    uow.rollback()
                    log.info(
                        "Staged %s %s changed concurrently; re-deciding (attempt %s)",
                        connector.entity_type,
                        record.external_id,
                        attempt + 1,
                    )
                    continue

                outcome = self._outcome(
                    context,
                    record,
                    status=decision.status,
                    rejection_reason=decision.rejection_reason,
                    decision=decision,
                    entity=entity or existing,
                )
                uow.repositories.outcomes.add(outcome)
                uow.commit()
            self._log_decision(record, decision)
            return outcome

        raise ConcurrentModificationError(
            f"Staged {connector.entity_type} {record.external_id} kept changing during sync"
        )

    def _apply(
        self,
        context: _RunContext,
        record: RawRecord,
        mapping: MappingResult,
        decision: Decision,
        existing: StagedEntity | None,
    ) -> StagedEntity | None:
        if not decision.writes:
            return None
        connector = context.connector
        now = self._clock.now()
        provenance = Provenance(
            connector.source_system,
            record.extracted_at or now,
            context.result.import_job_id,
            connector.schema_version,
        )
        if existing is None:
            approved = context.staging.auto_approve
            entity = StagedEntity(
                entity_type=connector.entity_type,
                external_id=record.external_id,
                provenance=provenance,
                approved=approved,
                approved_by=AUTO_APPROVER if approved else None,
                created_at=now,
            )
        else:
            entity = existing.snapshot()
            entity.provenance = provenance
            entity.updated_at = now

        kept = merge_attributes(
            entity,
            mapping.attributes,
            mapping.sources,
            connector_id=connector.id,
        )
        if kept:
            log.debug(
                "Kept higher-priority values of %s on %s", ", ".join(kept), record.external_id
            )
        entity.vendor_extensions.update(mapping.extensions)
        return entity

    def _outcome(  # noqa: PLR0913
        self,
        context: _RunContext,
        record: RawRecord,
        *,
        status: SyncStatus,
        rejection_reason: str | None = None,
        decision: Decision | None = None,
        entity: StagedEntity | None = None,
    ) -> SyncOutcomeRecord:
        outcome = SyncOutcomeRecord(
            connector_id=context.connector.id,
            import_job_id=context.result.import_job_id,
            correlation_id=context.result.correlation_id,
            external_id=record.external_id,
            status=status,
            rejection_reason=rejection_reason,
            staged_entity_id=entity.id if entity is not None else None,
            created=decision is not None and decision.action is DecisionAction.CREATE,
            raw_data=dict(record.fields),
            recorded_at=self._clock.now(),
        )
        if decision is not None:
            outcome.conflict_resolution = decision.conflict_resolution
            outcome.override_approved_by = decision.override_approved_by
        return outcome

    def _log_decision(self, record: RawRecord, decision: Decision) -> None:
        match decision.status:
            case SyncStatus.CONFLICT_PRESERVED:
                log.info("Preserved approved data for %s", record.external_id)
            case SyncStatus.REJECTED:
                log.info("Rejected %s: %s", record.external_id, decision.rejection_reason)
            case _ if decision.override_approved_by:
                log.info(
                    "Overwrote approved %s (override by %s)",
                    record.external_id,
                    decision.override_approved_by,
                )
            case _:
                log.debug("Staged %s (%s)", record.external_id, decision.action)

    def _save_attempt(self, attempt: CallAttempt) -> None:
        with self._unit_of_work_factory() as uow:
            uow.repositories.call_attempts.add(attempt)
            uow.commit()

    def _save_job(self, job: SyncJob) -> None:
        with self._unit_of_work_factory() as uow:
            uow.repositories.jobs.add(job)
            uow.commit()

    def _finish(
        self,
        result: SyncResult,
        status: JobStatus,
        *,
        error_summary: str | None = None,
    ) -> None:
        result.status = status
        result.completed_at = self._clock.now()
        result.error_summary = error_summary
        with self._unit_of_work_factory() as uow:
            jobs = uow.repositories.jobs
            job = jobs.get(result.import_job_id)
            if job is None:
                job = SyncJob.from_result(result)
            else:
                job.apply(result)
            jobs.add(job)
            uow.commit()
        log.info(
            "Sync of %s finished as %s: %s imported, %s updated, %s preserved, "
            "%s rejected, %s failed",
            result.connector_id,
            status,
            result.imported_count,
            result.updated_count,
            result.conflicts_preserved_count,
            result.rejected_count,
            result.failed_count,
        )


def _describe_page_error(error: BaseException | None) -> str:
    if error is None:
        return "Record source returned no page"
    if isinstance(error, PermanentTransportError) and error.connector_wide:
        return f"Connector-wide failure: {error}"
    return f"{type(error).__name__}: {error}"


def _describe_crash(error: BaseException) -> str:
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    return f"Sync aborted: {type(error).__name__}: {error}"
