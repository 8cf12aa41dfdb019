"""Read-side queries over sync outcomes, jobs and the call log."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from esgsync.domain.model import AttemptOutcome, JobStatus, SyncStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime
    from uuid import UUID

    from esgsync.domain.model import CallAttempt, ConflictResolution, SyncJob, SyncOutcomeRecord
    from esgsync.domain.ports.unit_of_work import SyncUnitOfWork

DEFAULT_HISTORY_LIMIT = 100
OVERRIDE_APPROVED = "Override Approved"


@dataclass(slots=True, frozen=True)
class JobDetails:
    job: SyncJob
    outcomes: Sequence[SyncOutcomeRecord]
    call_attempts: Sequence[CallAttempt]


@dataclass(slots=True, frozen=True, kw_only=True)
class ApprovalHistoryEntry:
    """Who approved overwriting which approved record, and when."""

    timestamp: datetime
    approved_by: str
    connector_id: str
    correlation_id: str
    import_job_id: str
    external_id: str
    staged_entity_id: UUID | None
    conflict_resolution: ConflictResolution
    action: str = OVERRIDE_APPROVED

    @property
    def details(self) -> str:
        return f"Override approved for external ID: {self.external_id}"


@dataclass(slots=True, frozen=True, kw_only=True)
class SyncStatistics:
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    jobs_with_errors: int
    cancelled_jobs: int
    skipped_jobs: int
    total_records_processed: int
    total_records_succeeded: int
    total_records_failed: int
    total_calls: int
    successful_calls: int
    failed_calls: int
    average_job_duration_ms: float


class SyncMonitor:
    """Monitoring surface consumed by reporting and operator tooling."""

    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        *,
        default_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self.default_limit = default_limit

    def get_sync_history(
        self, connector_id: str, limit: int | None = None
    ) -> list[SyncOutcomeRecord]:
        """Most recent outcomes of ``connector_id``, newest first."""

        with self._unit_of_work_factory() as uow:
            return list(
                uow.repositories.outcomes.for_connector(connector_id, limit=self._limit(limit))
            )

    def get_conflicts(
        self, connector_id: str, limit: int | None = None
    ) -> list[SyncOutcomeRecord]:
        with self._unit_of_work_factory() as uow:
            return list(
                uow.repositories.outcomes.for_connector(
                    connector_id,
                    limit=self._limit(limit),
                    status=SyncStatus.CONFLICT_PRESERVED,
                )
            )

    def get_rejected(
        self, connector_id: str, limit: int | None = None
    ) -> list[SyncOutcomeRecord]:
        with self._unit_of_work_factory() as uow:
            return list(
                uow.repositories.outcomes.for_connector(
                    connector_id,
                    limit=self._limit(limit),
                    status=SyncStatus.REJECTED,
                )
            )

    def search_jobs(
        self,
        *,
        connector_id: str | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[SyncJob]:
        with self._unit_of_work_factory() as uow:
            return list(
                uow.repositories.jobs.search(
                    connector_id=connector_id,
                    status=status,
                    limit=self._limit(limit),
                )
            )

    def get_job_details(self, job_id: str) -> JobDetails | None:
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            job = repositories.jobs.get(job_id)
            if job is None:
                return None
            return JobDetails(
                job=job,
                outcomes=list(repositories.outcomes.for_job(job_id)),
                call_attempts=list(
                    repositories.call_attempts.for_correlation_id(job.correlation_id)
                ),
            )

    def get_call_log(self, correlation_id: str) -> list[CallAttempt]:
        with self._unit_of_work_factory() as uow:
            return list(uow.repositories.call_attempts.for_correlation_id(correlation_id))

    def get_approval_history(
        self,
        *,
        connector_id: str | None = None,
        approved_by: str | None = None,
        limit: int | None = None,
    ) -> list[ApprovalHistoryEntry]:
        """Outcomes that overwrote approved data, newest first."""

        with self._unit_of_work_factory() as uow:
            outcomes = uow.repositories.outcomes.overrides(
                connector_id=connector_id,
                approved_by=approved_by,
                limit=self._limit(limit),
            )
            entries = [
                ApprovalHistoryEntry(
                    timestamp=outcome.recorded_at,
                    approved_by=outcome.override_approved_by,
                    connector_id=outcome.connector_id,
                    correlation_id=outcome.correlation_id,
                    import_job_id=outcome.import_job_id,
                    external_id=outcome.external_id,
                    staged_entity_id=outcome.staged_entity_id,
                    conflict_resolution=outcome.conflict_resolution,
                )
                for outcome in outcomes
                if outcome.override_approved_by
            ]
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries

    def get_statistics(
        self,
        connector_id: str | None = None,
        *,
        limit: int | None = None,
    ) -> SyncStatistics:
        with self._unit_of_work_factory() as uow:
            repositories = uow.repositories
            jobs = list(
                repositories.jobs.search(connector_id=connector_id, limit=self._limit(limit))
            )
            attempts = list(
                repositories.call_attempts.search(
                    connector_id=connector_id, limit=self._limit(limit)
                )
            )

        durations = [job.duration_ms for job in jobs if job.duration_ms is not None]
        return SyncStatistics(
            total_jobs=len(jobs),
            completed_jobs=_count_status(jobs, JobStatus.COMPLETED),
            failed_jobs=_count_status(jobs, JobStatus.FAILED),
            jobs_with_errors=_count_status(jobs, JobStatus.COMPLETED_WITH_ERRORS),
            cancelled_jobs=_count_status(jobs, JobStatus.CANCELLED),
            skipped_jobs=_count_status(jobs, JobStatus.SKIPPED),
            total_records_processed=sum(job.total_records for job in jobs),
            total_records_succeeded=sum(job.imported_count + job.updated_count for job in jobs),
            total_records_failed=sum(job.failed_count for job in jobs),
            total_calls=len(attempts),
            successful_calls=sum(1 for a in attempts if a.outcome == AttemptOutcome.SUCCEEDED),
            failed_calls=sum(1 for a in attempts if a.outcome != AttemptOutcome.SUCCEEDED),
            average_job_duration_ms=sum(durations) / len(durations) if durations else 0.0,
        )

    def _limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        if limit < 1:
            raise ValueError("limit must be positive")
        return limit


def _count_status(jobs: Sequence[SyncJob], status: JobStatus) -> int:
    return sum(1 for job in jobs if job.status == status)
