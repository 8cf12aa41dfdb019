"""Per-record outcomes, job metadata and the call log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from .enums import ConflictResolution, JobStatus, SyncStatus

if TYPE_CHECKING:
    from .enums import AttemptOutcome


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False, kw_only=True)
class SyncOutcomeRecord:
    """What happened to one raw record during one run.

    ``raw_data`` keeps the record's fields as received so rejected and failed
    records can be diagnosed later.
    """

    connector_id: str
    import_job_id: str
    correlation_id: str
    external_id: str
    status: SyncStatus
    rejection_reason: str | None = None
    conflict_resolution: ConflictResolution = ConflictResolution.NONE
    override_approved_by: str | None = None
    staged_entity_id: UUID | None = None
    created: bool = False
    raw_data: dict[str, object] = field(default_factory=dict[str, object])
    id: UUID = field(default_factory=uuid4)
    recorded_at: datetime = field(default_factory=_utcnow)


@dataclass(eq=False, kw_only=True)
class CallAttempt:
    """One attempt of a coordinated external call."""

    connector_id: str
    correlation_id: str
    attempt: int
    outcome: AttemptOutcome
    duration_ms: float
    method: str | None = None
    endpoint: str | None = None
    status_code: int | None = None
    error: str | None = None
    recorded_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True, kw_only=True)
class SyncResult:
    """Aggregate of one orchestrator run, consumed by monitoring surfaces."""

    import_job_id: str
    correlation_id: str
    connector_id: str
    started_at: datetime
    status: JobStatus = JobStatus.RUNNING
    imported_count: int = 0
    updated_count: int = 0
    conflicts_preserved_count: int = 0
    rejected_count: int = 0
    failed_count: int = 0
    completed_at: datetime | None = None
    error_summary: str | None = None

    @property
    def total(self) -> int:
        return (
            self.imported_count
            + self.updated_count
            + self.conflicts_preserved_count
            + self.rejected_count
            + self.failed_count
        )

    def count(self, outcome: SyncOutcomeRecord) -> None:
        match outcome.status:
            case SyncStatus.SUCCESS if outcome.created:
                self.imported_count += 1
            case SyncStatus.SUCCESS:
                self.updated_count += 1
            case SyncStatus.CONFLICT_PRESERVED:
                self.conflicts_preserved_count += 1
            case SyncStatus.REJECTED:
                self.rejected_count += 1
            case SyncStatus.FAILED:
                self.failed_count += 1


@dataclass(eq=False, kw_only=True)
class SyncJob:
    """Persisted job metadata for one run."""

    job_id: str
    connector_id: str
    correlation_id: str
    status: JobStatus
    started_at: datetime
    initiated_by: str | None = None
    completed_at: datetime | None = None
    imported_count: int = 0
    updated_count: int = 0
    conflicts_preserved_count: int = 0
    rejected_count: int = 0
    failed_count: int = 0
    error_summary: str | None = None

    @property
    def total_records(self) -> int:
        return (
            self.imported_count
            + self.updated_count
            + self.conflicts_preserved_count
            + self.rejected_count
            + self.failed_count
        )

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def apply(self, result: SyncResult) -> None:
        """Copy status, counts and completion details from a run result."""

        self.status = result.status
        self.completed_at = result.completed_at
        self.imported_count = result.imported_count
        self.updated_count = result.updated_count
        self.conflicts_preserved_count = result.conflicts_preserved_count
        self.rejected_count = result.rejected_count
        self.failed_count = result.failed_count
        self.error_summary = result.error_summary

    @classmethod
    def from_result(cls, result: SyncResult, *, initiated_by: str | None = None) -> SyncJob:
        job = cls(
            job_id=result.import_job_id,
            connector_id=result.connector_id,
            correlation_id=result.correlation_id,
            status=result.status,
            started_at=result.started_at,
            initiated_by=initiated_by,
        )
        job.apply(result)
        return job
