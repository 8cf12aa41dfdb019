from __future__ import annotations

from datetime import timedelta

import pytest

from esgsync.domain.model import (
    AttemptOutcome,
    CallAttempt,
    ConflictResolution,
    JobStatus,
    SyncJob,
    SyncOutcomeRecord,
    SyncStatus,
)
from esgsync.domain.monitoring import OVERRIDE_APPROVED, SyncMonitor
from esgsync.domain.orchestrator import SyncOrchestrator, SyncRequest
from tests.helpers.sync import (
    START,
    FakeClock,
    FakeRecordSource,
    FakeSyncUnitOfWorkFactory,
    make_connector,
    make_record,
    make_staged_entity,
)


@pytest.fixture
def monitor(fake_uow: FakeSyncUnitOfWorkFactory) -> SyncMonitor:
    return SyncMonitor(fake_uow, default_limit=50)


def _outcome(
    external_id: str,
    status: SyncStatus,
    *,
    connector_id: str = "hr-system",
    minutes: int = 0,
    **kwargs: object,
) -> SyncOutcomeRecord:
    return SyncOutcomeRecord(
        connector_id=connector_id,
        import_job_id="job-1",
        correlation_id="corr-1",
        external_id=external_id,
        status=status,
        recorded_at=START + timedelta(minutes=minutes),
        **kwargs,  # type: ignore[arg-type]
    )


def _job(job_id: str, status: JobStatus, *, minutes: int, **counts: int) -> SyncJob:
    return SyncJob(
        job_id=job_id,
        connector_id="hr-system",
        correlation_id=f"corr-{job_id}",
        status=status,
        started_at=START + timedelta(minutes=minutes),
        completed_at=START + timedelta(minutes=minutes, seconds=2),
        **counts,
    )


def test_history_is_newest_first_and_limited(
    fake_uow: FakeSyncUnitOfWorkFactory, monitor: SyncMonitor
) -> None:
    outcomes = fake_uow.repositories.outcomes
    for minute, external_id in enumerate(["E-1", "E-2", "E-3"]):
        outcomes.add(_outcome(external_id, SyncStatus.SUCCESS, minutes=minute))
    outcomes.add(_outcome("X-1", SyncStatus.SUCCESS, connector_id="payroll"))

    history = monitor.get_sync_history("hr-system", limit=2)

    assert [o.external_id for o in history] == ["E-3", "E-2"]


def test_conflicts_and_rejections_are_filtered(
    fake_uow: FakeSyncUnitOfWorkFactory, monitor: SyncMonitor
) -> None:
    outcomes = fake_uow.repositories.outcomes
    outcomes.add(_outcome("E-1", SyncStatus.SUCCESS))
    outcomes.add(
        _outcome(
            "E-2",
            SyncStatus.CONFLICT_PRESERVED,
            conflict_resolution=ConflictResolution.PRESERVED_MANUAL,
        )
    )
    outcomes.add(_outcome("E-3", SyncStatus.REJECTED, rejection_reason="missing"))

    assert [o.external_id for o in monitor.get_conflicts("hr-system")] == ["E-2"]
    assert [o.external_id for o in monitor.get_rejected("hr-system")] == ["E-3"]


def test_limit_must_be_positive(monitor: SyncMonitor) -> None:
    with pytest.raises(ValueError, match="positive"):
        monitor.get_sync_history("hr-system", limit=0)


def test_search_jobs_filters_by_status(
    fake_uow: FakeSyncUnitOfWorkFactory, monitor: SyncMonitor
) -> None:
    jobs = fake_uow.repositories.jobs
    jobs.add(_job("a", JobStatus.COMPLETED, minutes=0))
    jobs.add(_job("b", JobStatus.FAILED, minutes=1))
    jobs.add(_job("c", JobStatus.COMPLETED, minutes=2))

    completed = monitor.search_jobs(status=JobStatus.COMPLETED)

    assert [job.job_id for job in completed] == ["c", "a"]
    assert monitor.get_job_details("missing") is None


def test_statistics_aggregate_jobs_and_calls(
    fake_uow: FakeSyncUnitOfWorkFactory, monitor: SyncMonitor
) -> None:
    jobs = fake_uow.repositories.jobs
    jobs.add(_job("a", JobStatus.COMPLETED, minutes=0, imported_count=3, updated_count=1))
    jobs.add(_job("b", JobStatus.COMPLETED_WITH_ERRORS, minutes=1, failed_count=2))
    jobs.add(_job("c", JobStatus.SKIPPED, minutes=2))
    attempts = fake_uow.repositories.call_attempts
    for outcome in (AttemptOutcome.SUCCEEDED, AttemptOutcome.TRANSIENT_FAILURE):
        attempts.add(
            CallAttempt(
                connector_id="hr-system",
                correlation_id="corr-a",
                attempt=1,
                outcome=outcome,
                duration_ms=12.0,
            )
        )

    stats = monitor.get_statistics("hr-system")

    assert stats.total_jobs == 3
    assert stats.completed_jobs == 1
    assert stats.jobs_with_errors == 1
    assert stats.skipped_jobs == 1
    assert stats.total_records_processed == 6
    assert stats.total_records_succeeded == 4
    assert stats.total_records_failed == 2
    assert (stats.total_calls, stats.successful_calls, stats.failed_calls) == (2, 1, 1)
    assert stats.average_job_duration_ms == pytest.approx(2000)


def test_job_details_and_approval_history_after_override_run(
    fake_uow: FakeSyncUnitOfWorkFactory, monitor: SyncMonitor, clock: FakeClock
) -> None:
    fake_uow.seed_schema()
    fake_uow.staged.put(make_staged_entity("E-1", approved=True))
    orchestrator = SyncOrchestrator(
        fake_uow,
        FakeRecordSource([[make_record("E-1"), make_record("E-2")]]),
        clock=clock,
    )

    result = orchestrator.run_sync(make_connector(), SyncRequest(overrides={"E-1": "admin"}))

    details = monitor.get_job_details(result.import_job_id)
    assert details is not None
    assert details.job.status is JobStatus.COMPLETED
    assert len(details.outcomes) == 2
    assert len(details.call_attempts) == 1
    assert monitor.get_call_log(result.correlation_id) == list(details.call_attempts)

    history = monitor.get_approval_history(connector_id="hr-system")
    assert len(history) == 1
    entry = history[0]
    assert entry.approved_by == "admin"
    assert entry.external_id == "E-1"
    assert entry.import_job_id == result.import_job_id
    assert entry.action == OVERRIDE_APPROVED
    assert entry.details == "Override approved for external ID: E-1"
    assert monitor.get_approval_history(approved_by="someone-else") == []
