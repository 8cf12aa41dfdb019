from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import fields
from functools import partial
from pathlib import Path
from signal import SIGINT, getsignal, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from esgsync.adapters.payloads import parse_connector, parse_schema_definition
from esgsync.app import (
    build_monitor,
    build_registry,
    build_staging_service,
    create_schema_version,
    register_mapping,
    sync_connector,
)
from esgsync.config import ConfigurationError, configure_logging
from esgsync.domain.errors import MappingConfigurationError
from esgsync.domain.model import EntityType, JobStatus
from esgsync.domain.orchestrator import SyncRun

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from types import FrameType

    from esgsync.domain.model import CallAttempt, SyncJob, SyncOutcomeRecord

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise external ESG data into staging")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    schema = subparsers.add_parser("schema", help="Canonical schema management")
    schema_sub = schema.add_subparsers(dest="schema_command", required=True)
    schema_create = schema_sub.add_parser("create", help="Create the next schema version")
    schema_create.add_argument(
        "--file",
        type=Path,
        required=True,
        help="JSON schema definition (entityType, attributes, backwardCompatibleWith)",
    )
    schema_list = schema_sub.add_parser("list", help="List schema versions of an entity type")
    schema_list.add_argument("--entity-type", type=EntityType, required=True)
    schema_deprecate = schema_sub.add_parser("deprecate", help="Deprecate a schema version")
    schema_deprecate.add_argument("--entity-type", type=EntityType, required=True)
    schema_deprecate.add_argument("--version", type=int, required=True)
    schema_policy = schema_sub.add_parser(
        "auto-approve",
        help="Set whether newly staged entities of a type start out approved",
    )
    schema_policy.add_argument("--entity-type", type=EntityType, required=True)
    schema_policy.add_argument(
        "--enable",
        action=argparse.BooleanOptionalAction,
        required=True,
        help="Auto-approve new entities (--enable) or wait for review (--no-enable)",
    )

    mapping = subparsers.add_parser("mapping", help="Connector mapping registration")
    mapping_sub = mapping.add_subparsers(dest="mapping_command", required=True)
    mapping_register = mapping_sub.add_parser(
        "register",
        help="Validate a connector's mapping rules and register them for syncing",
    )
    mapping_register.add_argument(
        "--connector",
        type=Path,
        required=True,
        help="JSON connector configuration file",
    )

    sync = subparsers.add_parser("sync", help="Run one connector sync")
    sync.add_argument(
        "--connector",
        type=Path,
        required=True,
        help="JSON connector configuration file",
    )
    sync.add_argument(
        "--records",
        type=Path,
        help="JSONL file of raw records (defaults to the configured HTTP source)",
    )
    sync.add_argument(
        "--override",
        action="append",
        default=[],
        metavar="EXTERNAL_ID=ADMIN",
        help="Allow ADMIN-approved overwrite of approved data for EXTERNAL_ID",
    )
    sync.add_argument("--initiated-by", type=str, help="Who started this run")

    for name, help_text in (
        ("history", "Recent outcomes of a connector"),
        ("conflicts", "Outcomes that preserved approved data"),
        ("rejected", "Outcomes rejected during mapping"),
    ):
        outcome_parser = subparsers.add_parser(name, help=help_text)
        outcome_parser.add_argument("--connector-id", type=str, required=True)
        outcome_parser.add_argument("--limit", type=int)

    jobs = subparsers.add_parser("jobs", help="Search sync jobs")
    jobs.add_argument("--connector-id", type=str)
    jobs.add_argument("--status", type=JobStatus)
    jobs.add_argument("--limit", type=int)

    job = subparsers.add_parser("job", help="Show one job with its outcomes and call log")
    job.add_argument("job_id", type=str)

    approvals = subparsers.add_parser("approvals", help="Override approval audit trail")
    approvals.add_argument("--connector-id", type=str)
    approvals.add_argument("--approved-by", type=str)
    approvals.add_argument("--limit", type=int)

    stats = subparsers.add_parser("stats", help="Aggregate job and call statistics")
    stats.add_argument("--connector-id", type=str)

    approve = subparsers.add_parser("approve", help="Approve a staged entity")
    approve.add_argument("--entity-type", type=EntityType, required=True)
    approve.add_argument("--external-id", type=str, required=True)
    approve.add_argument("--by", dest="approved_by", type=str, required=True)

    return parser.parse_args(list(argv))


def _parse_overrides(values: Iterable[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for value in values:
        external_id, sep, admin = value.partition("=")
        if not sep or not external_id.strip() or not admin.strip():
            raise ValueError(f"Invalid override {value!r}; expected EXTERNAL_ID=ADMIN")
        overrides[external_id.strip()] = admin.strip()
    return overrides


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read {path}: {exc}") from exc


def _emit(lines: Iterable[str]) -> None:
    for line in lines:
        sys.stdout.write(f"{line}\n")


def _format_outcome(outcome: SyncOutcomeRecord, *, raw: bool = False) -> str:
    parts = [
        outcome.recorded_at.isoformat(),
        outcome.external_id,
        str(outcome.status),
        str(outcome.conflict_resolution),
    ]
    if outcome.rejection_reason:
        parts.append(outcome.rejection_reason)
    if raw:
        parts.append(json.dumps(outcome.raw_data, default=str, sort_keys=True))
    return "\t".join(parts)


def _format_job(job: SyncJob) -> str:
    return "\t".join(
        [
            job.job_id,
            job.connector_id,
            str(job.status),
            job.started_at.isoformat(),
            f"imported={job.imported_count}",
            f"updated={job.updated_count}",
            f"preserved={job.conflicts_preserved_count}",
            f"rejected={job.rejected_count}",
            f"failed={job.failed_count}",
        ]
    )


def _format_attempt(attempt: CallAttempt) -> str:
    return "\t".join(
        [
            f"#{attempt.attempt}",
            str(attempt.outcome),
            attempt.method or "-",
            attempt.endpoint or "-",
            str(attempt.status_code or "-"),
            f"{attempt.duration_ms:.1f}ms",
            attempt.error or "",
        ]
    )


def _cancel_run(handle: SyncRun, _signal_received: int, _frame: FrameType | None) -> None:
    log.info("Cancelling sync (Ctrl+C); waiting for in-flight records")
    handle.cancel()


def _run_sync(args: argparse.Namespace) -> int:
    connector = parse_connector(_read_text(args.connector))
    overrides = _parse_overrides(args.override)
    handle = SyncRun()
    previous = getsignal(SIGINT)
    signal(SIGINT, partial(_cancel_run, handle))
    try:
        result = sync_connector(
            connector,
            records_path=args.records,
            overrides=overrides,
            initiated_by=args.initiated_by,
            handle=handle,
        )
    finally:
        signal(SIGINT, previous)
    _emit(
        [
            f"job={result.import_job_id} correlation={result.correlation_id} "
            f"status={result.status}",
            f"imported={result.imported_count} updated={result.updated_count} "
            f"preserved={result.conflicts_preserved_count} rejected={result.rejected_count} "
            f"failed={result.failed_count}",
        ]
    )
    if result.error_summary:
        _emit([f"error={result.error_summary}"])
    return 1 if result.status is JobStatus.FAILED else 0


def _run_schema(args: argparse.Namespace) -> int:
    if args.schema_command == "create":
        definition = parse_schema_definition(_read_text(args.file))
        version = create_schema_version(definition)
        _emit([f"Created {version.entity_type} v{version.version_number}"])
        return 0

    registry = build_registry()
    if args.schema_command == "list":
        _emit(
            "\t".join(
                [
                    f"v{version.version_number}",
                    "deprecated" if version.is_deprecated else "active",
                    f"compatible_with={version.backward_compatible_with or '-'}",
                    ",".join(d.name for d in version.attribute_definitions),
                ]
            )
            for version in registry.list_versions(args.entity_type)
        )
    elif args.schema_command == "deprecate":
        version = registry.deprecate_version(args.entity_type, args.version)
        _emit([f"Deprecated {version.entity_type} v{version.version_number}"])
    elif args.schema_command == "auto-approve":
        policy = registry.set_auto_approve(args.entity_type, args.enable)
        _emit([f"{policy.entity_type} auto_approve={policy.auto_approve}"])
    else:
        raise ValueError(f"Unsupported schema command: {args.schema_command}")
    return 0


def _run_mapping(args: argparse.Namespace) -> int:
    if args.mapping_command != "register":
        raise ValueError(f"Unsupported mapping command: {args.mapping_command}")
    mapping_set = register_mapping(parse_connector(_read_text(args.connector)))
    _emit(
        [
            f"Registered {len(mapping_set.rules)} mapping rule(s) for {mapping_set.connector_id} "
            f"against {mapping_set.entity_type} v{mapping_set.schema_version}"
        ]
    )
    return 0


def _run_query(args: argparse.Namespace) -> int:
    monitor = build_monitor()
    match args.command:
        case "history":
            _emit(map(_format_outcome, monitor.get_sync_history(args.connector_id, args.limit)))
        case "conflicts":
            _emit(map(_format_outcome, monitor.get_conflicts(args.connector_id, args.limit)))
        case "rejected":
            _emit(
                _format_outcome(outcome, raw=True)
                for outcome in monitor.get_rejected(args.connector_id, args.limit)
            )
        case "jobs":
            jobs = monitor.search_jobs(
                connector_id=args.connector_id,
                status=args.status,
                limit=args.limit,
            )
            _emit(map(_format_job, jobs))
        case "job":
            details = monitor.get_job_details(args.job_id)
            if details is None:
                log.error("No job with id %s", args.job_id)
                return 1
            _emit([_format_job(details.job)])
            if details.job.error_summary:
                _emit([f"error={details.job.error_summary}"])
            _emit(map(_format_attempt, details.call_attempts))
            _emit(map(_format_outcome, details.outcomes))
        case "approvals":
            entries = monitor.get_approval_history(
                connector_id=args.connector_id,
                approved_by=args.approved_by,
                limit=args.limit,
            )
            _emit(
                f"{entry.timestamp.isoformat()}\t{entry.approved_by}\t{entry.connector_id}\t"
                f"{entry.details}"
                for entry in entries
            )
        case "stats":
            stats = monitor.get_statistics(args.connector_id)
            _emit(f"{field.name}={getattr(stats, field.name)}" for field in fields(stats))
        case _:
            raise ValueError(f"Unsupported command: {args.command}")
    return 0


def _run_approve(args: argparse.Namespace) -> int:
    entity = build_staging_service().approve_entity(
        args.entity_type, args.external_id, args.approved_by
    )
    _emit([f"{entity.entity_type} {entity.external_id} approved_by={entity.approved_by}"])
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        if parsed_args.command == "sync":
            exit_code = _run_sync(parsed_args)
        elif parsed_args.command == "schema":
            exit_code = _run_schema(parsed_args)
        elif parsed_args.command == "mapping":
            exit_code = _run_mapping(parsed_args)
        elif parsed_args.command == "approve":
            exit_code = _run_approve(parsed_args)
        else:
            exit_code = _run_query(parsed_args)
    except (ValueError, ConfigurationError, MappingConfigurationError):
        log.exception("Invalid configuration or arguments")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)

