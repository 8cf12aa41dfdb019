"""Synchronization defaults for connector runs."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_int

DEFAULT_MAX_WORKERS = 8
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_CAS_RETRIES = 3


@dataclass(frozen=True, slots=True)
class SyncConfig:
    max_workers: int = DEFAULT_MAX_WORKERS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    cas_retries: int = DEFAULT_CAS_RETRIES


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        max_workers=env_int("ESGSYNC_MAX_WORKERS", DEFAULT_MAX_WORKERS, minimum=1),
        history_limit=env_int("ESGSYNC_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT, minimum=1),
        cas_retries=env_int("ESGSYNC_CAS_RETRIES", DEFAULT_CAS_RETRIES, minimum=1),
    )
