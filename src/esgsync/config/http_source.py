"""Configuration for HTTP-backed record sources."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .env import env_float, require_env_var

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 100


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class HttpSourceConfig:
    base_url: str
    records_path: str = "/records"
    page_size: int = DEFAULT_PAGE_SIZE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = field(default=None)


def get_http_source_config(*, records_path: str | None = None) -> HttpSourceConfig:
    """Build the HTTP source configuration from ``ESGSYNC_SOURCE_*`` variables.

    The bearer token is optional; credential resolution belongs to the transport
    owner, so the value is forwarded as-is and never logged.
    """

    base_url = require_env_var("ESGSYNC_SOURCE_BASE_URL")
    token = os.getenv("ESGSYNC_SOURCE_TOKEN")
    headers = {"Authorization": f"Bearer {token}"} if token else None
    return HttpSourceConfig(
        base_url=base_url,
        records_path=records_path or os.getenv("ESGSYNC_SOURCE_RECORDS_PATH", "/records"),
        timeout_seconds=env_float(
            "ESGSYNC_SOURCE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, minimum=0.1
        ),
        default_headers=headers,
    )
