"""Ports for fetching raw records from external systems."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from esgsync.domain.model import ConnectorConfig, RawRecord


@dataclass(slots=True)
class RecordPage:
    """One page of raw records plus a description of the call that produced it."""

    records: Sequence[RawRecord] = field(default_factory=tuple)
    next_cursor: str | None = None
    method: str | None = None
    endpoint: str | None = None
    status_code: int | None = None


@runtime_checkable
class RecordSource(Protocol):
    """Injected fetch capability; every page is a single external call.

    Sources raise ``TransientTransportError`` or ``PermanentTransportError`` so
    the execution coordinator can decide whether to retry.
    """

    async def fetch_page(
        self,
        connector: ConnectorConfig,
        *,
        correlation_id: str,
        cursor: str | None = None,
    ) -> RecordPage: ...


__all__ = ["RecordPage", "RecordSource"]
