"""In-memory record source, used for file imports and tests."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from esgsync.adapters.payloads import parse_records_jsonl
from esgsync.domain.ports.fetching import RecordPage

if TYPE_CHECKING:
    from collections.abc import Iterable

    from esgsync.domain.model import ConnectorConfig, RawRecord

DEFAULT_PAGE_SIZE = 100


@dataclass(slots=True)
class StaticRecordSource:
    """Serve a fixed list of records in pages; the cursor is the next offset."""

    records: tuple[RawRecord, ...]
    page_size: int = DEFAULT_PAGE_SIZE
    endpoint: str = "static"

    def __post_init__(self) -> None:
        self.records = tuple(self.records)
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")

    @classmethod
    def from_jsonl(
        cls, path: Path | str, *, page_size: int = DEFAULT_PAGE_SIZE
    ) -> StaticRecordSource:
        file_path = Path(path)
        with file_path.open(encoding="utf-8") as handle:
            records = parse_records_jsonl(handle)
        return cls(tuple(records), page_size=page_size, endpoint=str(file_path))

    @classmethod
    def of(
        cls, records: Iterable[RawRecord], *, page_size: int = DEFAULT_PAGE_SIZE
    ) -> StaticRecordSource:
        return cls(tuple(records), page_size=page_size)

    async def fetch_page(
        self,
        connector: ConnectorConfig,
        *,
        correlation_id: str,
        cursor: str | None = None,
    ) -> RecordPage:
        _ = (connector, correlation_id)
        start = int(cursor) if cursor else 0
        end = start + self.page_size
        next_cursor = str(end) if end < len(self.records) else None
        return RecordPage(
            records=self.records[start:end],
            next_cursor=next_cursor,
            method="READ",
            endpoint=self.endpoint,
        )


if TYPE_CHECKING:
    from esgsync.domain.ports.fetching import RecordSource

    _source_check: RecordSource = StaticRecordSource(())
