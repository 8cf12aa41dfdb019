from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from esgsync.adapters.static import StaticRecordSource
from esgsync.domain.errors import MappingConfigurationError
from tests.helpers.sync import make_connector, make_record

if TYPE_CHECKING:
    from pathlib import Path

    from esgsync.domain.ports.fetching import RecordPage


def _fetch(source: StaticRecordSource, cursor: str | None = None) -> RecordPage:
    return asyncio.run(source.fetch_page(make_connector(), correlation_id="c", cursor=cursor))


def test_pages_advance_by_offset() -> None:
    source = StaticRecordSource.of([make_record(f"E-{n}") for n in range(5)], page_size=2)

    first = _fetch(source)
    second = _fetch(source, first.next_cursor)
    last = _fetch(source, second.next_cursor)

    assert [r.external_id for r in first.records] == ["E-0", "E-1"]
    assert first.next_cursor == "2"
    assert [r.external_id for r in second.records] == ["E-2", "E-3"]
    assert [r.external_id for r in last.records] == ["E-4"]
    assert last.next_cursor is None
    assert last.method == "READ"


def test_empty_source_serves_one_empty_page() -> None:
    page = _fetch(StaticRecordSource.of([]))

    assert list(page.records) == []
    assert page.next_cursor is None


def test_page_size_must_be_positive() -> None:
    with pytest.raises(ValueError, match="page_size"):
        StaticRecordSource.of([], page_size=0)


def test_from_jsonl_reads_records(tmp_path: Path) -> None:
    path = tmp_path / "records.jsonl"
    path.write_text(
        '{"externalId": "E-1", "fields": {"emp_id": "E-1"}}\n'
        '{"externalId": "E-2", "fields": {"emp_id": "E-2"}}\n',
        encoding="utf-8",
    )

    source = StaticRecordSource.from_jsonl(path)
    page = _fetch(source)

    assert [r.external_id for r in page.records] == ["E-1", "E-2"]
    assert page.endpoint == str(path)


def test_from_jsonl_rejects_malformed_lines(tmp_path: Path) -> None:
    path = tmp_path / "records.jsonl"
    path.write_text("not json\n", encoding="utf-8")

    with pytest.raises(MappingConfigurationError, match="Line 1"):
        StaticRecordSource.from_jsonl(path)
