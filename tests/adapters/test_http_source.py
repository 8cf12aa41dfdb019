from __future__ import annotations

import asyncio
from collections.abc import Callable  # noqa: TC003

import httpx
import pytest
from aiolimiter import AsyncLimiter  # noqa: TC002

from esgsync.adapters.http import CORRELATION_HEADER, HttpRecordSource, ThrottledClient
from esgsync.config import HttpSourceConfig, RateLimit
from esgsync.domain.errors import PermanentTransportError, TransientTransportError
from esgsync.domain.ports.fetching import RecordPage  # noqa: TC001
from tests.helpers.sync import make_connector

CONFIG = HttpSourceConfig(base_url="https://hr.example.com/api", page_size=2)


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[HttpSourceConfig, AsyncLimiter | None], ThrottledClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(config: HttpSourceConfig, limiter: AsyncLimiter | None) -> ThrottledClient:
        return ThrottledClient(
            config, limiter=limiter, transport=httpx.MockTransport(async_handler)
        )

    return factory


def _fetch(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    cursor: str | None = None,
    config: HttpSourceConfig = CONFIG,
) -> RecordPage:
    source = HttpRecordSource(config, client_factory=_make_client_factory(handler))
    return asyncio.run(
        source.fetch_page(make_connector(), correlation_id="corr-123", cursor=cursor)
    )


def test_fetch_page_sends_connector_context_and_parses_records() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "records": [
                    {"externalId": "E-1", "fields": {"emp_id": "E-1", "weekly_hours": 35}},
                    {"externalId": 2, "fields": {"emp_id": "2"}},
                ],
                "nextCursor": "page-2",
            },
        )

    page = _fetch(handler, cursor="page-1")

    request = seen[0]
    assert request.url.path == "/api/records"
    assert request.url.params["connectorId"] == "hr-system"
    assert request.url.params["entityType"] == "Employee"
    assert request.url.params["pageSize"] == "2"
    assert request.url.params["cursor"] == "page-1"
    assert request.headers[CORRELATION_HEADER] == "corr-123"
    assert [record.external_id for record in page.records] == ["E-1", "2"]
    assert page.records[0].fields["weekly_hours"] == 35
    assert page.next_cursor == "page-2"
    assert (page.method, page.endpoint, page.status_code) == ("GET", "/records", 200)


def test_first_page_omits_cursor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "cursor" not in request.url.params
        return httpx.Response(200, json={"records": []})

    page = _fetch(handler)

    assert list(page.records) == []
    assert page.next_cursor is None


@pytest.mark.parametrize("status", [500, 503, 429, 408])
def test_server_errors_and_throttling_are_transient(status: int) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "try later"})

    with pytest.raises(TransientTransportError, match="try later") as exc:
        _fetch(handler)

    assert exc.value.status_code == status


@pytest.mark.parametrize(("status", "connector_wide"), [(401, True), (403, True), (404, False)])
def test_client_errors_are_permanent(status: int, connector_wide: bool) -> None:  # noqa: FBT001
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    with pytest.raises(PermanentTransportError) as exc:
        _fetch(handler)

    assert exc.value.status_code == status
    assert exc.value.connector_wide is connector_wide
    assert exc.value.endpoint == "/records"


def test_unexpected_payload_is_permanent() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"records": [{"fields": {}}]})

    with pytest.raises(PermanentTransportError, match="payload"):
        _fetch(handler)


def test_timeouts_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientTransportError, match="Timed out"):
        _fetch(handler)


def test_network_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientTransportError, match="Network error"):
        _fetch(handler)


def test_configured_rate_limit_builds_a_shared_limiter() -> None:
    limiters: list[AsyncLimiter | None] = []
    config = HttpSourceConfig(
        base_url="https://hr.example.com", ratelimit=RateLimit(max_calls=5, per_seconds=1)
    )

    def factory(cfg: HttpSourceConfig, limiter: AsyncLimiter | None) -> ThrottledClient:
        limiters.append(limiter)
        return _make_client_factory(lambda _: httpx.Response(200, json={}))(cfg, limiter)

    source = HttpRecordSource(config, client_factory=factory)

    async def fetch_twice() -> None:
        await source.fetch_page(make_connector(), correlation_id="a")
        await source.fetch_page(make_connector(), correlation_id="b")

    asyncio.run(fetch_twice())

    assert limiters[0] is not None
    assert limiters[0] is limiters[1]
    assert limiters[0].max_rate == 5
