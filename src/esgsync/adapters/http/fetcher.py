"""Record source that pages through an external system's HTTP API."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from esgsync.domain.errors import PermanentTransportError, TransientTransportError
from esgsync.domain.ports.fetching import RecordPage

from .client import ThrottledClient, build_limiter
from .schema import ErrorResponse, RecordPageResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from aiolimiter import AsyncLimiter

    from esgsync.config import HttpSourceConfig
    from esgsync.domain.model import ConnectorConfig

log = getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
_TRANSIENT_STATUSES = frozenset(
    {HTTPStatus.REQUEST_TIMEOUT, HTTPStatus.TOO_MANY_REQUESTS}
)
_CONNECTOR_WIDE_STATUSES = frozenset({HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN})

type ClientFactory = Callable[[HttpSourceConfig, AsyncLimiter | None], ThrottledClient]


def _default_client_factory(
    config: HttpSourceConfig, limiter: AsyncLimiter | None
) -> ThrottledClient:
    return ThrottledClient(config, limiter=limiter)


@dataclass(slots=True)
class HttpRecordSource:
    """Fetch ``GET {records_path}`` pages of raw records for a connector.

    Each request carries the run's correlation id and the cursor returned by
    the previous page. Responses are classified into transient and permanent
    transport errors for the execution coordinator.
    """

    config: HttpSourceConfig
    client_factory: ClientFactory = field(default=_default_client_factory)
    _limiter: AsyncLimiter | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self._limiter = build_limiter(self.config)

    async def fetch_page(
        self,
        connector: ConnectorConfig,
        *,
        correlation_id: str,
        cursor: str | None = None,
    ) -> RecordPage:
        params: dict[str, str | int] = {
            "connectorId": connector.id,
            "entityType": str(connector.entity_type),
            "pageSize": self.config.page_size,
        }
        if cursor is not None:
            params["cursor"] = cursor
        endpoint = self.config.records_path

        async with self.client_factory(self.config, self._limiter) as client:
            try:
                response = await client.get(
                    endpoint,
                    params=params,
                    headers={CORRELATION_HEADER: correlation_id},
                )
            except httpx.TimeoutException as exc:
                raise TransientTransportError(
                    f"Timed out fetching records: {exc}", method="GET", endpoint=endpoint
                ) from exc
            except httpx.TransportError as exc:
                raise TransientTransportError(
                    f"Network error fetching records: {exc}", method="GET", endpoint=endpoint
                ) from exc

        _raise_for_status(response, endpoint)
        try:
            payload = RecordPageResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise PermanentTransportError(
                f"Unexpected record page payload: {exc.error_count()} validation error(s)",
                method="GET",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from exc

        log.debug(
            "Fetched %s record(s) for %s (cursor=%s)",
            len(payload.records),
            connector.id,
            cursor,
        )
        return RecordPage(
            records=tuple(record.to_domain() for record in payload.records),
            next_cursor=payload.next_cursor,
            method="GET",
            endpoint=endpoint,
            status_code=response.status_code,
        )


def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
    status = response.status_code
    if status < HTTPStatus.BAD_REQUEST:
        return
    message = f"HTTP {status} fetching records"
    detail = _error_detail(response)
    if detail:
        message = f"{message}: {detail}"
    if status >= HTTPStatus.INTERNAL_SERVER_ERROR or status in _TRANSIENT_STATUSES:
        raise TransientTransportError(
            message, method="GET", endpoint=endpoint, status_code=status
        )
    raise PermanentTransportError(
        message,
        method="GET",
        endpoint=endpoint,
        status_code=status,
        connector_wide=status in _CONNECTOR_WIDE_STATUSES,
    )


def _error_detail(response: httpx.Response) -> str | None:
    try:
        return ErrorResponse.model_validate_json(response.content).describe()
    except ValidationError:
        return None


if TYPE_CHECKING:
    from esgsync.domain.ports.fetching import RecordSource

    _source_check: RecordSource = HttpRecordSource(HttpSourceConfig(base_url="http://localhost"))
