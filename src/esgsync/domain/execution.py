"""Execution coordinator: retry, backoff, rate limiting and the call log.

Every outbound call to an external system goes through
``ExecutionCoordinator.execute``. Waiting happens on an injected ``Clock`` so
tests can advance time synthetically instead of sleeping.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from esgsync.domain.errors import PermanentTransportError, TransientTransportError, TransportError
from esgsync.domain.model import AttemptOutcome, CallAttempt, CallStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from esgsync.domain.clock import Clock
    from esgsync.domain.model import ConnectorConfig

log = getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0


class FailureKind(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify(exc: BaseException) -> FailureKind:
    """Default failure classification for coordinated calls."""

    if isinstance(exc, PermanentTransportError):
        return FailureKind.PERMANENT
    if isinstance(exc, TransientTransportError | TimeoutError | ConnectionError):
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


@dataclass(slots=True)
class CallResult[T]:
    """Terminal result of a coordinated call."""

    status: CallStatus
    value: T | None = None
    error: BaseException | None = None
    attempts: list[CallAttempt] = field(default_factory=list[CallAttempt])

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.SUCCESS

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` acquisitions in any rolling ``window``.

    ``acquire`` blocks on the clock until the oldest call in the window
    expires, so a wait never exceeds the window length.
    """

    def __init__(
        self,
        limit: int,
        *,
        clock: Clock,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        if limit < 1:
            raise ValueError("Rate limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("Rate limit window must be positive")
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock
        self._calls: deque[datetime] = deque()

    def _evict(self, now: datetime) -> None:
        while self._calls and now - self._calls[0] >= self.window:
            self._calls.popleft()

    def wait_time(self) -> float:
        """Seconds until the next acquisition would be allowed (0 when free)."""

        now = self._clock.now()
        self._evict(now)
        if len(self._calls) < self.limit:
            return 0.0
        remaining = (self._calls[0] + self.window - now).total_seconds()
        return min(max(remaining, 0.0), self.window.total_seconds())

    async def acquire(self) -> float:
        """Take one slot, waiting as needed; returns the seconds waited."""

        waited = 0.0
        while (delay := self.wait_time()) > 0:
            log.info("Rate limit of %s calls reached; waiting %.1fs", self.limit, delay)
            await self._clock.sleep(delay)
            waited += delay
        self._calls.append(self._clock.now())
        return waited


class ExecutionCoordinator:
    """Run external calls for one connector under its retry and rate-limit policy."""

    def __init__(
        self,
        connector: ConnectorConfig,
        *,
        clock: Clock,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        classify: Callable[[BaseException], FailureKind] = classify,
        on_attempt: Callable[[CallAttempt], None] | None = None,
    ) -> None:
        self.connector = connector
        self.clock = clock
        if rate_limiter is None and connector.rate_limit_per_minute is not None:
            rate_limiter = SlidingWindowRateLimiter(connector.rate_limit_per_minute, clock=clock)
        self.rate_limiter = rate_limiter
        self._classify = classify
        self._on_attempt = on_attempt

    async def execute[T](
        self,
        correlation_id: str,
        call: Callable[[], Awaitable[T]],
    ) -> CallResult[T]:
        connector = self.connector
        if not connector.enabled:
            log.info("Connector %s is disabled; skipping call", connector.id)
            return CallResult(status=CallStatus.SKIPPED)

        policy = connector.retry_policy
        result: CallResult[T] = CallResult(status=CallStatus.FAILED)
        for attempt in range(1, policy.max_attempts + 1):
            delay = policy.delay_before(attempt)
            if delay > 0:
                log.info(
                    "Retrying %s call (attempt %s/%s) in %.1fs",
                    connector.id,
                    attempt,
                    policy.max_attempts,
                    delay,
                )
                await self.clock.sleep(delay)
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()

            started = time.perf_counter()
            try:
                value = await call()
            except Exception as exc:  # noqa: BLE001
                kind = self._classify(exc)
                outcome = (
                    AttemptOutcome.TRANSIENT_FAILURE
                    if kind is FailureKind.TRANSIENT
                    else AttemptOutcome.PERMANENT_FAILURE
                )
                self._record(result.attempts, correlation_id, attempt, outcome, started, error=exc)
                result.error = exc
                if kind is FailureKind.PERMANENT:
                    log.warning("Permanent failure calling %s: %s", connector.id, exc)
                    return result
                log.warning(
                    "Transient failure calling %s (attempt %s/%s): %s",
                    connector.id,
                    attempt,
                    policy.max_attempts,
                    exc,
                )
                continue

            self._record(
                result.attempts,
                correlation_id,
                attempt,
                AttemptOutcome.SUCCEEDED,
                started,
                response=value,
            )
            result.status = CallStatus.SUCCESS
            result.value = value
            result.error = None
            return result

        log.error(
            "Giving up on %s after %s attempt(s): %s",
            connector.id,
            policy.max_attempts,
            result.error,
        )
        return result

    def _record(  # noqa: PLR0913
        self,
        attempts: list[CallAttempt],
        correlation_id: str,
        attempt: int,
        outcome: AttemptOutcome,
        started: float,
        *,
        error: BaseException | None = None,
        response: object = None,
    ) -> None:
        method, endpoint, status_code = _describe_call(error if error is not None else response)
        record = CallAttempt(
            connector_id=self.connector.id,
            correlation_id=correlation_id,
            attempt=attempt,
            outcome=outcome,
            duration_ms=(time.perf_counter() - started) * 1000,
            method=method,
            endpoint=endpoint,
            status_code=status_code,
            error=None if error is None else f"{type(error).__name__}: {error}",
            recorded_at=self.clock.now(),
        )
        attempts.append(record)
        if self._on_attempt is not None:
            self._on_attempt(record)


def _describe_call(source: object) -> tuple[str | None, str | None, int | None]:
    if isinstance(source, TransportError):
        return source.method, source.endpoint, source.status_code
    return (
        getattr(source, "method", None),
        getattr(source, "endpoint", None),
        getattr(source, "status_code", None),
    )
