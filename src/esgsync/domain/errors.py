"""Error taxonomy for the synchronization engine.

Run-level configuration problems abort a run before any record is processed,
record-level validation problems become ``Rejected`` outcomes, and transport
errors are classified as transient (retried) or permanent (short-circuited).
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for synchronization engine errors."""


class MappingConfigurationError(SyncError):
    """Raised for invalid mapping rules, schema references or priorities."""


class RecordValidationError(SyncError):
    """Raised when a single raw record cannot be mapped onto the canonical schema."""


class ConcurrentModificationError(SyncError):
    """Raised when a compare-and-set write keeps losing against concurrent writers."""


class TransportError(SyncError):
    """Failure talking to an external system."""

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        endpoint: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.endpoint = endpoint
        self.status_code = status_code


class TransientTransportError(TransportError):
    """Timeouts, connection resets and 5xx-equivalent responses; safe to retry."""


class PermanentTransportError(TransportError):
    """4xx-equivalent responses; retrying cannot succeed.

    ``connector_wide`` marks failures (such as rejected credentials) that will
    affect every subsequent call of the run.
    """

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        endpoint: str | None = None,
        status_code: int | None = None,
        connector_wide: bool = False,
    ) -> None:
        super().__init__(message, method=method, endpoint=endpoint, status_code=status_code)
        self.connector_wide = connector_wide
