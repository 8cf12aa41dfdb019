"""HTTP record source adapter."""

from __future__ import annotations

from .client import ThrottledClient
from .fetcher import CORRELATION_HEADER, HttpRecordSource

__all__ = ["CORRELATION_HEADER", "HttpRecordSource", "ThrottledClient"]
