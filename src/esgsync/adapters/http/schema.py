"""Pydantic models describing record-page responses of external systems."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from esgsync.adapters.payloads import RawRecordPayload


class RecordPageResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    records: list[RawRecordPayload] = Field(default_factory=list[RawRecordPayload])
    next_cursor: str | None = Field(default=None, alias="nextCursor")


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str | None = None
    error: str | None = None

    def describe(self) -> str | None:
        return self.message or self.error
