# src/tracking/models.py — v2
"""Tracking query models: record pages, processing stats, error summaries, timelines."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from audiobatch.core.models import FileProcessingRecord, FileStatus, ProcessingLogEntry


class RecordQuery(BaseModel):
    """Filter, pagination and sort for FileStatusTracker.list_records()."""

    job_id: str | None = None
    status: FileStatus | None = None
    error_code: str | None = None
    search: str | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
    sort_by: Literal["created_at", "updated_at", "file_name", "file_size", "retry_count"] = (
        "created_at"
    )
    descending: bool = False


class RecordPage(BaseModel):
    """One page of file records plus the unpaginated total."""

    items: list[FileProcessingRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


class ProcessingStats(BaseModel):
    """Aggregates over a set of file records."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    average_file_size: float = 0.0
    average_processing_seconds: float = 0.0
    total_retries: int = 0
    success_rate: float = 0.0


class ErrorFileEntry(BaseModel):
    record_id: str
    file_name: str
    status: FileStatus
    error_code: str | None = None
    error_message: str | None = None


class ErrorSummary(BaseModel):
    """Failed and skipped records of a job grouped by code and message."""

    total_errors: int = 0
    by_error_code: dict[str, int] = Field(default_factory=dict)
    by_error_message: dict[str, int] = Field(default_factory=dict)
    files: list[ErrorFileEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.total_errors == 0


class FileTimeline(BaseModel):
    """A record with its processing log, oldest entry first."""

    record: FileProcessingRecord
    entries: list[ProcessingLogEntry] = Field(default_factory=list)
