# src/providers/models.py — v1
"""Provider I/O models: listings, downloads, validation and test results."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class RemoteFile(BaseModel):
    """A file visible through a storage or monitor provider."""

    name: str
    path: str
    size: int = 0
    modified: datetime | None = None

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return f".{ext.lower()}" if dot else ""


class DownloadResult(BaseModel):
    """Outcome of a whole-object transfer into local storage."""

    local_path: str
    size: int
    downloaded_at: datetime


class ValidationResult(BaseModel):
    """Field-level configuration validation outcome."""

    valid: bool
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(valid=not errors, errors=errors)


class ProviderTestResult(BaseModel):
    """Non-throwing result of a configuration-time provider test."""

    success: bool
    message: str | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class MonitorStatus(BaseModel):
    """Status of one running monitor handle."""

    handle: str
    is_active: bool
    last_scan: datetime | None = None
    scan_count: int = 0
    last_file_count: int | None = None


class Notification(BaseModel):
    """Channel-agnostic notification handed to a provider."""

    title: str
    message: str
    type: str = "general"
    recipients: list[str] | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class SendResult(BaseModel):
    """Delivery outcome reported by a notification provider."""

    success: bool
    provider: str
    id: str | None = None
    error: str | None = None
