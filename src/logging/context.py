# src/logging/context.py — v2
"""Contextual logging support: attach job_id, record_id, folder_id, stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per job and per worker task.
_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "job_id", default=None
)
_folder_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "folder_id", default=None
)
_record_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "record_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    job_id: str | None = None
    folder_id: str | None = None
    record_id: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        job_id=_job_id.get(),
        folder_id=_folder_id.get(),
        record_id=_record_id.get(),
        stage=_stage.get(),
    )


def set_job_context(job_id: str, folder_id: str | None = None) -> None:
    """Set job-level context (called when a job task starts)."""
    _job_id.set(job_id)
    _folder_id.set(folder_id)


def set_record_context(record_id: str | None, stage: str | None = None) -> None:
    """Set record-level context (called by a worker per record and stage)."""
    _record_id.set(record_id)
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _job_id.set(None)
    _folder_id.set(None)
    _record_id.set(None)
    _stage.set(None)
