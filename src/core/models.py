# src/core/models.py — v1
"""Core domain models: folder configs, batch jobs, file records, notifications.

These are the entities persisted by the configuration store and mutated by
the orchestrator and the file status tracker.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ALLOWED_EXTENSIONS: list[str] = [".mp3", ".wav", ".m4a", ".aac", ".ogg"]


def new_id() -> str:
    """Generate a new entity identifier."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_extension(ext: str) -> str:
    """Lower-case an extension and make sure it has a leading dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


# === ENUMS ===


class FileStatus(str, Enum):
    """Lifecycle states of a FileProcessingRecord."""

    DISCOVERED = "discovered"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    SKIPPED = "skipped"


IN_FLIGHT_STATUSES = frozenset({FileStatus.DOWNLOADING, FileStatus.PROCESSING})


class JobStatus(str, Enum):
    """Lifecycle states of a BatchJob."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobFailurePolicy(str, Enum):
    """When a finished job is reported as failed instead of completed.

    any_failure: at least one admitted record ended failed.
    all_failed: every admitted record ended failed (nothing completed).
    """

    ANY_FAILURE = "any_failure"
    ALL_FAILED = "all_failed"


# === FOLDER CONFIGURATION ===


class ProviderConfig(BaseModel):
    """Provider type string plus its provider-specific configuration."""

    type: str
    config: dict[str, Any] = Field(default_factory=dict)


class ProcessingConfig(BaseModel):
    """Admission rules applied to every discovered file."""

    max_file_size: int | None = Field(default=None, gt=0)
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )
    auto_start: bool = False

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        return [normalize_extension(e) for e in v if e.strip()]


class ExternalFolderConfig(BaseModel):
    """Named, activatable binding of storage + monitor + processing rules."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    storage_config: ProviderConfig
    monitor_config: ProviderConfig
    processing_config: ProcessingConfig = Field(default_factory=ProcessingConfig)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# === GLOBAL CONFIGURATION ===


class RetryConfig(BaseModel):
    """Automatic retry policy for retryable file failures."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)
    delay_seconds: float = Field(default=60.0, ge=0, le=300)
    exponential_backoff: bool = True

    def delay_for(self, retry_count: int) -> float:
        """Backoff before requeue, for the 1-based retry about to happen."""
        if not self.exponential_backoff:
            return self.delay_seconds
        return self.delay_seconds * (2 ** max(retry_count - 1, 0))


class GlobalBatchConfig(BaseModel):
    """Process-wide batch defaults; an immutable snapshot handed to new jobs."""

    model_config = ConfigDict(frozen=True)

    max_concurrent_files: int = Field(default=5, ge=1, le=20)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    auto_start: bool = True
    immediate_processing: bool = True
    background_processing: bool = True
    job_failure_policy: JobFailurePolicy = JobFailurePolicy.ANY_FAILURE

    def merge(self, update: dict[str, Any]) -> GlobalBatchConfig:
        """Return a new validated snapshot with ``update`` applied.

        ``retry_config`` is merged key by key rather than replaced.

        Raises:
            pydantic.ValidationError: If a value is out of range.
        """
        data = self.model_dump()
        retry_update = update.get("retry_config") or {}
        data.update({k: v for k, v in update.items() if k != "retry_config"})
        data["retry_config"] = {**data["retry_config"], **retry_update}
        return GlobalBatchConfig.model_validate(data)


# === BATCH JOBS ===


class BatchJobOptions(BaseModel):
    """Per-job overrides supplied when processing starts."""

    name: str | None = None
    description: str = ""
    priority: int = 0
    max_concurrent_files: int | None = Field(default=None, ge=1)
    immediate_processing: bool | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)


class BatchJob(BaseModel):
    """One orchestrated run over a folder's discovered files.

    ``total_files`` counts admitted files only. ``discovered_files`` also
    includes files rejected by admission filters, which are reported in
    ``skipped_files``.
    """

    id: str = Field(default_factory=new_id)
    folder_id: str
    name: str
    description: str = ""
    priority: int = 0
    status: JobStatus = JobStatus.PENDING
    total_files: int = 0
    discovered_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    options: BatchJobOptions = Field(default_factory=BatchJobOptions)
    error_summary: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def accounted_files(self) -> int:
        return self.processed_files + self.failed_files + self.skipped_files


class FileProcessingRecord(BaseModel):
    """Per-file state and history within a batch job."""

    id: str = Field(default_factory=new_id)
    batch_job_id: str
    file_name: str
    remote_path: str
    file_size: int | None = None
    local_path: str | None = None
    status: FileStatus = FileStatus.DISCOVERED
    error_code: str | None = None
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    retry_count: int = 0
    max_retries: int = Field(default=3, ge=0)
    result_ref: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    @property
    def retries_remaining(self) -> int:
        return max(self.max_retries - self.retry_count, 0)


class ProcessingLogEntry(BaseModel):
    """Append-only log line attached to a file record."""

    record_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    event: str
    from_status: FileStatus | None = None
    to_status: FileStatus | None = None
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


# === NOTIFICATIONS ===

NOTIFICATION_EVENTS: tuple[str, ...] = (
    "file_processed",
    "file_failed",
    "batch_completed",
    "batch_failed",
    "batch_cancelled",
)


class NotificationThreshold(BaseModel):
    """Numeric predicate over one field of the event data."""

    field: str
    operator: Literal[">", ">=", "<", "<=", "==", "!="] = ">="
    value: float

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if not isinstance(actual, (int, float)) or isinstance(actual, bool):
            return False
        if self.operator == ">":
            return actual > self.value
        if self.operator == ">=":
            return actual >= self.value
        if self.operator == "<":
            return actual < self.value
        if self.operator == "<=":
            return actual <= self.value
        if self.operator == "==":
            return actual == self.value
        return actual != self.value


class NotificationCondition(BaseModel):
    """Event name plus an optional threshold predicate."""

    event: str
    threshold: NotificationThreshold | None = None

    @field_validator("event")
    @classmethod
    def _known_event(cls, v: str) -> str:
        if v not in NOTIFICATION_EVENTS:
            raise ValueError(
                f"Invalid notification condition: {v}. "
                f"Valid conditions: {', '.join(NOTIFICATION_EVENTS)}"
            )
        return v

    def matches(self, event: str, data: dict[str, Any]) -> bool:
        if event != self.event:
            return False
        return self.threshold is None or self.threshold.matches(data)


class NotificationConfig(BaseModel):
    """A configured notification channel and the events it subscribes to."""

    id: str = Field(default_factory=new_id)
    type: str
    name: str = Field(min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)
    conditions: list[NotificationCondition] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("conditions", mode="before")
    @classmethod
    def _coerce_conditions(cls, v: Any) -> Any:
        # Plain event names are accepted as shorthand.
        if isinstance(v, list):
            return [{"event": c} if isinstance(c, str) else c for c in v]
        return v


# === ORCHESTRATOR RESULTS ===


class StartBatchResult(BaseModel):
    """Returned by BatchOrchestrator.start_batch_processing()."""

    job_id: str
    total_files: int
    skipped_files: int = 0


class AnalysisOutcome(BaseModel):
    """Opaque link to the external analysis result for one file."""

    result_ref: str
    details: dict[str, Any] = Field(default_factory=dict)
