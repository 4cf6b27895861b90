# src/core/errors.py — v1
"""Exception hierarchy shared by providers, tracker, store and orchestrator."""

from __future__ import annotations

from typing import Any


class BatchError(Exception):
    """Base class for every error raised by audiobatch."""


# === Provider errors ===


class ProviderNotFound(BatchError):
    """Provider type is not registered in the requested category."""

    def __init__(self, category: str, provider_type: str, available: list[str]) -> None:
        self.category = category
        self.provider_type = provider_type
        self.available = list(available)
        super().__init__(
            f"{category.capitalize()} provider '{provider_type}' not found. "
            f"Available providers: {', '.join(self.available) or 'none'}"
        )


class InvalidProviderConfig(BatchError):
    """Provider configuration failed validation (before any connection)."""

    def __init__(self, category: str, provider_type: str, errors: list[str]) -> None:
        self.category = category
        self.provider_type = provider_type
        self.errors = list(errors)
        super().__init__(
            f"Invalid {category} provider configuration for '{provider_type}': "
            f"{', '.join(self.errors)}"
        )


class ProviderConnectionFailed(BatchError):
    """Provider handshake (connect / configure) failed."""

    def __init__(self, category: str, provider_type: str, reason: str = "") -> None:
        self.category = category
        self.provider_type = provider_type
        self.reason = reason
        msg = f"Failed to connect {category} provider '{provider_type}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DownloadError(BatchError):
    """Transfer failure, tagged with a taxonomy code and the native code."""

    def __init__(
        self,
        message: str,
        error_code: str = "DOWNLOAD_FAILED",
        native_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.error_code = error_code
        self.native_code = native_code
        self.details = details or {}
        super().__init__(message)


class AnalysisError(BatchError):
    """The external analysis collaborator rejected or failed a file."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class HandleNotFound(BatchError):
    """Monitoring handle is unknown (never started or already stopped)."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Monitoring handle not found: {handle}")


class NotificationSendError(BatchError):
    """A notification channel refused or failed a delivery."""


# === Tracker / store errors ===


class InvalidTransition(BatchError):
    """Requested status change is not allowed by the record state machine."""

    def __init__(self, record_id: str, current: str, requested: str, reason: str = "") -> None:
        self.record_id = record_id
        self.current = current
        self.requested = requested
        msg = f"Invalid status transition from {current} to {requested} for record {record_id}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class RecordNotFound(BatchError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"File processing record with ID {record_id} not found")


class JobNotFound(BatchError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Batch job {job_id} not found")


class JobNotActive(BatchError):
    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Batch job {job_id} is not active (status: {status})")


class JobStillRunning(BatchError):
    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Batch job {job_id} has not finished (status: {status})")


class FolderNotFound(BatchError):
    def __init__(self, folder_id: str) -> None:
        self.folder_id = folder_id
        super().__init__(f"External folder with ID {folder_id} not found")


class FolderInactive(BatchError):
    def __init__(self, name: str) -> None:
        super().__init__(f"External folder {name} is not active")


class FolderInUse(BatchError):
    def __init__(self, folder_id: str, active_jobs: int) -> None:
        self.folder_id = folder_id
        self.active_jobs = active_jobs
        super().__init__(
            f"Cannot delete folder {folder_id} with {active_jobs} active batch jobs"
        )


class InvalidConfiguration(BatchError):
    """Folder, notification or global config failed model validation."""

    def __init__(self, kind: str, errors: list[str]) -> None:
        self.kind = kind
        self.errors = list(errors)
        super().__init__(f"Invalid {kind} configuration: {'; '.join(self.errors)}")


class NotificationConfigNotFound(BatchError):
    def __init__(self, config_id: str) -> None:
        self.config_id = config_id
        super().__init__(f"Notification config with ID {config_id} not found")
