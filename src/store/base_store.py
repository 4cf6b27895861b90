# src/store/base_store.py — v1
"""Abstract configuration and job/record store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from audiobatch.core.models import (
    BatchJob,
    ExternalFolderConfig,
    FileProcessingRecord,
    FileStatus,
    GlobalBatchConfig,
    JobStatus,
    NotificationConfig,
    ProcessingLogEntry,
)


class BaseStore(ABC):
    """Unified interface for persistence backends.

    Implementations return copies: mutating a returned model never changes
    stored state until it is saved again.
    """

    # --- Folder configs ---

    @abstractmethod
    async def save_folder(self, folder: ExternalFolderConfig) -> None:
        """Insert or replace a folder config."""

    @abstractmethod
    async def get_folder(self, folder_id: str) -> ExternalFolderConfig | None:
        """Folder config by id, or None."""

    @abstractmethod
    async def list_folders(self, active_only: bool = False) -> list[ExternalFolderConfig]:
        """Folder configs ordered by creation time, newest first."""

    @abstractmethod
    async def delete_folder(self, folder_id: str) -> bool:
        """Remove a folder config; False if it did not exist."""

    # --- Notification configs ---

    @abstractmethod
    async def save_notification_config(self, config: NotificationConfig) -> None:
        """Insert or replace a notification config."""

    @abstractmethod
    async def get_notification_config(self, config_id: str) -> NotificationConfig | None:
        """Notification config by id, or None."""

    @abstractmethod
    async def list_notification_configs(
        self, active_only: bool = False
    ) -> list[NotificationConfig]:
        """Notification configs ordered by creation time, newest first."""

    @abstractmethod
    async def delete_notification_config(self, config_id: str) -> bool:
        """Remove a notification config; False if it did not exist."""

    # --- Global config ---

    @abstractmethod
    async def get_global_config(self) -> GlobalBatchConfig | None:
        """Stored global batch config, or None if never saved."""

    @abstractmethod
    async def save_global_config(self, config: GlobalBatchConfig) -> None:
        """Replace the stored global batch config."""

    # --- Batch jobs ---

    @abstractmethod
    async def save_job(self, job: BatchJob) -> None:
        """Insert or replace a batch job."""

    @abstractmethod
    async def get_job(self, job_id: str) -> BatchJob | None:
        """Batch job by id, or None."""

    @abstractmethod
    async def list_jobs(
        self,
        folder_id: str | None = None,
        statuses: set[JobStatus] | None = None,
    ) -> list[BatchJob]:
        """Batch jobs ordered by creation time, newest first."""

    # --- File records ---

    @abstractmethod
    async def save_record(self, record: FileProcessingRecord) -> None:
        """Insert or replace a file processing record."""

    @abstractmethod
    async def get_record(self, record_id: str) -> FileProcessingRecord | None:
        """File record by id, or None."""

    @abstractmethod
    async def list_records(
        self,
        job_id: str | None = None,
        statuses: set[FileStatus] | None = None,
    ) -> list[FileProcessingRecord]:
        """File records in creation (admission) order."""

    # --- Processing logs ---

    @abstractmethod
    async def append_log(self, entry: ProcessingLogEntry) -> None:
        """Append one entry to a record's processing log."""

    @abstractmethod
    async def get_logs(self, record_id: str) -> list[ProcessingLogEntry]:
        """Processing log entries for a record, oldest first."""
