# src/store/memory_store.py — v1
"""In-process store (default STORE_BACKEND=memory)."""

from __future__ import annotations

from collections import defaultdict

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
from audiobatch.store.base_store import BaseStore


class MemoryStore(BaseStore):
    """Dict-backed store. Models are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._folders: dict[str, ExternalFolderConfig] = {}
        self._notifications: dict[str, NotificationConfig] = {}
        self._global: GlobalBatchConfig | None = None
        self._jobs: dict[str, BatchJob] = {}
        self._records: dict[str, FileProcessingRecord] = {}
        self._logs: defaultdict[str, list[ProcessingLogEntry]] = defaultdict(list)

    async def save_folder(self, folder: ExternalFolderConfig) -> None:
        self._folders[folder.id] = folder.model_copy(deep=True)

    async def get_folder(self, folder_id: str) -> ExternalFolderConfig | None:
        folder = self._folders.get(folder_id)
        return folder.model_copy(deep=True) if folder else None

    async def list_folders(self, active_only: bool = False) -> list[ExternalFolderConfig]:
        folders = [f for f in self._folders.values() if f.is_active or not active_only]
        folders.sort(key=lambda f: f.created_at, reverse=True)
        return [f.model_copy(deep=True) for f in folders]

    async def delete_folder(self, folder_id: str) -> bool:
        return self._folders.pop(folder_id, None) is not None

    async def save_notification_config(self, config: NotificationConfig) -> None:
        self._notifications[config.id] = config.model_copy(deep=True)

    async def get_notification_config(self, config_id: str) -> NotificationConfig | None:
        config = self._notifications.get(config_id)
        return config.model_copy(deep=True) if config else None

    async def list_notification_configs(
        self, active_only: bool = False
    ) -> list[NotificationConfig]:
        configs = [c for c in self._notifications.values() if c.is_active or not active_only]
        configs.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in configs]

    async def delete_notification_config(self, config_id: str) -> bool:
        return self._notifications.pop(config_id, None) is not None

    async def get_global_config(self) -> GlobalBatchConfig | None:
        return self._global

    async def save_global_config(self, config: GlobalBatchConfig) -> None:
        # Frozen model; no copy needed.
        self._global = config

    async def save_job(self, job: BatchJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> BatchJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self,
        folder_id: str | None = None,
        statuses: set[JobStatus] | None = None,
    ) -> list[BatchJob]:
        jobs = [
            j for j in self._jobs.values()
            if (folder_id is None or j.folder_id == folder_id)
            and (statuses is None or j.status in statuses)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs]

    async def save_record(self, record: FileProcessingRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def get_record(self, record_id: str) -> FileProcessingRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def list_records(
        self,
        job_id: str | None = None,
        statuses: set[FileStatus] | None = None,
    ) -> list[FileProcessingRecord]:
        # dict preserves insertion order, which is admission order.
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if (job_id is None or r.batch_job_id == job_id)
            and (statuses is None or r.status in statuses)
        ]

    async def append_log(self, entry: ProcessingLogEntry) -> None:
        self._logs[entry.record_id].append(entry.model_copy(deep=True))

    async def get_logs(self, record_id: str) -> list[ProcessingLogEntry]:
        return [e.model_copy(deep=True) for e in self._logs.get(record_id, [])]
