# src/store/json_store.py — v1
"""JSON file-backed store (STORE_BACKEND=json).

Keeps everything in memory and rewrites one JSON document after every
mutation. The document is reloaded on construction, so folder configs,
jobs and records survive a process restart.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from audiobatch.core.models import (
    BatchJob,
    ExternalFolderConfig,
    FileProcessingRecord,
    GlobalBatchConfig,
    NotificationConfig,
    ProcessingLogEntry,
)
from audiobatch.store.memory_store import MemoryStore

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


class JsonStore(MemoryStore):
    """MemoryStore persisted to a single JSON file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path).expanduser()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable store file %s: %s", self._path, e)
            return

        for raw in data.get("folders", []):
            folder = ExternalFolderConfig.model_validate(raw)
            self._folders[folder.id] = folder
        for raw in data.get("notifications", []):
            config = NotificationConfig.model_validate(raw)
            self._notifications[config.id] = config
        if data.get("global_config"):
            self._global = GlobalBatchConfig.model_validate(data["global_config"])
        for raw in data.get("jobs", []):
            job = BatchJob.model_validate(raw)
            self._jobs[job.id] = job
        for raw in data.get("records", []):
            record = FileProcessingRecord.model_validate(raw)
            self._records[record.id] = record
        for record_id, entries in data.get("logs", {}).items():
            self._logs[record_id] = [ProcessingLogEntry.model_validate(e) for e in entries]

        logger.debug(
            "Loaded store %s: %d folders, %d jobs, %d records",
            self._path, len(self._folders), len(self._jobs), len(self._records),
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "version": STORE_FORMAT_VERSION,
            "folders": [f.model_dump(mode="json") for f in self._folders.values()],
            "notifications": [c.model_dump(mode="json") for c in self._notifications.values()],
            "global_config": self._global.model_dump(mode="json") if self._global else None,
            "jobs": [j.model_dump(mode="json") for j in self._jobs.values()],
            "records": [r.model_dump(mode="json") for r in self._records.values()],
            "logs": {
                record_id: [e.model_dump(mode="json") for e in entries]
                for record_id, entries in self._logs.items()
            },
        }

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._snapshot(), indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    async def save_folder(self, folder: ExternalFolderConfig) -> None:
        await super().save_folder(folder)
        self._persist()

    async def delete_folder(self, folder_id: str) -> bool:
        deleted = await super().delete_folder(folder_id)
        if deleted:
            self._persist()
        return deleted

    async def save_notification_config(self, config: NotificationConfig) -> None:
        await super().save_notification_config(config)
        self._persist()

    async def delete_notification_config(self, config_id: str) -> bool:
        deleted = await super().delete_notification_config(config_id)
        if deleted:
            self._persist()
        return deleted

    async def save_global_config(self, config: GlobalBatchConfig) -> None:
        await super().save_global_config(config)
        self._persist()

    async def save_job(self, job: BatchJob) -> None:
        await super().save_job(job)
        self._persist()

    async def save_record(self, record: FileProcessingRecord) -> None:
        await super().save_record(record)
        self._persist()

    async def append_log(self, entry: ProcessingLogEntry) -> None:
        await super().append_log(entry)
        self._persist()
