# src/batch/config_service.py — v1
"""Configuration management: folders, notification channels, global config.

Every create/update runs the affected providers through the factory first,
so a stored config is one that validated and connected at save time.
test_* methods use the non-throwing factory path instead.
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from audiobatch.batch.admission import AdmissionResult, apply_admission
from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import (
    FolderNotFound,
    FolderInUse,
    InvalidConfiguration,
    NotificationConfigNotFound,
)
from audiobatch.core.models import (
    ExternalFolderConfig,
    GlobalBatchConfig,
    JobStatus,
    NotificationConfig,
)
from audiobatch.providers.models import ProviderTestResult
from audiobatch.providers.registry import ProviderFactory
from audiobatch.store.base_store import BaseStore

if TYPE_CHECKING:
    from audiobatch.batch.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)

_ACTIVE_JOB_STATUSES = {JobStatus.PENDING, JobStatus.RUNNING, JobStatus.CANCELLING}
_IMMUTABLE_FIELDS = ("id", "created_at")


class Page(BaseModel):
    """One page of a listing."""

    items: list[Any] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 0


class FolderTestReport(BaseModel):
    """Non-throwing storage + monitor check for one folder config."""

    success: bool
    storage: ProviderTestResult
    monitor: ProviderTestResult


def _validation_messages(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
        for err in exc.errors()
    ]


def _paginate(items: list[Any], page: int, limit: int) -> Page:
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return Page(
        items=items[start:start + limit],
        total=len(items),
        page=page,
        limit=limit,
        total_pages=math.ceil(len(items) / limit),
    )


class ConfigService:
    """CRUD over the configuration store, guarded by provider tests.

    Args:
        store: Configuration store.
        factory: Provider factory used to test configs before saving.
        orchestrator: Running orchestrator. Receives global config updates
            and is asked about active jobs and auto start.
        clock: Time source for updated_at stamps.
    """

    def __init__(
        self,
        store: BaseStore,
        factory: ProviderFactory,
        orchestrator: BatchOrchestrator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._factory = factory
        self._orchestrator = orchestrator
        self._clock = clock or SystemClock()

    # === FOLDERS ===

    async def create_folder(self, data: dict[str, Any]) -> ExternalFolderConfig:
        """Validate, connect both providers, then save.

        Raises:
            InvalidConfiguration: Model validation failed.
            ProviderNotFound / InvalidProviderConfig / ProviderConnectionFailed.
        """
        folder = self._parse_folder(data)
        await self._verify_folder(folder, storage=True, monitor=True)
        await self._store.save_folder(folder)
        logger.info("Created external folder %s (%s)", folder.name, folder.id)
        return folder

    async def update_folder(self, folder_id: str, updates: dict[str, Any]) -> ExternalFolderConfig:
        """Apply a partial update. Only changed provider configs are re-tested."""
        existing = await self.get_folder(folder_id)
        data = existing.model_dump()
        for key, value in updates.items():
            if key in _IMMUTABLE_FIELDS:
                continue
            if key == "processing_config" and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        data["updated_at"] = self._clock.now()
        folder = self._parse_folder(data)

        storage_changed = folder.storage_config != existing.storage_config
        monitor_changed = folder.monitor_config != existing.monitor_config
        if storage_changed or monitor_changed:
            await self._verify_folder(folder, storage=storage_changed, monitor=monitor_changed)

        await self._store.save_folder(folder)
        logger.info("Updated external folder %s", folder.name)
        return folder

    async def delete_folder(self, folder_id: str) -> None:
        """Raises FolderInUse while a job for the folder is not terminal."""
        folder = await self.get_folder(folder_id)
        active = await self._store.list_jobs(folder_id=folder_id, statuses=_ACTIVE_JOB_STATUSES)
        if active:
            raise FolderInUse(folder_id, len(active))
        if self._orchestrator is not None:
            await self._orchestrator.disable_auto_start(folder_id)
        await self._store.delete_folder(folder_id)
        logger.info("Deleted external folder %s", folder.name)

    async def get_folder(self, folder_id: str) -> ExternalFolderConfig:
        folder = await self._store.get_folder(folder_id)
        if folder is None:
            raise FolderNotFound(folder_id)
        return folder

    async def list_folders(
        self,
        page: int = 1,
        limit: int = 10,
        active_only: bool = False,
    ) -> Page:
        folders = await self._store.list_folders(active_only=active_only)
        return _paginate(folders, page, limit)

    async def test_folder(self, folder: str | dict[str, Any] | ExternalFolderConfig) -> FolderTestReport:
        """Test storage and monitor providers of a stored or candidate folder.

        Provider failures are reported in the result. Only an unknown
        folder id or a malformed config raises.
        """
        if isinstance(folder, str):
            folder = await self.get_folder(folder)
        elif isinstance(folder, dict):
            folder = self._parse_folder(folder)

        storage = await self._factory.test_provider(
            "storage", folder.storage_config.type, folder.storage_config.config,
        )
        monitor = await self._factory.test_provider(
            "monitor", folder.monitor_config.type, folder.monitor_config.config,
        )
        return FolderTestReport(
            success=storage.success and monitor.success, storage=storage, monitor=monitor,
        )

    async def scan_folder(self, folder: str | dict[str, Any] | ExternalFolderConfig) -> AdmissionResult:
        """Manual scan: discover files and apply admission rules without creating a job."""
        if isinstance(folder, str):
            folder = await self.get_folder(folder)
        elif isinstance(folder, dict):
            folder = self._parse_folder(folder)

        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        try:
            monitor = await self._factory.create_monitor_provider(
                folder.monitor_config.type, folder.monitor_config.config, storage=storage,
            )
            files = await monitor.scan_for_files(folder.monitor_config.config)
        finally:
            storage.disconnect()
        return apply_admission(files, folder.processing_config)

    def _parse_folder(self, data: dict[str, Any] | ExternalFolderConfig) -> ExternalFolderConfig:
        if isinstance(data, ExternalFolderConfig):
            return data
        try:
            return ExternalFolderConfig.model_validate(data)
        except ValidationError as exc:
            raise InvalidConfiguration("folder", _validation_messages(exc)) from exc

    async def _verify_folder(self, folder: ExternalFolderConfig, storage: bool, monitor: bool) -> None:
        # Monitors may scan through storage, so a monitor check needs a live storage provider.
        provider = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        try:
            if monitor:
                await self._factory.create_monitor_provider(
                    folder.monitor_config.type, folder.monitor_config.config, storage=provider,
                )
        finally:
            provider.disconnect()
        logger.debug(
            "Verified folder %s providers (storage=%s, monitor=%s)", folder.name, storage, monitor,
        )

    # === NOTIFICATION CONFIGS ===

    async def create_notification_config(self, data: dict[str, Any]) -> NotificationConfig:
        config = self._parse_notification(data)
        await self._factory.create_notification_provider(config.type, config.config)
        await self._store.save_notification_config(config)
        logger.info("Created notification config %s (%s)", config.name, config.type)
        return config

    async def update_notification_config(
        self, config_id: str, updates: dict[str, Any]
    ) -> NotificationConfig:
        existing = await self.get_notification_config(config_id)
        data = existing.model_dump()
        data.update({k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS})
        data["updated_at"] = self._clock.now()
        config = self._parse_notification(data)
        if config.type != existing.type or config.config != existing.config:
            await self._factory.create_notification_provider(config.type, config.config)
        await self._store.save_notification_config(config)
        logger.info("Updated notification config %s", config.name)
        return config

    async def delete_notification_config(self, config_id: str) -> None:
        if not await self._store.delete_notification_config(config_id):
            raise NotificationConfigNotFound(config_id)
        logger.info("Deleted notification config %s", config_id)

    async def get_notification_config(self, config_id: str) -> NotificationConfig:
        config = await self._store.get_notification_config(config_id)
        if config is None:
            raise NotificationConfigNotFound(config_id)
        return config

    async def list_notification_configs(self, active_only: bool = False) -> list[NotificationConfig]:
        return await self._store.list_notification_configs(active_only=active_only)

    async def test_notification_config(
        self, config: str | dict[str, Any] | NotificationConfig
    ) -> ProviderTestResult:
        """Configure the channel and send a test message. Never raises for provider errors."""
        if isinstance(config, str):
            config = await self.get_notification_config(config)
        elif isinstance(config, dict):
            config = self._parse_notification(config)
        return await self._factory.test_provider("notification", config.type, config.config)

    def _parse_notification(self, data: dict[str, Any]) -> NotificationConfig:
        try:
            config = NotificationConfig.model_validate(data)
        except ValidationError as exc:
            raise InvalidConfiguration("notification", _validation_messages(exc)) from exc
        if not config.conditions:
            raise InvalidConfiguration("notification", ["conditions: at least one event is required"])
        return config

    # === GLOBAL CONFIG ===

    async def get_global_config(self) -> GlobalBatchConfig:
        if self._orchestrator is not None:
            return self._orchestrator.global_config
        return await self._store.get_global_config() or GlobalBatchConfig()

    async def update_global_config(self, update: dict[str, Any]) -> GlobalBatchConfig:
        """Merge, persist and hand the new snapshot to the orchestrator.

        Running jobs keep the snapshot they started with.
        """
        current = await self.get_global_config()
        try:
            merged = current.merge(update)
        except ValidationError as exc:
            raise InvalidConfiguration("global batch", _validation_messages(exc)) from exc
        await self._store.save_global_config(merged)
        if self._orchestrator is not None:
            self._orchestrator.apply_global_config(merged)
        return merged

    # === SUMMARY ===

    async def get_configuration_summary(self) -> dict[str, Any]:
        folders = await self._store.list_folders()
        notifications = await self._store.list_notification_configs()
        jobs = await self._store.list_jobs()
        since = self._clock.now() - timedelta(hours=24)
        return {
            "folders": {
                "total": len(folders),
                "active": sum(1 for f in folders if f.is_active),
            },
            "notifications": {
                "total": len(notifications),
                "active": sum(1 for n in notifications if n.is_active),
            },
            "batch_jobs": {
                "total": len(jobs),
                "active": sum(1 for j in jobs if j.status in _ACTIVE_JOB_STATUSES),
                "last_24h": sum(1 for j in jobs if j.created_at >= since),
            },
            "providers": self._factory.get_available_providers(),
            "global_config": (await self.get_global_config()).model_dump(mode="json"),
        }
