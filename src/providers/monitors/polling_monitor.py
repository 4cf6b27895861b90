# src/providers/monitors/polling_monitor.py — v1
"""Polling monitor provider (type "polling").

Scans a directory on a fixed interval. The timer is an asyncio task that
sleeps on an injectable Clock, so tests can drive the cadence with
ManualClock.advance().

Config:
    path: Directory to scan (non-recursive).
    scan_interval: Seconds between scans, 30-3600 (default 300).
    file_patterns: Optional name filters. Plain strings match as
        substrings; "re:<expr>" or "/<expr>/" match as regular expressions.
    use_storage: Scan through the storage provider bound with
        attach_storage() instead of a local path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import HandleNotFound
from audiobatch.core.models import new_id
from audiobatch.providers.base_monitor_provider import BaseMonitorProvider, ScanCallback
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import (
    MonitorStatus,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 300
MIN_SCAN_INTERVAL = 30
MAX_SCAN_INTERVAL = 3600


@dataclass
class _MonitorState:
    config: dict[str, Any]
    on_scan: ScanCallback | None
    is_active: bool = True
    last_scan: datetime | None = None
    scan_count: int = 0
    task: asyncio.Task[None] | None = None


@dataclass
class ScanSnapshot:
    """Result of the most recent scan for one handle."""

    timestamp: datetime
    files: list[RemoteFile] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.files)


def _compile_patterns(patterns: list[str]) -> list[re.Pattern[str] | str]:
    compiled: list[re.Pattern[str] | str] = []
    for pattern in patterns:
        if pattern.startswith("re:"):
            compiled.append(re.compile(pattern[3:]))
        elif len(pattern) > 1 and pattern.startswith("/") and pattern.endswith("/"):
            compiled.append(re.compile(pattern[1:-1]))
        else:
            compiled.append(pattern)
    return compiled


def matches_patterns(name: str, patterns: list[re.Pattern[str] | str]) -> bool:
    """True when no patterns are set or any pattern matches ``name``."""
    if not patterns:
        return True
    for pattern in patterns:
        if isinstance(pattern, str):
            if pattern in name:
                return True
        elif pattern.search(name):
            return True
    return False


class PollingMonitor(BaseMonitorProvider):
    """Timer-driven folder scanner."""

    provider_type = "polling"

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._handles: dict[str, _MonitorState] = {}
        self._last_results: dict[str, ScanSnapshot] = {}
        self._storage: BaseStorageProvider | None = None

    def attach_storage(self, storage: BaseStorageProvider) -> None:
        """Bind a connected storage provider for configs with use_storage."""
        self._storage = storage

    # === VALIDATION ===

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []

        if not config.get("use_storage"):
            raw = config.get("path")
            if not raw:
                errors.append("Monitor path is required")
            else:
                path = Path(str(raw)).expanduser()
                if not path.exists():
                    errors.append(f"Monitor path does not exist: {path}")
                elif not path.is_dir():
                    errors.append(f"Monitor path is not a directory: {path}")
                elif not os.access(path, os.R_OK):
                    errors.append(f"No read permission for monitor path: {path}")

        interval = config.get("scan_interval")
        if interval is not None:
            try:
                value = int(interval)
            except (TypeError, ValueError):
                value = -1
            if value < MIN_SCAN_INTERVAL or value > MAX_SCAN_INTERVAL:
                errors.append(
                    f"Scan interval must be between {MIN_SCAN_INTERVAL} "
                    f"and {MAX_SCAN_INTERVAL} seconds"
                )

        patterns = config.get("file_patterns")
        if patterns is not None:
            if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
                errors.append("File patterns must be a list of strings")
            else:
                try:
                    _compile_patterns(patterns)
                except re.error as exc:
                    errors.append(f"Invalid file pattern: {exc}")

        return ValidationResult.from_errors(errors)

    # === SCANNING ===

    async def scan_for_files(self, config: dict[str, Any]) -> list[RemoteFile]:
        patterns = _compile_patterns(config.get("file_patterns") or [])
        if config.get("use_storage"):
            if self._storage is None:
                raise RuntimeError("No storage provider attached to polling monitor")
            listed = await self._storage.list_files(config.get("path") or "")
        else:
            root = Path(str(config["path"])).expanduser()
            if not root.is_dir():
                raise FileNotFoundError(f"Monitor path does not exist: {root}")
            listed = await asyncio.to_thread(self._list_dir, root)

        files = [f for f in listed if matches_patterns(f.name, patterns)]
        logger.debug("Scan found %d files (%d before filters)", len(files), len(listed))
        return files

    @staticmethod
    def _list_dir(root: Path) -> list[RemoteFile]:
        files: list[RemoteFile] = []
        for entry in sorted(root.iterdir()):
            if not entry.is_file():
                continue
            stat = entry.stat()
            files.append(
                RemoteFile(
                    name=entry.name,
                    path=entry.name,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return files

    async def _perform_scan(self, handle: str) -> None:
        state = self._handles.get(handle)
        if state is None or not state.is_active:
            return
        try:
            files = await self.scan_for_files(state.config)
        except Exception as exc:
            logger.error("Scan failed for monitor %s: %s", handle, exc)
            return

        state.last_scan = self._clock.now()
        state.scan_count += 1
        self._last_results[handle] = ScanSnapshot(timestamp=state.last_scan, files=files)

        if state.on_scan is not None:
            try:
                await state.on_scan(files, handle)
            except Exception:
                logger.exception("Error in scan callback for monitor %s", handle)

        logger.info("Scan completed for monitor %s: %d files found", handle, len(files))

    async def _run_timer(self, handle: str, interval: float) -> None:
        while True:
            await self._clock.sleep(interval)
            if handle not in self._handles:
                return
            await self._perform_scan(handle)

    # === LIFECYCLE ===

    async def start_monitoring(
        self,
        config: dict[str, Any],
        on_scan: ScanCallback | None = None,
    ) -> str:
        validation = self.validate_config(config)
        if not validation.valid:
            raise ValueError(
                f"Invalid polling monitor configuration: {', '.join(validation.errors)}"
            )

        handle = f"polling_{new_id()[:12]}"
        state = _MonitorState(config=dict(config), on_scan=on_scan)
        self._handles[handle] = state

        # Initial snapshot before the first tick.
        await self._perform_scan(handle)

        interval = float(config.get("scan_interval") or DEFAULT_SCAN_INTERVAL)
        state.task = asyncio.create_task(
            self._run_timer(handle, interval), name=f"monitor-{handle}"
        )
        logger.info("Started polling monitor %s (interval=%ss)", handle, interval)
        return handle

    async def stop_monitoring(self, handle: str) -> bool:
        state = self._handles.pop(handle, None)
        if state is None:
            logger.warning("Monitoring handle not found: %s", handle)
            return False
        state.is_active = False
        if state.task is not None and state.task is not asyncio.current_task():
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped polling monitor %s", handle)
        return True

    def get_status(self, handle: str) -> MonitorStatus:
        state = self._handles.get(handle)
        if state is None:
            raise HandleNotFound(handle)
        snapshot = self._last_results.get(handle)
        return MonitorStatus(
            handle=handle,
            is_active=state.is_active,
            last_scan=state.last_scan,
            scan_count=state.scan_count,
            last_file_count=snapshot.file_count if snapshot else None,
        )

    async def test_monitoring(self, config: dict[str, Any]) -> ProviderTestResult:
        validation = self.validate_config(config)
        if not validation.valid:
            return ProviderTestResult(
                success=False,
                error=f"Configuration validation failed: {', '.join(validation.errors)}",
            )
        try:
            files = await self.scan_for_files(config)
        except Exception as exc:
            return ProviderTestResult(success=False, error=f"Failed to scan for files: {exc}")
        return ProviderTestResult(
            success=True,
            message=f"Successfully tested polling monitor. Found {len(files)} files.",
            details={
                "path": config.get("path"),
                "file_count": len(files),
                "scan_interval": config.get("scan_interval") or DEFAULT_SCAN_INTERVAL,
            },
        )

    # === INTROSPECTION ===

    def get_active_handles(self) -> list[str]:
        return [h for h, state in self._handles.items() if state.is_active]

    def get_last_scan_results(self, handle: str) -> ScanSnapshot | None:
        return self._last_results.get(handle)

    def get_monitoring_stats(self) -> dict[str, int]:
        return {
            "active_monitors": len(self.get_active_handles()),
            "total_scans": sum(s.scan_count for s in self._handles.values()),
            "last_scan_results": len(self._last_results),
        }

    async def cleanup(self) -> None:
        """Stop every timer and forget all handles."""
        for handle in list(self._handles):
            await self.stop_monitoring(handle)
        self._last_results.clear()
        logger.debug("Polling monitors cleaned up")
