# src/providers/monitors/event_monitor.py — v1
"""Filesystem event monitor provider (type "events").

Watches a local directory with a watchdog Observer instead of a timer.
Observer callbacks run on watchdog's thread and are handed to the event
loop with call_soon_threadsafe(). Bursts of events for one handle are
debounced into a single rescan, and the rescan result goes to the
on_scan callback exactly like a polling tick.

Config:
    path: Directory to watch.
    recursive: Watch and scan subdirectories (default true).
    debounce_seconds: Quiet period before a rescan, >= 0 (default 2).
    file_extensions: Optional list of suffixes such as ".mp3".
    file_patterns: Optional name filters, same syntax as the polling
        monitor.
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

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import HandleNotFound
from audiobatch.core.models import new_id
from audiobatch.providers.base_monitor_provider import BaseMonitorProvider, ScanCallback
from audiobatch.providers.models import (
    MonitorStatus,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)
from audiobatch.providers.monitors.polling_monitor import (
    ScanSnapshot,
    _compile_patterns,
    matches_patterns,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0
OBSERVER_JOIN_TIMEOUT = 5.0

_WATCHED_EVENTS = frozenset({
    EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED, EVENT_TYPE_DELETED,
})


@dataclass
class _WatchState:
    config: dict[str, Any]
    root: Path
    on_scan: ScanCallback | None
    observer: Any = None
    is_active: bool = True
    started_at: datetime | None = None
    last_scan: datetime | None = None
    last_event: datetime | None = None
    scan_count: int = 0
    event_count: int = 0
    debounce: asyncio.Task[None] | None = None


@dataclass
class EventStats:
    """Counters across every handle of one monitor instance."""

    total_events: int = 0
    file_events: int = 0
    directory_events: int = 0
    ignored_events: int = 0
    error_events: int = 0
    per_type: dict[str, int] = field(default_factory=dict)


class _FolderEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one handle onto the event loop."""

    def __init__(
        self,
        monitor: EventMonitorProvider,
        handle: str,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._monitor = monitor
        self._handle = handle
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _WATCHED_EVENTS:
            return
        raw = event.dest_path if event.event_type == EVENT_TYPE_MOVED else event.src_path
        try:
            self._loop.call_soon_threadsafe(
                self._monitor.record_event,
                self._handle,
                event.event_type,
                os.fsdecode(raw),
                event.is_directory,
            )
        except RuntimeError:
            # Loop already closed while the observer thread was stopping.
            logger.debug("Dropped %s event for %s after loop shutdown", event.event_type, raw)


def _normalize_extensions(extensions: list[str] | None) -> set[str]:
    return {
        (ext if ext.startswith(".") else f".{ext}").lower()
        for ext in extensions or []
    }


class EventMonitorProvider(BaseMonitorProvider):
    """Event-driven folder watcher backed by watchdog."""

    provider_type = "events"

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._handles: dict[str, _WatchState] = {}
        self._last_results: dict[str, ScanSnapshot] = {}
        self.stats = EventStats()

    # === VALIDATION ===

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []

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

        debounce = config.get("debounce_seconds")
        if debounce is not None:
            if isinstance(debounce, bool) or not isinstance(debounce, (int, float)) or debounce < 0:
                errors.append("Debounce time must be a non-negative number of seconds")

        extensions = config.get("file_extensions")
        if extensions is not None and (
            not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions)
        ):
            errors.append("File extensions must be a list of strings")

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

    def _accepts(self, name: str, config: dict[str, Any]) -> bool:
        extensions = _normalize_extensions(config.get("file_extensions"))
        if extensions and Path(name).suffix.lower() not in extensions:
            return False
        return matches_patterns(name, _compile_patterns(config.get("file_patterns") or []))

    async def scan_for_files(self, config: dict[str, Any]) -> list[RemoteFile]:
        root = Path(str(config["path"])).expanduser()
        if not root.is_dir():
            raise FileNotFoundError(f"Monitor path does not exist: {root}")
        listed = await asyncio.to_thread(self._walk, root, config.get("recursive", True))
        files = [f for f in listed if self._accepts(f.name, config)]
        logger.debug("Scan found %d files (%d before filters)", len(files), len(listed))
        return files

    @staticmethod
    def _walk(root: Path, recursive: bool) -> list[RemoteFile]:
        entries = root.rglob("*") if recursive else root.iterdir()
        files: list[RemoteFile] = []
        for entry in sorted(entries):
            if not entry.is_file():
                continue
            stat = entry.stat()
            files.append(
                RemoteFile(
                    name=entry.name,
                    path=entry.relative_to(root).as_posix(),
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
            self.stats.error_events += 1
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

    # === EVENTS ===

    def record_event(self, handle: str, event_type: str, path: str, is_directory: bool) -> None:
        """Count one filesystem event and (re)arm the handle's debounce timer.

        Runs on the event loop thread.
        """
        state = self._handles.get(handle)
        if state is None or not state.is_active:
            return

        self.stats.total_events += 1
        self.stats.per_type[event_type] = self.stats.per_type.get(event_type, 0) + 1
        if is_directory:
            self.stats.directory_events += 1
            return
        if not self._accepts(Path(path).name, state.config):
            self.stats.ignored_events += 1
            return

        self.stats.file_events += 1
        state.event_count += 1
        state.last_event = self._clock.now()
        logger.debug("File event %s: %s (monitor %s)", event_type, path, handle)

        if state.debounce is not None and not state.debounce.done():
            state.debounce.cancel()
        state.debounce = asyncio.get_running_loop().create_task(
            self._debounced_scan(handle), name=f"monitor-{handle}-debounce",
        )

    async def _debounced_scan(self, handle: str) -> None:
        state = self._handles.get(handle)
        if state is None:
            return
        delay = state.config.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)
        await self._clock.sleep(float(delay))
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
                f"Invalid event monitor configuration: {', '.join(validation.errors)}"
            )

        handle = f"events_{new_id()[:12]}"
        root = Path(str(config["path"])).expanduser().resolve()
        state = _WatchState(
            config=dict(config), root=root, on_scan=on_scan, started_at=self._clock.now(),
        )
        self._handles[handle] = state

        # Initial snapshot so files already present are picked up.
        await self._perform_scan(handle)

        handler = _FolderEventHandler(self, handle, asyncio.get_running_loop())
        observer = Observer()
        observer.schedule(handler, str(root), recursive=bool(config.get("recursive", True)))
        try:
            observer.start()
        except Exception:
            self._handles.pop(handle, None)
            raise
        state.observer = observer
        logger.info("Started event monitor %s on %s", handle, root)
        return handle

    async def stop_monitoring(self, handle: str) -> bool:
        state = self._handles.pop(handle, None)
        if state is None:
            logger.warning("Monitoring handle not found: %s", handle)
            return False
        state.is_active = False
        if state.debounce is not None and state.debounce is not asyncio.current_task():
            state.debounce.cancel()
            try:
                await state.debounce
            except asyncio.CancelledError:
                pass
        if state.observer is not None:
            state.observer.stop()
            await asyncio.to_thread(state.observer.join, OBSERVER_JOIN_TIMEOUT)
        logger.info("Stopped event monitor %s", handle)
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
            message=f"Successfully tested event monitor. Found {len(files)} files.",
            details={
                "path": config.get("path"),
                "file_count": len(files),
                "recursive": bool(config.get("recursive", True)),
                "debounce_seconds": config.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS),
                "file_extensions": config.get("file_extensions") or "all",
            },
        )

    # === INTROSPECTION ===

    def get_active_handles(self) -> list[str]:
        return [h for h, state in self._handles.items() if state.is_active]

    def get_last_scan_results(self, handle: str) -> ScanSnapshot | None:
        return self._last_results.get(handle)

    def get_event_count(self, handle: str) -> int:
        state = self._handles.get(handle)
        if state is None:
            raise HandleNotFound(handle)
        return state.event_count

    def get_monitoring_stats(self) -> dict[str, Any]:
        return {
            "active_monitors": len(self.get_active_handles()),
            "total_scans": sum(s.scan_count for s in self._handles.values()),
            "total_events": self.stats.total_events,
            "file_events": self.stats.file_events,
            "directory_events": self.stats.directory_events,
            "ignored_events": self.stats.ignored_events,
            "error_events": self.stats.error_events,
            "events_by_type": dict(self.stats.per_type),
        }

    async def cleanup(self) -> None:
        """Stop every observer and forget all handles."""
        for handle in list(self._handles):
            await self.stop_monitoring(handle)
        self._last_results.clear()
        logger.debug("Event monitors cleaned up")
