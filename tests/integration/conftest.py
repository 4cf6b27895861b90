# tests/integration/conftest.py — v9
"""Shared fixtures for orchestrator integration tests.

Storage, analysis and notification channels are in-memory fakes wired in
through the provider factory, so whole batch jobs run without network or
threads. Time is a ManualClock: retry backoff and scan cadence only move
when a test advances it.

Changelog:
    v9: FakeStorage refuses downloads once disconnected.
    v8: Replace container fixtures with in-memory batch fakes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from audiobatch.batch.analysis import BaseAnalyzer
from audiobatch.batch.orchestrator import BatchOrchestrator
from audiobatch.core.errors import DownloadError
from audiobatch.core.models import AnalysisOutcome, GlobalBatchConfig
from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import (
    DownloadResult,
    Notification,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)
from audiobatch.providers.registry import ProviderFactory


# ── Fakes ───────────────────────────────────────────────────────


class FakeBackend:
    """Shared state behind every FakeStorage instance of one test.

    Attributes:
        files: remote path -> content.
        failures: remote path -> exceptions raised by the next downloads.
        gates: remote path -> event the download waits on.
        targets: local paths handed to download_file, in call order.
        offline: When True every download fails with CONNECTION_FAILED.
    """

    def __init__(self, files: dict[str, bytes]) -> None:
        self.files = dict(files)
        self.failures: dict[str, list[Exception]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.offline = False
        self.active = 0
        self.peak = 0
        self.downloads: list[str] = []
        self.targets: list[str] = []
        self.disconnects = 0

    def fail(self, path: str, code: str, times: int = 1) -> None:
        self.failures.setdefault(path, []).extend(
            DownloadError(f"{code.lower()} for {path}", error_code=code) for _ in range(times)
        )

    def gate(self, path: str) -> asyncio.Event:
        return self.gates.setdefault(path, asyncio.Event())

    def provider_class(self) -> type[BaseStorageProvider]:
        backend = self

        class FakeStorage(BaseStorageProvider):
            provider_type = "fake"

            def __init__(self) -> None:
                self.connected = False

            async def connect(self, config: dict[str, Any]) -> bool:
                self.connected = True
                return True

            async def list_files(self, path: str = "") -> list[RemoteFile]:
                return [
                    RemoteFile(name=p.rsplit("/", 1)[-1], path=p, size=len(data))
                    for p, data in sorted(backend.files.items())
                    if p.startswith(path)
                ]

            async def download_file(self, remote_path: str, local_path: str) -> DownloadResult:
                if not self.connected:
                    raise DownloadError(
                        "fake storage is not connected",
                        error_code="CONNECTION_FAILED",
                        native_code="NOT_CONNECTED",
                    )
                backend.targets.append(local_path)
                backend.active += 1
                backend.peak = max(backend.peak, backend.active)
                try:
                    gate = backend.gates.get(remote_path)
                    if gate is not None:
                        await gate.wait()
                    else:
                        await asyncio.sleep(0)
                    backend.downloads.append(remote_path)
                    if backend.offline:
                        raise DownloadError(
                            "storage backend unreachable",
                            error_code="CONNECTION_FAILED",
                            native_code="ECONNREFUSED",
                        )
                    pending = backend.failures.get(remote_path)
                    if pending:
                        raise pending.pop(0)
                    data = backend.files[remote_path]
                    target = Path(local_path)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(data)
                    return DownloadResult(
                        local_path=local_path,
                        size=len(data),
                        downloaded_at=datetime.now(timezone.utc),
                    )
                finally:
                    backend.active -= 1

            def validate_config(self, config: dict[str, Any]) -> ValidationResult:
                return ValidationResult(valid=True)

            async def test_connection(self, config: dict[str, Any]) -> ProviderTestResult:
                return ProviderTestResult(success=True)

            def disconnect(self) -> None:
                self.connected = False
                backend.disconnects += 1

        return FakeStorage


class FakeAnalyzer(BaseAnalyzer):
    """Returns ``ref:<file_name>``; ``errors`` maps file names to exceptions."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.errors: dict[str, Exception] = {}
        self.closed = False

    async def analyze(self, local_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        self.calls.append({"local_path": local_path, **metadata})
        error = self.errors.get(metadata["file_name"])
        if error is not None:
            raise error
        return AnalysisOutcome(result_ref=f"ref:{metadata['file_name']}")

    async def close(self) -> None:
        self.closed = True


def capture_provider_class(outbox: list[Notification]) -> type[BaseNotificationProvider]:
    class CaptureProvider(BaseNotificationProvider):
        provider_type = "capture"

        def validate_config(self, config: dict[str, Any]) -> ValidationResult:
            return ValidationResult(valid=True)

        async def _deliver(self, notification: Notification) -> str | None:
            outbox.append(notification)
            return None

    return CaptureProvider


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend({
        "calls/a.mp3": b"ID3" + b"\x01" * 20,
        "calls/b.mp3": b"ID3" + b"\x02" * 30,
        "calls/c.wav": b"RIFF" + b"\x03" * 40,
    })


@pytest.fixture
def outbox() -> list[Notification]:
    return []


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def factory(backend: FakeBackend, outbox: list[Notification], manual_clock) -> ProviderFactory:
    factory = ProviderFactory(clock=manual_clock)
    factory.register_provider("storage", "fake", backend.provider_class())
    factory.register_provider("notification", "capture", capture_provider_class(outbox))
    return factory


@pytest.fixture
def make_orchestrator(
    memory_store, factory, analyzer, settings, manual_clock,
) -> Callable[..., BatchOrchestrator]:
    """Build an orchestrator; keyword arguments are merged into the global config.

    Retry delay defaults to zero unless retry_config says otherwise.
    """

    def _make(**overrides: Any) -> BatchOrchestrator:
        update = dict(overrides)
        update["retry_config"] = {"delay_seconds": 0, **overrides.get("retry_config", {})}
        config = GlobalBatchConfig().merge(update)
        return BatchOrchestrator(memory_store, factory, analyzer, settings, config, manual_clock)

    return _make
