# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides a manual clock, an in-memory store, isolated settings and a
temporary audio folder. No external services; S3, SMTP and HTTP are
mocked in the tests that need them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from audiobatch.config.settings import Settings
from audiobatch.core.clock import ManualClock
from audiobatch.core.models import (
    BatchJob,
    ExternalFolderConfig,
    FileProcessingRecord,
    ProcessingConfig,
    ProviderConfig,
)
from audiobatch.providers.models import RemoteFile
from audiobatch.store.memory_store import MemoryStore


# === FIXTURES: Infrastructure ===


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock(start=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from any .env file, downloading under tmp_path."""
    return Settings(
        _env_file=None,
        download_dir=tmp_path / "downloads",
        batch_retry_delay_seconds=0,
        reconcile_on_startup=False,
        log_format="text",
    )


# === FIXTURES: Sample data ===


@pytest.fixture
def audio_dir(tmp_path: Path) -> Path:
    """Folder with three admissible audio files."""
    root = tmp_path / "incoming"
    root.mkdir()
    for name, payload in [
        ("interview.mp3", b"ID3" + b"\x00" * 61),
        ("meeting.wav", b"RIFF" + b"\x00" * 124),
        ("memo.mp3", b"ID3" + b"\x00" * 29),
    ]:
        (root / name).write_bytes(payload)
    return root


@pytest.fixture
def folder_data(audio_dir: Path) -> dict[str, Any]:
    """Folder config dict pointing local storage and polling monitor at audio_dir."""
    return {
        "name": "Call recordings",
        "storage_config": {"type": "local", "config": {"path": str(audio_dir)}},
        "monitor_config": {
            "type": "polling",
            "config": {"path": str(audio_dir), "scan_interval": 60},
        },
        "processing_config": {"allowed_extensions": [".mp3", ".wav"]},
    }


@pytest.fixture
def sample_folder(folder_data: dict[str, Any]) -> ExternalFolderConfig:
    return ExternalFolderConfig.model_validate(folder_data)


@pytest.fixture
def sample_remote_file() -> RemoteFile:
    return RemoteFile(
        name="interview.mp3",
        path="calls/interview.mp3",
        size=2048,
        modified=datetime(2026, 2, 27, 16, 30, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_job() -> BatchJob:
    return BatchJob(
        id="job_001",
        folder_id="folder_001",
        name="Call recordings - nightly",
        total_files=3,
        discovered_files=4,
    )


@pytest.fixture
def sample_record() -> FileProcessingRecord:
    return FileProcessingRecord(
        id="rec_001",
        batch_job_id="job_001",
        file_name="interview.mp3",
        remote_path="calls/interview.mp3",
        file_size=2048,
        max_retries=3,
    )


@pytest.fixture
def processing_rules() -> ProcessingConfig:
    return ProcessingConfig(max_file_size=1024, allowed_extensions=["mp3", ".WAV"])


@pytest.fixture
def local_provider_config(audio_dir: Path) -> ProviderConfig:
    return ProviderConfig(type="local", config={"path": str(audio_dir)})
