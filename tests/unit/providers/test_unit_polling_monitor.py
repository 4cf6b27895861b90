# tests/unit/providers/test_polling_monitor.py — v1
"""Tests for providers/monitors/polling_monitor.py — driven by ManualClock."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from audiobatch.core.errors import HandleNotFound
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import RemoteFile
from audiobatch.providers.monitors.polling_monitor import (
    PollingMonitor,
    _compile_patterns,
    matches_patterns,
)


def _storage(files: list[RemoteFile]) -> MagicMock:
    storage = MagicMock(spec=BaseStorageProvider)
    storage.list_files = AsyncMock(return_value=files)
    return storage


STORAGE_CONFIG = {"use_storage": True, "scan_interval": 60}


class TestPatterns:
    def test_no_patterns_match_everything(self):
        assert matches_patterns("anything.mp3", []) is True

    def test_substring(self):
        patterns = _compile_patterns(["call_"])
        assert matches_patterns("call_001.mp3", patterns)
        assert not matches_patterns("memo.mp3", patterns)

    @pytest.mark.parametrize("pattern", [r"re:^\d{4}-", r"/^\d{4}-/"])
    def test_regex_forms(self, pattern):
        patterns = _compile_patterns([pattern])
        assert matches_patterns("2026-03-01.wav", patterns)
        assert not matches_patterns("x2026-03-01.wav", patterns)


class TestValidateConfig:
    def test_valid_path(self, audio_dir):
        assert PollingMonitor().validate_config({"path": str(audio_dir)}).valid

    def test_path_required_without_storage(self):
        assert PollingMonitor().validate_config({}).errors == ["Monitor path is required"]

    def test_storage_mode_needs_no_path(self):
        assert PollingMonitor().validate_config(STORAGE_CONFIG).valid

    @pytest.mark.parametrize("interval", [29, 3601, "soon"])
    def test_interval_bounds(self, audio_dir, interval):
        result = PollingMonitor().validate_config({"path": str(audio_dir), "scan_interval": interval})
        assert "Scan interval must be between 30 and 3600 seconds" in result.errors

    def test_bad_regex(self, audio_dir):
        result = PollingMonitor().validate_config(
            {"path": str(audio_dir), "file_patterns": ["re:("]}
        )
        assert result.errors[0].startswith("Invalid file pattern")


class TestScanForFiles:
    @pytest.mark.asyncio
    async def test_lists_directory_non_recursive(self, audio_dir):
        (audio_dir / "nested").mkdir()
        (audio_dir / "nested" / "deep.mp3").write_bytes(b"x")
        files = await PollingMonitor().scan_for_files({"path": str(audio_dir)})
        assert [f.path for f in files] == ["interview.mp3", "meeting.wav", "memo.mp3"]

    @pytest.mark.asyncio
    async def test_applies_patterns(self, audio_dir):
        files = await PollingMonitor().scan_for_files(
            {"path": str(audio_dir), "file_patterns": ["me"]}
        )
        assert [f.name for f in files] == ["meeting.wav", "memo.mp3"]

    @pytest.mark.asyncio
    async def test_rescan_is_identical(self, audio_dir):
        monitor = PollingMonitor()
        first = await monitor.scan_for_files({"path": str(audio_dir)})
        second = await monitor.scan_for_files({"path": str(audio_dir)})
        assert first == second

    @pytest.mark.asyncio
    async def test_scans_through_storage(self, sample_remote_file):
        storage = _storage([sample_remote_file])
        monitor = PollingMonitor()
        monitor.attach_storage(storage)
        files = await monitor.scan_for_files({**STORAGE_CONFIG, "path": "calls"})
        assert files == [sample_remote_file]
        storage.list_files.assert_awaited_once_with("calls")

    @pytest.mark.asyncio
    async def test_storage_mode_without_storage(self):
        with pytest.raises(RuntimeError, match="No storage provider"):
            await PollingMonitor().scan_for_files(STORAGE_CONFIG)


class TestMonitoringLifecycle:
    @pytest.mark.asyncio
    async def test_initial_scan_then_interval(self, manual_clock, sample_remote_file):
        monitor = PollingMonitor(clock=manual_clock)
        monitor.attach_storage(_storage([sample_remote_file]))
        on_scan = AsyncMock()

        handle = await monitor.start_monitoring(STORAGE_CONFIG, on_scan=on_scan)
        assert handle.startswith("polling_")
        assert monitor.get_status(handle).scan_count == 1
        on_scan.assert_awaited_once_with([sample_remote_file], handle)

        await asyncio.sleep(0)
        await manual_clock.advance(59)
        assert monitor.get_status(handle).scan_count == 1

        await manual_clock.advance(1)
        status = monitor.get_status(handle)
        assert status.scan_count == 2
        assert status.last_scan == manual_clock.now()
        assert status.last_file_count == 1

        await monitor.stop_monitoring(handle)

    @pytest.mark.asyncio
    async def test_stop_cancels_timer(self, manual_clock, sample_remote_file):
        monitor = PollingMonitor(clock=manual_clock)
        monitor.attach_storage(_storage([sample_remote_file]))
        handle = await monitor.start_monitoring(STORAGE_CONFIG)
        await asyncio.sleep(0)

        assert await monitor.stop_monitoring(handle) is True
        assert manual_clock.pending_sleepers == 0
        with pytest.raises(HandleNotFound):
            monitor.get_status(handle)
        assert await monitor.stop_monitoring(handle) is False

    @pytest.mark.asyncio
    async def test_scan_error_does_not_stop_timer(self, manual_clock, sample_remote_file):
        storage = _storage([sample_remote_file])
        monitor = PollingMonitor(clock=manual_clock)
        monitor.attach_storage(storage)
        handle = await monitor.start_monitoring(STORAGE_CONFIG)
        await asyncio.sleep(0)

        storage.list_files.side_effect = OSError("share offline")
        await manual_clock.advance(60)
        assert monitor.get_status(handle).scan_count == 1

        storage.list_files.side_effect = None
        await manual_clock.advance(60)
        assert monitor.get_status(handle).scan_count == 2
        await monitor.cleanup()

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, manual_clock, sample_remote_file):
        monitor = PollingMonitor(clock=manual_clock)
        monitor.attach_storage(_storage([sample_remote_file]))
        on_scan = AsyncMock(side_effect=ValueError("bad callback"))
        handle = await monitor.start_monitoring(STORAGE_CONFIG, on_scan=on_scan)
        assert monitor.get_status(handle).scan_count == 1
        await monitor.cleanup()

    @pytest.mark.asyncio
    async def test_invalid_config_rejected(self):
        with pytest.raises(ValueError, match="Invalid polling monitor configuration"):
            await PollingMonitor().start_monitoring({})

    def test_unknown_handle(self):
        with pytest.raises(HandleNotFound):
            PollingMonitor().get_status("polling_nope")

    @pytest.mark.asyncio
    async def test_stats_and_cleanup(self, manual_clock, sample_remote_file):
        monitor = PollingMonitor(clock=manual_clock)
        monitor.attach_storage(_storage([sample_remote_file]))
        h1 = await monitor.start_monitoring(STORAGE_CONFIG)
        h2 = await monitor.start_monitoring(STORAGE_CONFIG)

        assert set(monitor.get_active_handles()) == {h1, h2}
        assert monitor.get_last_scan_results(h1).file_count == 1
        assert monitor.get_monitoring_stats() == {
            "active_monitors": 2, "total_scans": 2, "last_scan_results": 2,
        }

        await monitor.cleanup()
        assert monitor.get_active_handles() == []
        assert monitor.get_last_scan_results(h1) is None


class TestMonitoringCheck:
    @pytest.mark.asyncio
    async def test_success(self, audio_dir):
        result = await PollingMonitor().test_monitoring({"path": str(audio_dir)})
        assert result.success is True
        assert result.details["file_count"] == 3
        assert result.details["scan_interval"] == 300

    @pytest.mark.asyncio
    async def test_invalid(self):
        result = await PollingMonitor().test_monitoring({"scan_interval": 5})
        assert result.success is False
        assert "validation failed" in result.error
