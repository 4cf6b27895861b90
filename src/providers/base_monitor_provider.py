# src/providers/base_monitor_provider.py — v1
"""Abstract monitor provider interface.

A monitor discovers candidate files in an external folder, either on a
timer (start_monitoring) or on demand (scan_for_files).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from audiobatch.providers.models import (
    MonitorStatus,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)

ScanCallback = Callable[[list[RemoteFile], str], Awaitable[None]]


class BaseMonitorProvider(ABC):
    """Unified interface for folder monitors.

    The factory instantiates monitors with a ``clock`` keyword argument.
    """

    provider_type: str = ""

    @abstractmethod
    async def start_monitoring(
        self,
        config: dict[str, Any],
        on_scan: ScanCallback | None = None,
    ) -> str:
        """Start a monitor and return its handle."""

    @abstractmethod
    async def stop_monitoring(self, handle: str) -> bool:
        """Stop a monitor; False if the handle was unknown."""

    @abstractmethod
    async def scan_for_files(self, config: dict[str, Any]) -> list[RemoteFile]:
        """Scan once, synchronously, and return matching files."""

    @abstractmethod
    def get_status(self, handle: str) -> MonitorStatus:
        """Status of a running monitor.

        Raises:
            HandleNotFound: If the handle is unknown.
        """

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        """Check configuration without scanning."""

    @abstractmethod
    async def test_monitoring(self, config: dict[str, Any]) -> ProviderTestResult:
        """Validate and perform one scan. Never raises."""
