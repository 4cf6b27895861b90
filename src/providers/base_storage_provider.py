# src/providers/base_storage_provider.py — v1
"""Abstract storage provider interface.

A storage provider transfers files from an external location into local
storage. Implementations carry no per-call mutable state once connected,
so one connected instance may serve concurrent downloads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from audiobatch.providers.models import (
    DownloadResult,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)


class BaseStorageProvider(ABC):
    """Unified interface for storage backends."""

    provider_type: str = ""

    @abstractmethod
    async def connect(self, config: dict[str, Any]) -> bool:
        """Establish and verify access to the backend."""

    @abstractmethod
    async def list_files(self, path: str = "") -> list[RemoteFile]:
        """List files under ``path`` (relative to the configured root)."""

    @abstractmethod
    async def download_file(self, remote_path: str, local_path: str) -> DownloadResult:
        """Copy ``remote_path`` to ``local_path``, creating parent directories.

        Raises:
            DownloadError: Transfer failed; carries the taxonomy code.
        """

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        """Check configuration without touching the backend."""

    @abstractmethod
    async def test_connection(self, config: dict[str, Any]) -> ProviderTestResult:
        """Validate, connect and probe. Never raises."""

    async def get_storage_info(self) -> dict[str, Any]:
        """Describe the connected backend (totals, permissions)."""
        return {"type": self.provider_type}

    def disconnect(self) -> None:
        """Release any connection state."""
