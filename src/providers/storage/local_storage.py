# src/providers/storage/local_storage.py — v2
"""Local filesystem storage provider (type "local").

Config:
    path: Root directory files are listed and downloaded from.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from audiobatch.core.errors import DownloadError
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import (
    DownloadResult,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)

logger = logging.getLogger(__name__)


class LocalStorageProvider(BaseStorageProvider):
    """Read files from a directory on a locally mounted filesystem."""

    provider_type = "local"

    def __init__(self) -> None:
        self._base: Path | None = None

    @property
    def base_path(self) -> Path:
        if self._base is None:
            raise RuntimeError("Not connected to local storage")
        return self._base

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        raw = config.get("path")
        if not raw:
            errors.append("Local storage path is required")
            return ValidationResult.from_errors(errors)

        path = Path(str(raw)).expanduser()
        if not path.exists():
            errors.append(f"Local path does not exist: {path}")
        elif not path.is_dir():
            errors.append(f"Path is not a directory: {path}")
        elif not os.access(path, os.R_OK):
            errors.append(f"No read permission for path: {path}")
        return ValidationResult.from_errors(errors)

    async def connect(self, config: dict[str, Any]) -> bool:
        validation = self.validate_config(config)
        if not validation.valid:
            logger.warning(
                "Failed to connect to local storage: %s", ", ".join(validation.errors)
            )
            self._base = None
            return False
        self._base = Path(str(config["path"])).expanduser().resolve()
        logger.debug("Connected local storage at %s", self._base)
        return True

    def disconnect(self) -> None:
        self._base = None

    async def list_files(self, path: str = "") -> list[RemoteFile]:
        """List files recursively below ``path``, sorted by relative path."""
        root = self.base_path / path
        if not root.is_dir():
            raise FileNotFoundError(f"Path does not exist: {root}")
        return await asyncio.to_thread(self._walk, root)

    def _walk(self, root: Path) -> list[RemoteFile]:
        files: list[RemoteFile] = []
        for entry in sorted(root.rglob("*")):
            if not entry.is_file():
                continue
            stat = entry.stat()
            files.append(
                RemoteFile(
                    name=entry.name,
                    path=entry.relative_to(self.base_path).as_posix(),
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return files

    async def download_file(self, remote_path: str, local_path: str) -> DownloadResult:
        base = self._base
        if base is None:
            raise DownloadError(
                "Local storage provider is not connected",
                error_code="CONNECTION_FAILED",
                native_code="NOT_CONNECTED",
            )
        if not base.is_dir():
            raise DownloadError(
                f"Local storage root is no longer available: {base}",
                error_code="CONNECTION_FAILED",
                native_code="ENOENT",
            )

        source = (base / remote_path).resolve()
        if base != source and base not in source.parents:
            raise DownloadError(
                f"Path escapes storage root: {remote_path}",
                error_code="ACCESS_DENIED",
            )
        if not source.is_file():
            raise DownloadError(
                f"Source file does not exist: {source}",
                error_code="FILE_NOT_FOUND",
                native_code="ENOENT",
            )

        dest = Path(local_path)
        try:
            await asyncio.to_thread(self._copy, source, dest)
        except PermissionError as exc:
            raise DownloadError(
                f"Permission denied copying {source}: {exc}",
                error_code="ACCESS_DENIED",
                native_code=errno.errorcode.get(exc.errno or 0, "EACCES"),
            ) from exc
        except OSError as exc:
            raise DownloadError(
                f"Failed to copy {source}: {exc}",
                error_code="DOWNLOAD_FAILED",
                native_code=errno.errorcode.get(exc.errno or 0),
            ) from exc

        return DownloadResult(
            local_path=str(dest),
            size=dest.stat().st_size,
            downloaded_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _copy(source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)

    async def test_connection(self, config: dict[str, Any]) -> ProviderTestResult:
        validation = self.validate_config(config)
        if not validation.valid:
            return ProviderTestResult(
                success=False,
                error=f"Configuration validation failed: {', '.join(validation.errors)}",
            )
        probe = LocalStorageProvider()
        if not await probe.connect(config):
            return ProviderTestResult(success=False, error="Failed to connect to local storage")
        try:
            files = await probe.list_files("")
        except OSError as exc:
            return ProviderTestResult(success=False, error=f"Failed to list files: {exc}")
        return ProviderTestResult(
            success=True,
            message=f"Successfully connected to local storage. Found {len(files)} files.",
            details={
                "path": str(probe.base_path),
                "file_count": len(files),
                "writable": probe.check_write_permission(),
            },
        )

    def check_write_permission(self) -> bool:
        return os.access(self.base_path, os.W_OK)

    async def get_storage_info(self) -> dict[str, Any]:
        files = await self.list_files("")
        return {
            "type": self.provider_type,
            "path": str(self.base_path),
            "total_files": len(files),
            "total_size": sum(f.size for f in files),
            "permissions": {
                "readable": os.access(self.base_path, os.R_OK),
                "writable": self.check_write_permission(),
            },
        }
