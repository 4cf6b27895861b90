# src/providers/storage/s3_storage.py — v2
"""S3-compatible object storage provider (type "s3").

Supports AWS S3, MinIO, and other S3-compatible storage.

Config:
    bucket: Bucket name.
    region: AWS region (e.g. "eu-west-1").
    prefix: Optional key prefix that acts as the folder root.
    credentials: {"access_key_id": ..., "secret_access_key": ...}; may be
        omitted when use_default_credentials is true.
    endpoint_url: Custom endpoint for MinIO/compatible storage.
    max_keys: Upper bound on keys returned by one listing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from audiobatch.core.errors import DownloadError
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import (
    DownloadResult,
    ProviderTestResult,
    RemoteFile,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_REGION_RE = re.compile(r"^[a-z0-9-]+$")
_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")

# S3 error codes mapped onto the file error taxonomy.
_CLIENT_ERROR_CODES: dict[str, str] = {
    "NoSuchKey": "FILE_NOT_FOUND",
    "404": "FILE_NOT_FOUND",
    "NotFound": "FILE_NOT_FOUND",
    "AccessDenied": "ACCESS_DENIED",
    "403": "ACCESS_DENIED",
    "NoSuchBucket": "CONNECTION_FAILED",
    "RequestTimeout": "TIMEOUT",
    "SlowDown": "DOWNLOAD_FAILED",
    "InternalError": "DOWNLOAD_FAILED",
}


class S3StorageProvider(BaseStorageProvider):
    """Download whole objects from an S3-compatible bucket."""

    provider_type = "s3"

    def __init__(self) -> None:
        self._s3: Any = None
        self._bucket = ""
        self._prefix = ""
        self._max_keys = 1000

    @staticmethod
    def _make_client(config: dict[str, Any]) -> Any:
        """Build a boto3 S3 client from provider config."""
        import boto3

        kwargs: dict[str, Any] = {"region_name": config.get("region")}
        creds = config.get("credentials") or {}
        if creds:
            kwargs["aws_access_key_id"] = creds.get("access_key_id")
            kwargs["aws_secret_access_key"] = creds.get("secret_access_key")
        if config.get("endpoint_url"):
            kwargs["endpoint_url"] = config["endpoint_url"]
        return boto3.client("s3", **kwargs)

    @staticmethod
    def _normalize_prefix(prefix: str | None) -> str:
        return prefix.strip("/") + "/" if prefix and prefix.strip("/") else ""

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []

        bucket = config.get("bucket")
        if not bucket:
            errors.append("S3 bucket name is required")
        elif not _BUCKET_RE.match(str(bucket)):
            errors.append("Invalid S3 bucket name format")

        region = config.get("region")
        if not region:
            errors.append("AWS region is required")
        elif not _REGION_RE.match(str(region)):
            errors.append("Invalid AWS region format")

        creds = config.get("credentials")
        if not creds:
            if not config.get("use_default_credentials"):
                errors.append("AWS credentials are required")
        else:
            if not creds.get("access_key_id"):
                errors.append("AWS access key ID is required")
            if not creds.get("secret_access_key"):
                errors.append("AWS secret access key is required")

        max_keys = config.get("max_keys")
        if max_keys is not None and (not isinstance(max_keys, int) or max_keys < 1):
            errors.append("max_keys must be a positive integer")

        return ValidationResult.from_errors(errors)

    async def connect(self, config: dict[str, Any]) -> bool:
        client = self._make_client(config)
        try:
            await asyncio.to_thread(
                client.list_objects_v2, Bucket=config["bucket"], MaxKeys=1
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to connect to S3 bucket %s: %s", config["bucket"], exc)
            return False

        self._s3 = client
        self._bucket = config["bucket"]
        self._prefix = self._normalize_prefix(config.get("prefix"))
        self._max_keys = int(config.get("max_keys") or 1000)
        logger.debug("Connected S3 storage s3://%s/%s", self._bucket, self._prefix)
        return True

    def disconnect(self) -> None:
        self._s3 = None

    def _client(self) -> Any:
        if self._s3 is None:
            raise RuntimeError("S3 not connected. Call connect() first.")
        return self._s3

    async def list_files(self, path: str = "") -> list[RemoteFile]:
        """List objects directly under prefix + path (delimiter "/")."""
        prefix = self._prefix + (path.strip("/") + "/" if path.strip("/") else "")
        return await asyncio.to_thread(self._list_sync, prefix)

    def _list_sync(self, prefix: str) -> list[RemoteFile]:
        paginator = self._client().get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=self._bucket,
            Prefix=prefix,
            Delimiter="/",
            PaginationConfig={"MaxItems": self._max_keys},
        )
        files: list[RemoteFile] = []
        for page in pages:
            for obj in page.get("Contents", []):
                key = obj["Key"]
                name = key[len(prefix):]
                if not name:
                    continue
                files.append(
                    RemoteFile(
                        name=name,
                        path=key,
                        size=int(obj.get("Size", 0)),
                        modified=obj.get("LastModified"),
                    )
                )
        return files

    async def download_file(self, remote_path: str, local_path: str) -> DownloadResult:
        client = self._s3
        if client is None:
            raise DownloadError(
                f"S3 storage provider is not connected, cannot fetch {remote_path}",
                error_code="CONNECTION_FAILED",
                native_code="NOT_CONNECTED",
            )
        dest = Path(local_path)
        try:
            await asyncio.to_thread(self._download_sync, client, remote_path, dest)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            raise DownloadError(
                f"S3 download failed for {remote_path}: {exc}",
                error_code=_CLIENT_ERROR_CODES.get(code, "DOWNLOAD_FAILED"),
                native_code=code or None,
            ) from exc
        except (ConnectTimeoutError, ReadTimeoutError) as exc:
            raise DownloadError(
                f"S3 download timed out for {remote_path}: {exc}",
                error_code="TIMEOUT",
                native_code=type(exc).__name__,
            ) from exc
        except (EndpointConnectionError, NoCredentialsError) as exc:
            raise DownloadError(
                f"S3 endpoint unreachable for {remote_path}: {exc}",
                error_code="CONNECTION_FAILED",
                native_code=type(exc).__name__,
            ) from exc
        except BotoCoreError as exc:
            raise DownloadError(
                f"S3 download failed for {remote_path}: {exc}",
                error_code="DOWNLOAD_FAILED",
                native_code=type(exc).__name__,
            ) from exc

        return DownloadResult(
            local_path=str(dest),
            size=dest.stat().st_size,
            downloaded_at=datetime.now(timezone.utc),
        )

    def _download_sync(self, client: Any, key: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        client.download_file(self._bucket, key, str(dest))

    async def test_connection(self, config: dict[str, Any]) -> ProviderTestResult:
        validation = self.validate_config(config)
        if not validation.valid:
            return ProviderTestResult(
                success=False,
                error=f"Configuration validation failed: {', '.join(validation.errors)}",
            )
        try:
            client = self._make_client(config)
            await asyncio.to_thread(client.head_bucket, Bucket=config["bucket"])
            listing = await asyncio.to_thread(
                client.list_objects_v2,
                Bucket=config["bucket"],
                Prefix=self._normalize_prefix(config.get("prefix")),
                MaxKeys=1,
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "UNKNOWN_ERROR")
            return ProviderTestResult(
                success=False,
                error=f"S3 connection test failed: {exc}",
                details={"code": code},
            )
        except BotoCoreError as exc:
            return ProviderTestResult(
                success=False,
                error=f"S3 connection test failed: {exc}",
                details={"code": type(exc).__name__},
            )
        return ProviderTestResult(
            success=True,
            message="S3 connection test successful",
            details={
                "bucket": config["bucket"],
                "region": config["region"],
                "object_count": listing.get("KeyCount", 0),
                "prefix": config.get("prefix") or "none",
            },
        )

    async def get_storage_info(self) -> dict[str, Any]:
        files = await self.list_files("")
        return {
            "type": self.provider_type,
            "bucket": self._bucket,
            "prefix": self._prefix or "none",
            "total_objects": len(files),
            "total_size": sum(f.size for f in files),
        }
