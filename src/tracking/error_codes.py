# src/tracking/error_codes.py — v2
"""File error taxonomy and exception classification.

Every file failure is recorded under one ErrorCode. The retryable flag
decides whether the orchestrator may requeue the file with backoff.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from audiobatch.core.errors import AnalysisError, DownloadError


class ErrorCode(str, Enum):
    """Error codes with their retry classification."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    ACCESS_DENIED = "ACCESS_DENIED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_RETRYABLE = frozenset({
    ErrorCode.DOWNLOAD_FAILED,
    ErrorCode.CONNECTION_FAILED,
    ErrorCode.ANALYSIS_FAILED,
    ErrorCode.TIMEOUT,
})

_DESCRIPTIONS: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "File failed validation (bad format or content)",
    ErrorCode.FILE_TOO_LARGE: "File size exceeds configured limit",
    ErrorCode.UNSUPPORTED_FORMAT: "File format is not supported",
    ErrorCode.ACCESS_DENIED: "Permission denied accessing file",
    ErrorCode.FILE_NOT_FOUND: "File no longer exists at the source",
    ErrorCode.DOWNLOAD_FAILED: "Error transferring file from storage provider",
    ErrorCode.CONNECTION_FAILED: "Storage backend could not be reached",
    ErrorCode.ANALYSIS_FAILED: "External analysis failed for this file",
    ErrorCode.TIMEOUT: "Operation exceeded its time limit",
    ErrorCode.CANCELLED: "Batch job was cancelled before the file was processed",
    ErrorCode.INTERNAL_ERROR: "Batch job stopped by an unexpected error",
}


def is_retryable(code: str | None) -> bool:
    """True for known retryable codes; unknown codes are not retried."""
    try:
        return ErrorCode(code).retryable
    except ValueError:
        return False


def classify_error(error: BaseException) -> ErrorCode | None:
    """Map an exception raised by a pipeline stage to an error code.

    Returns None for exceptions the taxonomy does not cover; callers let
    those propagate.
    """
    if isinstance(error, DownloadError):
        try:
            return ErrorCode(error.error_code)
        except ValueError:
            return ErrorCode.DOWNLOAD_FAILED
    if isinstance(error, AnalysisError):
        return ErrorCode.ANALYSIS_FAILED if error.retryable else ErrorCode.VALIDATION_FAILED
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCode.CONNECTION_FAILED
    if isinstance(error, PermissionError):
        return ErrorCode.ACCESS_DENIED
    if isinstance(error, FileNotFoundError):
        return ErrorCode.FILE_NOT_FOUND
    return None


def error_code_descriptions() -> dict[str, dict[str, object]]:
    return {
        code.value: {"description": code.description, "retryable": code.retryable}
        for code in ErrorCode
    }
