# src/batch/admission.py — v1
"""Admission filters applied to discovered files before records are queued."""

from __future__ import annotations

from dataclasses import dataclass, field

from audiobatch.core.models import ProcessingConfig
from audiobatch.providers.models import RemoteFile
from audiobatch.tracking.error_codes import ErrorCode


@dataclass(frozen=True)
class Rejection:
    file: RemoteFile
    error_code: ErrorCode
    message: str


@dataclass
class AdmissionResult:
    """Files split into admitted and rejected, both in discovery order."""

    admitted: list[RemoteFile] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)

    @property
    def discovered(self) -> int:
        return len(self.admitted) + len(self.rejected)


def check_file(file: RemoteFile, rules: ProcessingConfig) -> Rejection | None:
    """Return the rejection for ``file``, or None if it is admitted.

    An empty allowed_extensions list admits every extension.
    """
    if rules.allowed_extensions and file.extension not in rules.allowed_extensions:
        return Rejection(
            file=file,
            error_code=ErrorCode.UNSUPPORTED_FORMAT,
            message=(
                f"File extension {file.extension or '(none)'} is not allowed. "
                f"Allowed: {', '.join(rules.allowed_extensions)}"
            ),
        )
    if rules.max_file_size is not None and file.size > rules.max_file_size:
        return Rejection(
            file=file,
            error_code=ErrorCode.FILE_TOO_LARGE,
            message=f"File size {file.size} exceeds maximum {rules.max_file_size}",
        )
    return None


def apply_admission(files: list[RemoteFile], rules: ProcessingConfig) -> AdmissionResult:
    """Split a scan result. Duplicate paths within one scan are dropped."""
    result = AdmissionResult()
    seen: set[str] = set()
    for file in files:
        if file.path in seen:
            continue
        seen.add(file.path)
        rejection = check_file(file, rules)
        if rejection is None:
            result.admitted.append(file)
        else:
            result.rejected.append(rejection)
    return result
