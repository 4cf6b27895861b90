# src/tracking/status_tracker.py — v2
"""File status tracker: the FileProcessingRecord state machine.

transition() is the only mutation path for record status. Every applied
transition is appended to the record's processing log.

State machine:
    discovered -> queued | skipped
    queued     -> downloading | skipped
    downloading -> processing | failed
    processing -> completed | failed
    failed     -> retrying        (retryable code and retry budget left)
    retrying   -> queued | skipped
    completed, skipped: terminal

A failed record that cannot move to retrying is terminal. Skipped
records never consume retry budget: a record skipped while waiting on a
retry gets retry_count 0, and the retries it used are kept in the log.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import InvalidTransition, RecordNotFound
from audiobatch.core.models import (
    FileProcessingRecord,
    FileStatus,
    ProcessingLogEntry,
)
from audiobatch.providers.models import RemoteFile
from audiobatch.store.base_store import BaseStore
from audiobatch.tracking.error_codes import error_code_descriptions, is_retryable
from audiobatch.tracking.models import (
    ErrorFileEntry,
    ErrorSummary,
    FileTimeline,
    ProcessingStats,
    RecordPage,
    RecordQuery,
)

logger = logging.getLogger(__name__)

S = FileStatus

STATUS_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    S.DISCOVERED: frozenset({S.QUEUED, S.SKIPPED}),
    S.QUEUED: frozenset({S.DOWNLOADING, S.SKIPPED}),
    S.DOWNLOADING: frozenset({S.PROCESSING, S.FAILED}),
    S.PROCESSING: frozenset({S.COMPLETED, S.FAILED}),
    S.FAILED: frozenset({S.RETRYING}),
    S.RETRYING: frozenset({S.QUEUED, S.SKIPPED}),
    S.COMPLETED: frozenset(),
    S.SKIPPED: frozenset(),
}

STATUS_DESCRIPTIONS: dict[FileStatus, str] = {
    S.DISCOVERED: "File discovered in external folder",
    S.QUEUED: "File queued for processing",
    S.DOWNLOADING: "File being transferred from the storage provider",
    S.PROCESSING: "File handed to analysis and awaiting its result",
    S.COMPLETED: "File processing completed successfully",
    S.FAILED: "File processing failed",
    S.RETRYING: "File waiting to be retried after failure",
    S.SKIPPED: "File skipped by admission rules or cancellation",
}

_FINISHED = frozenset({S.COMPLETED, S.FAILED, S.SKIPPED})
_ERROR_FIELDS = ("error_code", "error_message", "error_details")
_SHORT_MESSAGE_LEN = 50


def is_terminal(record: FileProcessingRecord) -> bool:
    """True once the record can never change status automatically."""
    if record.status in (S.COMPLETED, S.SKIPPED):
        return True
    if record.status == S.FAILED:
        return not can_auto_retry(record)
    return False


def can_auto_retry(record: FileProcessingRecord) -> bool:
    return (
        record.status == S.FAILED
        and is_retryable(record.error_code)
        and record.retry_count < record.max_retries
    )


def _shorten(message: str) -> str:
    if len(message) <= _SHORT_MESSAGE_LEN:
        return message
    return message[:_SHORT_MESSAGE_LEN] + "..."


class FileStatusTracker:
    """Owns record creation, status transitions and record queries."""

    def __init__(self, store: BaseStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._lock = asyncio.Lock()

    # === MUTATIONS ===

    async def create_record(
        self,
        job_id: str,
        file: RemoteFile,
        max_retries: int,
    ) -> FileProcessingRecord:
        """Create a record in ``discovered`` status."""
        now = self._clock.now()
        record = FileProcessingRecord(
            batch_job_id=job_id,
            file_name=file.name,
            remote_path=file.path,
            file_size=file.size,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        await self._store.save_record(record)
        await self._log(record, "discovered", None, S.DISCOVERED, f"File discovered: {file.path}")
        return record

    async def transition(
        self,
        record_id: str,
        new_status: FileStatus,
        detail: dict[str, Any] | None = None,
    ) -> FileProcessingRecord:
        """Apply one legal status change and return the updated record.

        Args:
            record_id: Record to change.
            new_status: Target status.
            detail: Optional fields for the new state: error_code,
                error_message, error_details, local_path, result_ref,
                message.

        Raises:
            RecordNotFound: Unknown record.
            InvalidTransition: Change not allowed from the current status,
                or failed -> retrying without a retryable code and budget.
        """
        detail = detail or {}
        async with self._lock:
            record = await self._require(record_id)
            current = record.status

            if new_status not in STATUS_TRANSITIONS[current]:
                raise InvalidTransition(record_id, current.value, new_status.value)

            if current == S.FAILED and new_status == S.RETRYING:
                if not is_retryable(record.error_code):
                    raise InvalidTransition(
                        record_id, current.value, new_status.value,
                        f"error code {record.error_code} is not retryable",
                    )
                if record.retry_count >= record.max_retries:
                    raise InvalidTransition(
                        record_id, current.value, new_status.value,
                        f"retry budget exhausted ({record.retry_count}/{record.max_retries})",
                    )
                record.retry_count += 1

            log_details = self._log_details(detail)
            if new_status == S.SKIPPED and record.retry_count:
                log_details["retries_before_skip"] = record.retry_count
                record.retry_count = 0

            self._apply(record, new_status, detail)
            await self._store.save_record(record)

        event = "retry" if new_status == S.RETRYING else "status_change"
        message = detail.get("message") or f"{current.value} -> {new_status.value}"
        await self._log(record, event, current, new_status, message, log_details)
        logger.debug(
            "Record %s: %s -> %s", record_id, current.value, new_status.value,
        )
        return record

    async def retry(self, record_id: str) -> FileProcessingRecord:
        """Operator retry: requeue a failed record regardless of budget.

        retry_count is left unchanged and the error fields are cleared.

        Raises:
            RecordNotFound: Unknown record.
            InvalidTransition: The record is not in ``failed`` status.
        """
        async with self._lock:
            record = await self._require(record_id)
            if record.status != S.FAILED:
                raise InvalidTransition(
                    record_id, record.status.value, S.RETRYING.value,
                    "only failed records can be retried",
                )
            self._apply(record, S.RETRYING, {})
            for field in _ERROR_FIELDS:
                setattr(record, field, None)
            self._apply(record, S.QUEUED, {})
            await self._store.save_record(record)

        await self._log(record, "manual_retry", S.FAILED, S.QUEUED, "Manual retry requested")
        logger.info("Record %s requeued by manual retry", record_id)
        return record

    async def requeue_stale(self, record_id: str) -> FileProcessingRecord:
        """Recovery path: move an in-flight record left by a dead process back to queued."""
        async with self._lock:
            record = await self._require(record_id)
            if not record.is_in_flight:
                raise InvalidTransition(
                    record_id, record.status.value, S.QUEUED.value,
                    "only downloading or processing records can be recovered",
                )
            previous = record.status
            self._apply(record, S.QUEUED, {})
            record.local_path = None
            record.processing_started_at = None
            await self._store.save_record(record)

        await self._log(
            record, "recovered", previous, S.QUEUED, "Requeued stale in-flight record on startup",
        )
        return record

    def _apply(self, record: FileProcessingRecord, new_status: FileStatus, detail: dict[str, Any]) -> None:
        now = self._clock.now()
        record.status = new_status
        record.updated_at = now

        if new_status == S.DOWNLOADING and record.processing_started_at is None:
            record.processing_started_at = now
        if new_status in _FINISHED:
            record.processing_completed_at = now
        if new_status == S.COMPLETED:
            for field in _ERROR_FIELDS:
                setattr(record, field, None)

        for key in ("local_path", "result_ref", *_ERROR_FIELDS):
            if key in detail:
                setattr(record, key, detail[key])

    @staticmethod
    def _log_details(detail: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in detail.items() if k != "message" and v is not None}

    async def _log(
        self,
        record: FileProcessingRecord,
        event: str,
        from_status: FileStatus | None,
        to_status: FileStatus | None,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        await self._store.append_log(
            ProcessingLogEntry(
                record_id=record.id,
                timestamp=self._clock.now(),
                event=event,
                from_status=from_status,
                to_status=to_status,
                message=message,
                details=details or {},
            )
        )

    async def _require(self, record_id: str) -> FileProcessingRecord:
        record = await self._store.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    # === QUERIES ===

    async def get_record(self, record_id: str) -> FileProcessingRecord:
        return await self._require(record_id)

    async def list_records(self, query: RecordQuery | None = None) -> RecordPage:
        query = query or RecordQuery()
        records = await self._store.list_records(
            job_id=query.job_id,
            statuses={query.status} if query.status else None,
        )
        if query.error_code:
            records = [r for r in records if r.error_code == query.error_code]
        if query.search:
            needle = query.search.lower()
            records = [
                r for r in records
                if needle in r.file_name.lower() or needle in r.remote_path.lower()
            ]

        records.sort(
            key=lambda r: (getattr(r, query.sort_by) is None, getattr(r, query.sort_by) or 0),
            reverse=query.descending,
        )
        page = records[query.offset: query.offset + query.limit]
        return RecordPage(items=page, total=len(records), limit=query.limit, offset=query.offset)

    async def get_processing_stats(
        self,
        job_id: str | None = None,
        status: FileStatus | None = None,
    ) -> ProcessingStats:
        records = await self._store.list_records(
            job_id=job_id, statuses={status} if status else None,
        )
        stats = ProcessingStats(total=len(records))
        if not records:
            return stats

        total_size = 0
        durations: list[float] = []
        for record in records:
            stats.by_status[record.status.value] = stats.by_status.get(record.status.value, 0) + 1
            total_size += record.file_size or 0
            stats.total_retries += record.retry_count
            if record.processing_started_at and record.processing_completed_at:
                durations.append(
                    (record.processing_completed_at - record.processing_started_at).total_seconds()
                )

        stats.average_file_size = total_size / len(records)
        if durations:
            stats.average_processing_seconds = sum(durations) / len(durations)

        completed = stats.by_status.get(S.COMPLETED.value, 0)
        failed = stats.by_status.get(S.FAILED.value, 0)
        if completed + failed:
            stats.success_rate = completed / (completed + failed) * 100
        return stats

    async def get_file_processing_logs(self, record_id: str) -> FileTimeline:
        record = await self._require(record_id)
        return FileTimeline(record=record, entries=await self._store.get_logs(record_id))

    async def get_batch_job_error_summary(self, job_id: str) -> ErrorSummary:
        records = await self._store.list_records(
            job_id=job_id, statuses={S.FAILED, S.SKIPPED},
        )
        summary = ErrorSummary(total_errors=len(records))
        for record in records:
            if record.error_code:
                summary.by_error_code[record.error_code] = (
                    summary.by_error_code.get(record.error_code, 0) + 1
                )
            if record.error_message:
                short = _shorten(record.error_message)
                summary.by_error_message[short] = summary.by_error_message.get(short, 0) + 1
            summary.files.append(
                ErrorFileEntry(
                    record_id=record.id,
                    file_name=record.file_name,
                    status=record.status,
                    error_code=record.error_code,
                    error_message=record.error_message,
                )
            )
        return summary

    @staticmethod
    def get_status_transitions() -> dict[str, list[str]]:
        return {
            status.value: sorted(s.value for s in targets)
            for status, targets in STATUS_TRANSITIONS.items()
        }

    @staticmethod
    def get_status_descriptions() -> dict[str, str]:
        return {status.value: text for status, text in STATUS_DESCRIPTIONS.items()}

    @staticmethod
    def get_error_code_descriptions() -> dict[str, dict[str, object]]:
        return error_code_descriptions()
