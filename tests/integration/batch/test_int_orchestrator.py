# tests/integration/batch/test_int_orchestrator.py — v2
"""Integration tests for BatchOrchestrator — full jobs over fake providers.

Covers the end-to-end scenarios (happy path, admission skips, retry then
success, storage outage, unknown provider) plus cancellation, bounded
concurrency, manual retry, reruns, recovery after restart and auto start.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from audiobatch.batch.orchestrator import clamp_workers
from audiobatch.core.errors import (
    AnalysisError,
    BatchError,
    FolderInactive,
    FolderNotFound,
    JobNotActive,
    JobNotFound,
    JobStillRunning,
    ProviderNotFound,
)
from audiobatch.core.models import (
    BatchJob,
    BatchJobOptions,
    ExternalFolderConfig,
    FileStatus,
    JobStatus,
    NotificationConfig,
)
from audiobatch.providers.models import RemoteFile


async def _settle(ticks: int = 50) -> None:
    for _ in range(ticks):
        await asyncio.sleep(0)


async def _add_folder(store, storage_type: str = "fake", **processing: Any) -> ExternalFolderConfig:
    folder = ExternalFolderConfig(
        name="Calls",
        storage_config={"type": storage_type, "config": {}},
        monitor_config={"type": "polling", "config": {"use_storage": True, "path": "calls", "scan_interval": 60}},
        processing_config={"allowed_extensions": [".mp3", ".wav"], **processing},
    )
    await store.save_folder(folder)
    return folder


async def _subscribe(store, *events: str) -> None:
    await store.save_notification_config(
        NotificationConfig(type="capture", name="capture", conditions=list(events))
    )


async def _records(store, job_id: str) -> dict[str, Any]:
    return {r.file_name: r for r in await store.list_records(job_id=job_id)}


ALL_EVENTS = ("file_processed", "file_failed", "batch_completed", "batch_failed", "batch_cancelled")


# ── End-to-end scenarios ────────────────────────────────────────


class TestScenarios:
    @pytest.mark.asyncio
    async def test_all_files_complete(self, memory_store, make_orchestrator, analyzer, outbox):
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "batch_completed")
        orchestrator = make_orchestrator()

        result = await orchestrator.start_batch_processing(
            folder.id, BatchJobOptions(max_concurrent_files=2),
        )
        assert result.total_files == 3
        job = await orchestrator.wait_for_job(result.job_id)

        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files, job.skipped_files) == (3, 0, 0)
        assert job.error_summary is None
        assert job.started_at is not None and job.completed_at is not None
        records = await _records(memory_store, job.id)
        assert {r.status for r in records.values()} == {FileStatus.COMPLETED}
        assert records["a.mp3"].result_ref == "ref:a.mp3"
        assert analyzer.calls[0]["folder_id"] == folder.id
        assert [n.type for n in outbox] == ["batch_completed"]
        assert outbox[0].data["processed_files"] == 3
        assert orchestrator.get_active_batch_jobs() == []

    @pytest.mark.asyncio
    async def test_disallowed_extension_is_skipped(self, memory_store, make_orchestrator, backend):
        backend.files["calls/notes.txt"] = b"meeting notes"
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        result = await orchestrator.start_batch_processing(folder.id)
        assert (result.total_files, result.skipped_files) == (3, 1)
        job = await orchestrator.wait_for_job(result.job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.discovered_files == 4
        assert (job.processed_files, job.failed_files, job.skipped_files) == (3, 0, 1)
        assert job.accounted_files == job.discovered_files
        notes =(await _records(memory_store, job.id))["notes.txt"]
        assert notes.status == FileStatus.SKIPPED
        assert notes.error_code == "UNSUPPORTED_FORMAT"
        assert "calls/notes.txt" not in backend.downloads

    @pytest.mark.asyncio
    async def test_retry_then_success(self, memory_store, make_orchestrator, backend, outbox):
        backend.fail("calls/a.mp3", "CONNECTION_FAILED", times=2)
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, *ALL_EVENTS)
        orchestrator = make_orchestrator(retry_config={"max_retries": 3})

        result = await orchestrator.start_batch_processing(folder.id)
        job = await orchestrator.wait_for_job(result.job_id)

        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files) == (3, 0)
        record = (await _records(memory_store, job.id))["a.mp3"]
        assert record.status == FileStatus.COMPLETED
        assert record.retry_count == 2
        assert record.error_code is None
        assert backend.downloads.count("calls/a.mp3") == 3
        assert "file_failed" not in [n.type for n in outbox]

        logs = await memory_store.get_logs(record.id)
        assert [e.event for e in logs].count("retry") == 2

    @pytest.mark.asyncio
    async def test_storage_outage_fails_every_file(self, memory_store, make_orchestrator, backend, outbox):
        backend.offline = True
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "batch_completed", "batch_failed", "file_failed")
        orchestrator = make_orchestrator(retry_config={"max_retries": 0})

        result = await orchestrator.start_batch_processing(folder.id)
        job = await orchestrator.wait_for_job(result.job_id)

        assert job.status == JobStatus.FAILED
        assert (job.processed_files, job.failed_files) == (0, 3)
        assert job.error_summary["by_error_code"] == {"CONNECTION_FAILED": 3}
        for record in (await _records(memory_store, job.id)).values():
            assert record.status == FileStatus.FAILED
            assert record.error_details == {
                "stage": "download", "exception": "DownloadError", "native_code": "ECONNREFUSED",
            }

        types = [n.type for n in outbox]
        assert types.count("file_failed") == 3
        assert types[-2:] == ["batch_completed", "batch_failed"]
        completed = outbox[-2]
        assert completed.data["error_summary"]["by_error_code"] == {"CONNECTION_FAILED": 3}
        assert completed.data["completion_time"]

    @pytest.mark.asyncio
    async def test_unknown_storage_type_creates_no_job(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store, storage_type="ftp")
        orchestrator = make_orchestrator()

        with pytest.raises(ProviderNotFound) as exc_info:
            await orchestrator.start_batch_processing(folder.id)
        assert "fake" in exc_info.value.available
        assert await memory_store.list_jobs() == []


# ── Concurrency and cancellation ────────────────────────────────


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_workers(self, memory_store, make_orchestrator, backend):
        for i in range(4):
            backend.files[f"calls/extra{i}.mp3"] = b"x" * 10
        gates = [backend.gate(path) for path in backend.files]
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        result = await orchestrator.start_batch_processing(
            folder.id, BatchJobOptions(max_concurrent_files=2),
        )
        await _settle()
        assert backend.active == 2
        status = orchestrator.get_system_status()
        assert status["files_in_flight"] == 2
        assert status["files_queued"] == 5

        for gate in gates:
            gate.set()
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.processed_files == 7
        assert backend.peak == 2

    def test_worker_bounds(self):
        assert clamp_workers(0) == 1
        assert clamp_workers(50) == 20
        assert clamp_workers(7) == 7

    @pytest.mark.asyncio
    async def test_cancel_lets_in_flight_finish(self, memory_store, make_orchestrator, backend, outbox):
        gate = backend.gate("calls/a.mp3")
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "batch_completed", "batch_cancelled")
        orchestrator = make_orchestrator()

        result = await orchestrator.start_batch_processing(
            folder.id, BatchJobOptions(max_concurrent_files=1),
        )
        await _settle()
        cancelling = await orchestrator.stop_batch_processing(result.job_id)
        assert cancelling.status == JobStatus.CANCELLING

        gate.set()
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.status == JobStatus.CANCELLED
        assert (job.processed_files, job.failed_files, job.skipped_files) == (1, 0, 2)
        assert job.error_summary["by_error_code"] == {"CANCELLED": 2}
        records = await _records(memory_store, job.id)
        assert records["a.mp3"].status == FileStatus.COMPLETED
        assert records["b.mp3"].status == FileStatus.SKIPPED
        assert records["b.mp3"].error_code == "CANCELLED"
        assert [n.type for n in outbox] == ["batch_cancelled"]

        with pytest.raises(JobNotActive):
            await orchestrator.stop_batch_processing(job.id)

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, memory_store, make_orchestrator, backend, manual_clock):
        backend.fail("calls/a.mp3", "TIMEOUT")
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(retry_config={"delay_seconds": 30})

        result = await orchestrator.start_batch_processing(folder.id)
        await _settle()
        assert manual_clock.pending_sleepers == 1

        await orchestrator.stop_batch_processing(result.job_id)
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.status == JobStatus.CANCELLED
        assert (job.processed_files, job.skipped_files) == (2, 1)
        assert manual_clock.pending_sleepers == 0
        record = (await _records(memory_store, job.id))["a.mp3"]
        assert record.status == FileStatus.SKIPPED
        assert record.error_code == "CANCELLED"
        assert record.retry_count == 0

    @pytest.mark.asyncio
    async def test_unknown_job(self, make_orchestrator):
        with pytest.raises(JobNotFound):
            await make_orchestrator().stop_batch_processing("missing")


# ── Retry policy ────────────────────────────────────────────────


class TestRetries:
    @pytest.mark.asyncio
    async def test_exponential_backoff(self, memory_store, make_orchestrator, backend, manual_clock):
        backend.fail("calls/a.mp3", "DOWNLOAD_FAILED", times=2)
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(retry_config={"delay_seconds": 10})
        result = await orchestrator.start_batch_processing(folder.id)
        await _settle()

        async def status() -> tuple[FileStatus, int]:
            record = (await _records(memory_store, result.job_id))["a.mp3"]
            return record.status, record.retry_count

        assert await status() == (FileStatus.RETRYING, 1)
        await manual_clock.advance(9)
        await _settle()
        assert await status() == (FileStatus.RETRYING, 1)

        await manual_clock.advance(1)
        await _settle()
        assert await status() == (FileStatus.RETRYING, 2)

        await manual_clock.advance(19)
        await _settle()
        assert await status() == (FileStatus.RETRYING, 2)

        await manual_clock.advance(1)
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.status == JobStatus.COMPLETED
        assert await status() == (FileStatus.COMPLETED, 2)

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, memory_store, make_orchestrator, backend, outbox):
        backend.fail("calls/a.mp3", "CONNECTION_FAILED", times=5)
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "file_failed")
        orchestrator = make_orchestrator(retry_config={"max_retries": 2})

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        record = (await _records(memory_store, job.id))["a.mp3"]
        assert record.status == FileStatus.FAILED
        assert record.retry_count == 2
        assert backend.downloads.count("calls/a.mp3") == 3
        assert len(outbox) == 1
        assert outbox[0].data["retry_count"] == 2

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, memory_store, make_orchestrator, backend):
        backend.fail("calls/a.mp3", "FILE_NOT_FOUND", times=5)
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        record = (await _records(memory_store, job.id))["a.mp3"]
        assert record.retry_count == 0
        assert backend.downloads.count("calls/a.mp3") == 1

    @pytest.mark.asyncio
    async def test_retry_disabled(self, memory_store, make_orchestrator, backend):
        backend.fail("calls/a.mp3", "TIMEOUT")
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(retry_config={"enabled": False})

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        record = (await _records(memory_store, job.id))["a.mp3"]
        assert record.max_retries == 0
        assert record.status == FileStatus.FAILED

    @pytest.mark.asyncio
    async def test_analysis_failure_stage(self, memory_store, make_orchestrator, analyzer):
        analyzer.errors["b.mp3"] = AnalysisError("corrupt audio", retryable=False)
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        record = (await _records(memory_store, job.id))["b.mp3"]
        assert record.error_code == "VALIDATION_FAILED"
        assert record.error_details["stage"] == "analysis"
        assert record.local_path.endswith(".mp3")

    @pytest.mark.asyncio
    async def test_each_attempt_downloads_to_new_path(self, memory_store, make_orchestrator, backend):
        backend.fail("calls/a.mp3", "TIMEOUT", times=2)
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(retry_config={"max_retries": 3})

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        record = (await _records(memory_store, job.id))["a.mp3"]
        attempts = [p for p in backend.targets if Path(p).name.startswith(record.id)]
        assert len(attempts) == 3
        assert len(set(attempts)) == 3
        assert record.local_path == attempts[-1]
        assert record.local_path.endswith(f"{record.id}.3.mp3")

    @pytest.mark.asyncio
    async def test_manual_retry_in_running_job(self, memory_store, make_orchestrator, backend):
        backend.fail("calls/a.mp3", "FILE_NOT_FOUND")
        gate = backend.gate("calls/c.wav")
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        result = await orchestrator.start_batch_processing(
            folder.id, BatchJobOptions(max_concurrent_files=1),
        )
        await _settle()
        failed = (await _records(memory_store, result.job_id))["a.mp3"]
        assert failed.status == FileStatus.FAILED
        assert (await orchestrator.get_job(result.job_id)).failed_files == 1

        retried = await orchestrator.retry_file(failed.id)
        assert retried.status == FileStatus.QUEUED
        assert retried.retry_count == 0

        gate.set()
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files) == (3, 0)

        with pytest.raises(JobNotActive):
            await orchestrator.retry_file(failed.id)

    @pytest.mark.asyncio
    async def test_rerun_failed(self, memory_store, make_orchestrator, backend):
        backend.fail("calls/a.mp3", "CONNECTION_FAILED")
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(retry_config={"max_retries": 0})

        first = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        assert first.status == JobStatus.FAILED

        rerun = await orchestrator.rerun_failed(first.id)
        assert rerun.total_files == 1
        second = await orchestrator.wait_for_job(rerun.job_id)
        assert second.status == JobStatus.COMPLETED
        assert second.name == f"{first.name} (rerun)"
        assert list(await _records(memory_store, second.id)) == ["a.mp3"]

        with pytest.raises(BatchError, match="no failed files"):
            await orchestrator.rerun_failed(second.id)

    @pytest.mark.asyncio
    async def test_rerun_refused_while_running(self, memory_store, make_orchestrator, backend):
        gate = backend.gate("calls/a.mp3")
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        result = await orchestrator.start_batch_processing(folder.id)
        await _settle()

        with pytest.raises(JobStillRunning):
            await orchestrator.rerun_failed(result.job_id)
        gate.set()
        await orchestrator.wait_for_job(result.job_id)


# ── Job outcome policy and errors ───────────────────────────────


class TestJobOutcome:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("policy,expected,events", [
        ("any_failure", JobStatus.FAILED, ["batch_completed", "batch_failed"]),
        ("all_failed", JobStatus.COMPLETED, ["batch_completed"]),
    ])
    async def test_failure_policy(
        self, memory_store, make_orchestrator, backend, outbox, policy, expected, events,
    ):
        backend.fail("calls/a.mp3", "ACCESS_DENIED")
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "batch_completed", "batch_failed")
        orchestrator = make_orchestrator(job_failure_policy=policy)

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        assert job.status == expected
        assert [n.type for n in outbox] == events

    @pytest.mark.asyncio
    async def test_skipped_files_never_fail_job(self, memory_store, make_orchestrator, backend):
        backend.files["calls/huge.mp3"] = b"x" * 5000
        folder = await _add_folder(memory_store, max_file_size=1000)
        orchestrator = make_orchestrator()

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        assert job.status == JobStatus.COMPLETED
        assert (job.failed_files, job.skipped_files) == (0, 1)
        assert job.error_summary["by_error_code"] == {"FILE_TOO_LARGE": 1}

    @pytest.mark.asyncio
    async def test_empty_folder(self, memory_store, make_orchestrator, backend):
        backend.files.clear()
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()

        job = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        assert job.status == JobStatus.COMPLETED
        assert job.total_files == 0

    @pytest.mark.asyncio
    async def test_unclassified_error_propagates(
        self, memory_store, make_orchestrator, analyzer, backend, outbox,
    ):
        analyzer.errors["a.mp3"] = KeyError("result")
        folder = await _add_folder(memory_store)
        await _subscribe(memory_store, "batch_completed", "batch_failed")
        orchestrator = make_orchestrator(max_concurrent_files=1)

        result = await orchestrator.start_batch_processing(folder.id)
        with pytest.raises(KeyError):
            await orchestrator.wait_for_job(result.job_id)
        assert orchestrator.get_active_batch_jobs() == []
        assert backend.disconnects == 1

        job = await orchestrator.get_job(result.job_id)
        assert job.status == JobStatus.FAILED
        assert job.completed_at is not None
        assert (job.processed_files, job.failed_files, job.skipped_files) == (0, 1, 2)
        assert job.error_summary["by_error_code"] == {"INTERNAL_ERROR": 3}
        assert await orchestrator.count_active_jobs(folder.id) == 0
        assert [n.type for n in outbox] == ["batch_completed", "batch_failed"]

        records = await _records(memory_store, job.id)
        assert records["a.mp3"].status == FileStatus.FAILED
        assert records["a.mp3"].error_code == "INTERNAL_ERROR"
        assert records["a.mp3"].error_details == {"exception": "KeyError"}
        assert {records["b.mp3"].status, records["c.wav"].status} == {FileStatus.SKIPPED}

        with pytest.raises(JobNotActive):
            await orchestrator.stop_batch_processing(job.id)

    @pytest.mark.asyncio
    async def test_folder_checks(self, memory_store, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(FolderNotFound):
            await orchestrator.start_batch_processing("missing")

        folder = await _add_folder(memory_store)
        await memory_store.save_folder(folder.model_copy(update={"is_active": False}))
        with pytest.raises(FolderInactive):
            await orchestrator.start_batch_processing(folder.id)

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        first = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        second = await orchestrator.wait_for_job(
            (await orchestrator.start_batch_processing(folder.id)).job_id
        )
        assert first.id != second.id
        assert set(await _records(memory_store, first.id)) == set(await _records(memory_store, second.id))
        assert await orchestrator.count_active_jobs(folder.id) == 0


# ── Deferred start ──────────────────────────────────────────────


class TestPendingJobs:
    @pytest.mark.asyncio
    async def test_start_later(self, memory_store, make_orchestrator, backend):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(immediate_processing=False)

        result = await orchestrator.start_batch_processing(folder.id)
        pending = await orchestrator.get_job(result.job_id)
        assert pending.status == JobStatus.PENDING
        assert backend.disconnects == 1
        assert {r.status for r in (await _records(memory_store, pending.id)).values()} == {
            FileStatus.DISCOVERED
        }

        await orchestrator.start_pending_job(result.job_id)
        job = await orchestrator.wait_for_job(result.job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.processed_files == 3

        with pytest.raises(JobNotActive):
            await orchestrator.start_pending_job(result.job_id)

    @pytest.mark.asyncio
    async def test_cancel_pending(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        result = await orchestrator.start_batch_processing(
            folder.id, BatchJobOptions(immediate_processing=False),
        )

        job = await orchestrator.stop_batch_processing(result.job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.skipped_files == 3

    @pytest.mark.asyncio
    async def test_foreground_processing(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator(background_processing=False, auto_start=False)

        result = await orchestrator.start_batch_processing(folder.id)
        job = await orchestrator.get_job(result.job_id)
        assert job.status == JobStatus.COMPLETED


# ── Recovery ────────────────────────────────────────────────────


class TestReconcile:
    async def _interrupted_job(self, store, orchestrator, folder, status: JobStatus) -> BatchJob:
        """Job left behind by a dead process: one completed, one downloading, one queued."""
        job = BatchJob(folder_id=folder.id, name="interrupted", status=status, total_files=3)
        tracker = orchestrator.tracker
        listed = {
            name: RemoteFile(name=name, path=f"calls/{name}", size=20)
            for name in ("a.mp3", "b.mp3", "c.wav")
        }

        done = await tracker.create_record(job.id, listed["a.mp3"], 3)
        for s in (FileStatus.QUEUED, FileStatus.DOWNLOADING, FileStatus.PROCESSING, FileStatus.COMPLETED):
            await tracker.transition(done.id, s)
        stale = await tracker.create_record(job.id, listed["b.mp3"], 3)
        for s in (FileStatus.QUEUED, FileStatus.DOWNLOADING):
            await tracker.transition(stale.id, s)
        queued = await tracker.create_record(job.id, listed["c.wav"], 3)
        await tracker.transition(queued.id, FileStatus.QUEUED)

        job.processed_files = 1
        await store.save_job(job)
        return job

    @pytest.mark.asyncio
    async def test_resume_running_job(self, memory_store, make_orchestrator, backend):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        job = await self._interrupted_job(memory_store, orchestrator, folder, JobStatus.RUNNING)

        report = await orchestrator.reconcile_stale_records()
        assert report.requeued_records == 1
        assert report.resumed_jobs == [job.id]

        finished = await orchestrator.wait_for_job(job.id)
        assert finished.status == JobStatus.COMPLETED
        assert finished.processed_files == 3
        assert sorted(backend.downloads) == ["calls/b.mp3", "calls/c.wav"]

    @pytest.mark.asyncio
    async def test_cancelling_job_is_cancelled(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        job = await self._interrupted_job(memory_store, orchestrator, folder, JobStatus.CANCELLING)

        report = await orchestrator.reconcile_stale_records()
        assert report.cancelled_jobs == [job.id]
        cancelled = await orchestrator.get_job(job.id)
        assert cancelled.status == JobStatus.CANCELLED
        assert (cancelled.processed_files, cancelled.skipped_files) == (1, 2)

    @pytest.mark.asyncio
    async def test_requeue_only(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        job = await self._interrupted_job(memory_store, orchestrator, folder, JobStatus.RUNNING)

        report = await orchestrator.reconcile_stale_records(resume=False)
        assert report.resumed_jobs == []
        statuses = {r.file_name: r.status for r in await memory_store.list_records(job_id=job.id)}
        assert statuses["b.mp3"] == FileStatus.QUEUED

    @pytest.mark.asyncio
    async def test_missing_folder_reported(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        orchestrator = make_orchestrator()
        job = await self._interrupted_job(memory_store, orchestrator, folder, JobStatus.RUNNING)
        await memory_store.delete_folder(folder.id)

        report = await orchestrator.reconcile_stale_records()
        assert report.failed_resumes == [job.id]


# ── Auto start ──────────────────────────────────────────────────


class TestAutoStart:
    @pytest.mark.asyncio
    async def test_new_files_start_jobs(self, memory_store, make_orchestrator, backend, manual_clock):
        folder = await _add_folder(memory_store, auto_start=True)
        orchestrator = make_orchestrator()

        handle = await orchestrator.enable_auto_start(folder.id)
        assert await orchestrator.enable_auto_start(folder.id) == handle
        jobs = await orchestrator.list_jobs(folder_id=folder.id)
        assert len(jobs) == 1
        await orchestrator.wait_for_job(jobs[0].id)

        backend.files["calls/d.mp3"] = b"ID3 new"
        await manual_clock.advance(60)
        await _settle()
        jobs = await orchestrator.list_jobs(folder_id=folder.id)
        assert len(jobs) == 2
        newest = await orchestrator.wait_for_job(jobs[0].id)
        assert newest.total_files == 1
        assert list(await _records(memory_store, newest.id)) == ["d.mp3"]

        await manual_clock.advance(60)
        await _settle()
        assert len(await orchestrator.list_jobs(folder_id=folder.id)) == 2

        assert await orchestrator.disable_auto_start(folder.id) is True
        assert await orchestrator.disable_auto_start(folder.id) is False
        assert orchestrator.get_system_status()["auto_start_folders"] == []

    @pytest.mark.asyncio
    async def test_auto_job_outlives_disable(self, memory_store, make_orchestrator, backend):
        gate = backend.gate("calls/a.mp3")
        folder = await _add_folder(memory_store, auto_start=True)
        orchestrator = make_orchestrator(max_concurrent_files=1)
        await orchestrator.enable_auto_start(folder.id)
        await _settle()
        jobs = await orchestrator.list_jobs(folder_id=folder.id)
        assert len(jobs) == 1

        assert await orchestrator.disable_auto_start(folder.id) is True
        gate.set()
        job = await orchestrator.wait_for_job(jobs[0].id)

        assert job.status == JobStatus.COMPLETED
        assert (job.processed_files, job.failed_files) == (3, 0)
        assert sorted(backend.downloads) == ["calls/a.mp3", "calls/b.mp3", "calls/c.wav"]
        assert backend.disconnects == 2

    @pytest.mark.asyncio
    async def test_disabled_for_folder(self, memory_store, make_orchestrator):
        folder = await _add_folder(memory_store)
        with pytest.raises(BatchError, match="Auto start is disabled"):
            await make_orchestrator().enable_auto_start(folder.id)

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, memory_store, make_orchestrator, backend, analyzer):
        gate = backend.gate("calls/a.mp3")
        folder = await _add_folder(memory_store, auto_start=True)
        orchestrator = make_orchestrator(max_concurrent_files=1)
        await orchestrator.enable_auto_start(folder.id)
        await _settle()

        shutdown = asyncio.create_task(orchestrator.shutdown())
        await _settle()
        gate.set()
        await shutdown

        jobs = await orchestrator.list_jobs(folder_id=folder.id)
        assert jobs[0].status == JobStatus.CANCELLED
        assert analyzer.closed is True
        assert orchestrator.get_active_batch_jobs() == []
