# src/batch/orchestrator.py — v2
"""Batch orchestrator: drives folder scans through a bounded worker pool.

For one job:
  1. Resolve the folder, create storage + monitor providers, scan.
  2. Apply admission filters; rejected files become skipped records.
  3. Queue admitted records and start k workers (k = max_concurrent_files).
  4. Each worker: queued -> downloading -> processing -> completed, or
     failed. Retryable failures with budget left go to retrying and are
     requeued by a backoff task that does not hold a worker slot.
  5. When every admitted record is terminal the job is finished and the
     notification dispatcher is invoked.

Provider failures become record transitions. Exceptions that the error
taxonomy does not classify stop the job: interrupted files fail with
INTERNAL_ERROR, the job ends failed, and the exception is re-raised from
wait_for_job().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from audiobatch.batch.admission import AdmissionResult, apply_admission
from audiobatch.batch.analysis import BaseAnalyzer
from audiobatch.config.settings import Settings
from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import (
    BatchError,
    FolderInactive,
    FolderNotFound,
    JobNotActive,
    JobNotFound,
    JobStillRunning,
)
from audiobatch.core.models import (
    IN_FLIGHT_STATUSES,
    BatchJob,
    BatchJobOptions,
    ExternalFolderConfig,
    FileProcessingRecord,
    FileStatus,
    GlobalBatchConfig,
    JobFailurePolicy,
    JobStatus,
    StartBatchResult,
)
from audiobatch.logging.context import set_job_context, set_record_context
from audiobatch.notifications.dispatcher import NotificationDispatcher
from audiobatch.providers.base_monitor_provider import BaseMonitorProvider
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import RemoteFile
from audiobatch.providers.registry import ProviderFactory
from audiobatch.store.base_store import BaseStore
from audiobatch.tracking.error_codes import ErrorCode, classify_error
from audiobatch.tracking.status_tracker import FileStatusTracker, can_auto_retry

logger = logging.getLogger(__name__)

MIN_WORKERS = 1
MAX_WORKERS = 20

_UNSTARTED = frozenset({FileStatus.DISCOVERED, FileStatus.QUEUED, FileStatus.RETRYING})
_ACTIVE_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.CANCELLING})


def clamp_workers(value: int) -> int:
    return max(MIN_WORKERS, min(MAX_WORKERS, value))


@dataclass
class _JobRuntime:
    """In-process state of one running job."""

    job: BatchJob
    folder: ExternalFolderConfig
    storage: BaseStorageProvider
    config: GlobalBatchConfig
    dispatcher: NotificationDispatcher
    workers: int
    outstanding: int
    queue: asyncio.Queue[str] = field(default_factory=asyncio.Queue)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    in_flight: set[str] = field(default_factory=set)
    attempts: dict[str, int] = field(default_factory=dict)
    retry_tasks: set[asyncio.Task[None]] = field(default_factory=set)
    cancelling: bool = False
    error: BaseException | None = None
    task: asyncio.Task[BatchJob] | None = None

    def fail(self, exc: BaseException) -> None:
        if self.error is None:
            self.error = exc
        self.done.set()


@dataclass
class _AutoMonitor:
    monitor: BaseMonitorProvider
    storage: BaseStorageProvider
    handle: str


@dataclass
class ReconcileReport:
    """Outcome of the startup recovery pass."""

    requeued_records: int = 0
    resumed_jobs: list[str] = field(default_factory=list)
    cancelled_jobs: list[str] = field(default_factory=list)
    failed_resumes: list[str] = field(default_factory=list)


class BatchOrchestrator:
    """Creates batch jobs for folders and runs them to a terminal status.

    Args:
        store: Configuration / job / record store.
        factory: Provider factory used for storage, monitor and notification
            providers.
        analyzer: External analysis collaborator.
        settings: Application settings (download dir, timeouts).
        global_config: Initial global batch snapshot. Defaults to the one
            built from settings.
        clock: Time source for backoff and timestamps.
    """

    def __init__(
        self,
        store: BaseStore,
        factory: ProviderFactory,
        analyzer: BaseAnalyzer,
        settings: Settings,
        global_config: GlobalBatchConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._factory = factory
        self._analyzer = analyzer
        self._settings = settings
        self._global_config = global_config or settings.global_batch_config()
        self._clock = clock or SystemClock()
        self.tracker = FileStatusTracker(store, clock=self._clock)
        self._active: dict[str, _JobRuntime] = {}
        self._monitors: dict[str, _AutoMonitor] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> ReconcileReport | None:
        """Load the stored global config and run startup reconciliation."""
        stored = await self._store.get_global_config()
        if stored is not None:
            self._global_config = stored
        if self._settings.reconcile_on_startup:
            return await self.reconcile_stale_records()
        return None

    async def shutdown(self) -> None:
        """Stop auto-start monitors, cancel running jobs and wait for them."""
        for folder_id in list(self._monitors):
            await self.disable_auto_start(folder_id)
        for job_id in list(self._active):
            await self.stop_batch_processing(job_id)
        tasks = [rt.task for rt in self._active.values() if rt.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._analyzer.close()

    @property
    def global_config(self) -> GlobalBatchConfig:
        return self._global_config

    def apply_global_config(self, config: GlobalBatchConfig) -> None:
        """Swap the snapshot used by jobs started from now on."""
        self._global_config = config
        logger.info(
            "Applied global batch config: max_concurrent_files=%d, max_retries=%d",
            config.max_concurrent_files, config.retry_config.max_retries,
        )

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    async def start_batch_processing(
        self,
        folder_id: str,
        options: BatchJobOptions | None = None,
    ) -> StartBatchResult:
        """Scan a folder and start a batch job over the admitted files.

        Raises:
            FolderNotFound / FolderInactive: Folder cannot be processed.
            ProviderNotFound / InvalidProviderConfig / ProviderConnectionFailed:
                Provider creation failed; no job is created.
        """
        options = options or BatchJobOptions()
        folder = await self._require_folder(folder_id)
        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        try:
            monitor = await self._factory.create_monitor_provider(
                folder.monitor_config.type, folder.monitor_config.config, storage=storage,
            )
            files = await monitor.scan_for_files(folder.monitor_config.config)
        except BaseException:
            storage.disconnect()
            raise

        admission = apply_admission(files, folder.processing_config)
        logger.info(
            "Scanned folder %s: %d discovered, %d admitted, %d rejected",
            folder.name, admission.discovered, len(admission.admitted), len(admission.rejected),
        )
        return await self._create_job(folder, storage, admission, options)

    async def rerun_failed(
        self,
        job_id: str,
        options: BatchJobOptions | None = None,
    ) -> StartBatchResult:
        """Start a new job over the failed records of a finished job."""
        job = await self._require_job(job_id)
        if not job.is_terminal:
            raise JobStillRunning(job_id, job.status.value)
        failed = await self._store.list_records(job_id=job_id, statuses={FileStatus.FAILED})
        if not failed:
            raise BatchError(f"Batch job {job_id} has no failed files to rerun")

        folder = await self._require_folder(job.folder_id)
        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        admission = AdmissionResult(admitted=[
            RemoteFile(name=r.file_name, path=r.remote_path, size=r.file_size or 0)
            for r in failed
        ])
        options = options or BatchJobOptions(
            name=f"{job.name} (rerun)",
            description=f"Rerun of {len(failed)} failed files from job {job.id}",
            priority=job.priority,
            max_concurrent_files=job.options.max_concurrent_files,
        )
        return await self._create_job(folder, storage, admission, options)

    async def start_pending_job(self, job_id: str) -> StartBatchResult:
        """Launch a job created with immediate_processing disabled."""
        job = await self._require_job(job_id)
        if job.status != JobStatus.PENDING or job_id in self._active:
            raise JobNotActive(job_id, job.status.value)
        folder = await self._require_folder(job.folder_id)
        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        pending = await self._store.list_records(job_id=job_id, statuses={FileStatus.DISCOVERED})
        await self._launch(job, folder, storage, self._global_config, pending, len(pending))
        return StartBatchResult(
            job_id=job.id, total_files=job.total_files, skipped_files=job.skipped_files,
        )

    async def _create_job(
        self,
        folder: ExternalFolderConfig,
        storage: BaseStorageProvider,
        admission: AdmissionResult,
        options: BatchJobOptions,
    ) -> StartBatchResult:
        config = self._global_config
        if options.max_retries is not None:
            max_retries = options.max_retries
        elif config.retry_config.enabled:
            max_retries = config.retry_config.max_retries
        else:
            max_retries = 0

        now = self._clock.now()
        job = BatchJob(
            folder_id=folder.id,
            name=options.name or f"{folder.name} - {now:%Y-%m-%d %H:%M:%S}",
            description=options.description,
            priority=options.priority,
            total_files=len(admission.admitted),
            discovered_files=admission.discovered,
            skipped_files=len(admission.rejected),
            options=options,
            created_at=now,
        )
        await self._store.save_job(job)
        set_job_context(job.id, folder.id)

        for rejection in admission.rejected:
            record = await self.tracker.create_record(job.id, rejection.file, max_retries)
            await self.tracker.transition(record.id, FileStatus.SKIPPED, {
                "error_code": rejection.error_code.value,
                "error_message": rejection.message,
                "message": f"Skipped by admission rules: {rejection.message}",
            })
        records = [
            await self.tracker.create_record(job.id, f, max_retries)
            for f in admission.admitted
        ]
        logger.info(
            "Created batch job %s (%d admitted, %d skipped)",
            job.name, job.total_files, job.skipped_files,
        )

        immediate = (
            options.immediate_processing
            if options.immediate_processing is not None
            else config.immediate_processing
        )
        if not immediate:
            storage.disconnect()
            return StartBatchResult(
                job_id=job.id, total_files=job.total_files, skipped_files=job.skipped_files,
            )

        await self._launch(job, folder, storage, config, records, len(records))
        if not config.background_processing:
            await self.wait_for_job(job.id)
        return StartBatchResult(
            job_id=job.id, total_files=job.total_files, skipped_files=job.skipped_files,
        )

    async def _launch(
        self,
        job: BatchJob,
        folder: ExternalFolderConfig,
        storage: BaseStorageProvider,
        config: GlobalBatchConfig,
        records: list[FileProcessingRecord],
        outstanding: int,
    ) -> _JobRuntime:
        dispatcher = await NotificationDispatcher.from_store(self._store, self._factory)
        rt = _JobRuntime(
            job=job,
            folder=folder,
            storage=storage,
            config=config,
            dispatcher=dispatcher,
            workers=clamp_workers(job.options.max_concurrent_files or config.max_concurrent_files),
            outstanding=outstanding,
        )
        job.status = JobStatus.RUNNING
        job.started_at = job.started_at or self._clock.now()
        await self._store.save_job(job)

        # Admission order is queue order.
        for record in records:
            if record.status != FileStatus.QUEUED:
                await self.tracker.transition(record.id, FileStatus.QUEUED)
            rt.queue.put_nowait(record.id)

        self._active[job.id] = rt
        rt.task = asyncio.create_task(self._run_job(rt), name=f"batch-{job.id[:8]}")
        rt.task.add_done_callback(self._on_job_task_done)
        logger.info("Started batch job %s with %d workers", job.id, rt.workers)
        return rt

    @staticmethod
    def _on_job_task_done(task: asyncio.Task[BatchJob]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Batch job task %s crashed: %r", task.get_name(), exc)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run_job(self, rt: _JobRuntime) -> BatchJob:
        set_job_context(rt.job.id, rt.folder.id)
        try:
            if rt.outstanding == 0:
                rt.done.set()
            workers = [
                asyncio.create_task(self._worker(rt), name=f"worker-{rt.job.id[:8]}-{i}")
                for i in range(rt.workers)
            ]
            try:
                await rt.done.wait()
            finally:
                pending = workers + list(rt.retry_tasks)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                rt.storage.disconnect()

            if rt.error is not None:
                logger.error("Batch job %s stopped by unexpected error: %r", rt.job.id, rt.error)
                try:
                    await self._abort(rt, rt.error)
                except Exception:
                    logger.exception("Could not record failure of batch job %s", rt.job.id)
                raise rt.error
            return await self._finish(rt)
        finally:
            self._active.pop(rt.job.id, None)

    async def _worker(self, rt: _JobRuntime) -> None:
        while not rt.cancelling:
            record_id = await rt.queue.get()
            if rt.cancelling:
                return
            try:
                await self._process_record(rt, record_id)
            except Exception as exc:
                rt.fail(exc)
                return

    async def _process_record(self, rt: _JobRuntime, record_id: str) -> None:
        rt.in_flight.add(record_id)
        stage = "download"
        set_record_context(record_id, stage)
        try:
            record = await self.tracker.transition(record_id, FileStatus.DOWNLOADING)
            attempt = rt.attempts.get(record_id, 0) + 1
            rt.attempts[record_id] = attempt
            local_path = self._local_path_for(rt.job, record, attempt)
            try:
                await asyncio.wait_for(
                    rt.storage.download_file(record.remote_path, local_path),
                    timeout=self._settings.download_timeout_seconds,
                )
                await self.tracker.transition(
                    record_id, FileStatus.PROCESSING, {"local_path": local_path},
                )
                stage = "analysis"
                set_record_context(record_id, stage)
                outcome = await asyncio.wait_for(
                    self._analyzer.analyze(local_path, self._analysis_metadata(rt, record)),
                    timeout=self._settings.analysis_timeout_seconds,
                )
            except Exception as exc:
                code = classify_error(exc)
                if code is None:
                    raise
                await self._handle_failure(rt, record_id, code, exc, stage)
                return

            record = await self.tracker.transition(
                record_id, FileStatus.COMPLETED, {"result_ref": outcome.result_ref},
            )
            await self._count_terminal(rt, "processed_files")
            logger.info("File processed: %s", record.file_name)
            await rt.dispatcher.dispatch("file_processed", {
                "job_id": rt.job.id,
                "batch_job_name": rt.job.name,
                "record_id": record.id,
                "file_name": record.file_name,
                "result_ref": record.result_ref,
                "retry_count": record.retry_count,
            })
        finally:
            rt.in_flight.discard(record_id)
            set_record_context(None)
            if rt.cancelling and not rt.in_flight:
                rt.done.set()

    async def _handle_failure(
        self,
        rt: _JobRuntime,
        record_id: str,
        code: ErrorCode,
        exc: Exception,
        stage: str,
    ) -> None:
        details: dict[str, Any] = {"stage": stage, "exception": type(exc).__name__}
        native_code = getattr(exc, "native_code", None)
        if native_code:
            details["native_code"] = native_code
        record = await self.tracker.transition(record_id, FileStatus.FAILED, {
            "error_code": code.value,
            "error_message": str(exc) or type(exc).__name__,
            "error_details": details,
        })

        if can_auto_retry(record):
            record = await self.tracker.transition(record_id, FileStatus.RETRYING)
            delay = rt.config.retry_config.delay_for(record.retry_count)
            logger.warning(
                "File %s failed (%s), retry %d/%d in %.1fs",
                record.file_name, code.value, record.retry_count, record.max_retries, delay,
                extra={"error_code": code.value, "retry_count": record.retry_count},
            )
            task = asyncio.create_task(self._requeue_after(rt, record_id, delay))
            rt.retry_tasks.add(task)
            task.add_done_callback(rt.retry_tasks.discard)
            return

        logger.error(
            "File %s failed permanently (%s): %s", record.file_name, code.value, exc,
            extra={"error_code": code.value, "retry_count": record.retry_count},
        )
        await self._count_terminal(rt, "failed_files")
        await rt.dispatcher.dispatch("file_failed", {
            "job_id": rt.job.id,
            "batch_job_name": rt.job.name,
            "record_id": record.id,
            "file_name": record.file_name,
            "error_code": code.value,
            "error": record.error_message,
            "retry_count": record.retry_count,
            "timestamp": self._clock.now().isoformat(),
        })

    async def _requeue_after(self, rt: _JobRuntime, record_id: str, delay: float) -> None:
        try:
            await self._clock.sleep(delay)
            if rt.cancelling:
                return
            await self.tracker.transition(record_id, FileStatus.QUEUED)
            rt.queue.put_nowait(record_id)
        except Exception as exc:
            rt.fail(exc)

    async def _count_terminal(self, rt: _JobRuntime, counter: str) -> None:
        async with rt.lock:
            setattr(rt.job, counter, getattr(rt.job, counter) + 1)
            rt.outstanding -= 1
            await self._store.save_job(rt.job)
            if rt.outstanding <= 0:
                rt.done.set()

    def _local_path_for(self, job: BatchJob, record: FileProcessingRecord, attempt: int) -> str:
        # A timed-out download may still be writing its file; never reuse it.
        suffix = Path(record.file_name).suffix
        name = f"{record.id}.{attempt}{suffix}"
        return str(Path(self._settings.download_dir) / job.id / name)

    @staticmethod
    def _analysis_metadata(rt: _JobRuntime, record: FileProcessingRecord) -> dict[str, Any]:
        return {
            "record_id": record.id,
            "job_id": rt.job.id,
            "folder_id": rt.folder.id,
            "file_name": record.file_name,
            "remote_path": record.remote_path,
            "file_size": record.file_size,
        }

    # ------------------------------------------------------------------
    # Job completion
    # ------------------------------------------------------------------

    async def _finish(self, rt: _JobRuntime) -> BatchJob:
        job = rt.job
        if rt.cancelling:
            skipped = await self._skip_unstarted(job.id)
            async with rt.lock:
                job.skipped_files += skipped
            job.status = JobStatus.CANCELLED
        else:
            job.status = self._final_status(job, rt.config.job_failure_policy)
        await self._close_job(job, rt.dispatcher)
        return job.model_copy(deep=True)

    async def _abort(self, rt: _JobRuntime, error: BaseException) -> None:
        """End a job whose workers were stopped by an unclassified exception.

        Interrupted records fail with INTERNAL_ERROR and unstarted ones are
        skipped. Counters are recounted from the records because a worker
        may have been cancelled between a transition and its counter update.
        """
        job = rt.job
        reason = f"{type(error).__name__}: {error}"
        interrupted = await self._store.list_records(
            job_id=job.id, statuses=set(IN_FLIGHT_STATUSES),
        )
        for record in interrupted:
            await self.tracker.transition(record.id, FileStatus.FAILED, {
                "error_code": ErrorCode.INTERNAL_ERROR.value,
                "error_message": f"Batch job stopped by unexpected error: {reason}",
                "error_details": {"exception": type(error).__name__},
            })
        await self._skip_unstarted(
            job.id,
            ErrorCode.INTERNAL_ERROR,
            f"Batch job stopped by unexpected error before the file was processed: {reason}",
        )

        records = await self._store.list_records(job_id=job.id)
        async with rt.lock:
            job.processed_files = sum(1 for r in records if r.status == FileStatus.COMPLETED)
            job.failed_files = sum(1 for r in records if r.status == FileStatus.FAILED)
            job.skipped_files = sum(1 for r in records if r.status == FileStatus.SKIPPED)
            job.status = JobStatus.FAILED
        await self._close_job(job, rt.dispatcher)

    async def _close_job(self, job: BatchJob, dispatcher: NotificationDispatcher) -> None:
        summary = await self.tracker.get_batch_job_error_summary(job.id)
        job.error_summary = None if summary.is_empty else summary.model_dump(mode="json")
        job.completed_at = self._clock.now()
        await self._store.save_job(job)

        logger.info(
            "Batch job %s %s: processed=%d failed=%d skipped=%d total=%d",
            job.id, job.status.value, job.processed_files, job.failed_files,
            job.skipped_files, job.total_files,
        )
        await self._dispatch_job_events(dispatcher, job)

    @staticmethod
    def _final_status(job: BatchJob, policy: JobFailurePolicy) -> JobStatus:
        if policy == JobFailurePolicy.ALL_FAILED:
            failed = job.total_files > 0 and job.failed_files == job.total_files
        else:
            failed = job.failed_files > 0
        return JobStatus.FAILED if failed else JobStatus.COMPLETED

    async def _skip_unstarted(
        self,
        job_id: str,
        code: ErrorCode = ErrorCode.CANCELLED,
        message: str = "Batch job cancelled before the file was processed",
    ) -> int:
        leftovers = await self._store.list_records(job_id=job_id, statuses=set(_UNSTARTED))
        for record in leftovers:
            await self.tracker.transition(record.id, FileStatus.SKIPPED, {
                "error_code": code.value,
                "error_message": message,
            })
        return len(leftovers)

    async def _dispatch_job_events(self, dispatcher: NotificationDispatcher, job: BatchJob) -> None:
        data = {
            "job_id": job.id,
            "batch_job_name": job.name,
            "folder_id": job.folder_id,
            "status": job.status.value,
            "total_files": job.total_files,
            "discovered_files": job.discovered_files,
            "processed_files": job.processed_files,
            "failed_files": job.failed_files,
            "skipped_files": job.skipped_files,
            "error_summary": job.error_summary or {},
            "completion_time": (job.completed_at or self._clock.now()).isoformat(),
        }
        if job.status == JobStatus.CANCELLED:
            await dispatcher.dispatch("batch_cancelled", data)
            return
        await dispatcher.dispatch("batch_completed", data)
        if job.status == JobStatus.FAILED:
            await dispatcher.dispatch("batch_failed", data)

    # ------------------------------------------------------------------
    # Cancellation and retries
    # ------------------------------------------------------------------

    async def stop_batch_processing(self, job_id: str) -> BatchJob:
        """Cooperative cancel: stop dequeuing, let in-flight files finish.

        Raises:
            JobNotFound: Unknown job.
            JobNotActive: Job already reached a terminal status.
        """
        rt = self._active.get(job_id)
        if rt is None:
            job = await self._require_job(job_id)
            if job.status == JobStatus.PENDING:
                return await self._cancel_detached(job)
            raise JobNotActive(job_id, job.status.value)

        if not rt.cancelling:
            rt.cancelling = True
            async with rt.lock:
                rt.job.status = JobStatus.CANCELLING
                await self._store.save_job(rt.job)
            if not rt.in_flight:
                rt.done.set()
            logger.info(
                "Cancelling batch job %s (%d files in flight)", job_id, len(rt.in_flight),
            )
        return rt.job.model_copy(deep=True)

    async def _cancel_detached(self, job: BatchJob) -> BatchJob:
        """Cancel a job that has no runtime (pending, or orphaned by a restart)."""
        job.skipped_files += await self._skip_unstarted(job.id)
        job.status = JobStatus.CANCELLED
        dispatcher = await NotificationDispatcher.from_store(self._store, self._factory)
        await self._close_job(job, dispatcher)
        return job

    async def retry_file(self, record_id: str) -> FileProcessingRecord:
        """Operator retry of a failed record inside a running job.

        Raises:
            RecordNotFound: Unknown record.
            JobNotActive: The record's job is not running.
            InvalidTransition: The record is not failed.
        """
        record = await self.tracker.get_record(record_id)
        rt = self._active.get(record.batch_job_id)
        if rt is None or rt.cancelling or rt.done.is_set():
            job = await self._require_job(record.batch_job_id)
            raise JobNotActive(job.id, job.status.value)

        async with rt.lock:
            if rt.done.is_set():
                raise JobNotActive(rt.job.id, rt.job.status.value)
            updated = await self.tracker.retry(record_id)
            rt.job.failed_files -= 1
            rt.outstanding += 1
            await self._store.save_job(rt.job)
        rt.queue.put_nowait(record_id)
        return updated

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def reconcile_stale_records(self, resume: bool = True) -> ReconcileReport:
        """Recover jobs left running by a previous process.

        In-flight records (downloading / processing) are requeued. Running
        jobs are then resumed, and jobs that were cancelling are cancelled.
        """
        report = ReconcileReport()
        jobs = await self._store.list_jobs(
            statuses={JobStatus.RUNNING, JobStatus.CANCELLING},
        )
        for job in jobs:
            if job.id in self._active:
                continue
            stale = await self._store.list_records(job_id=job.id, statuses=set(IN_FLIGHT_STATUSES))
            for record in stale:
                await self.tracker.requeue_stale(record.id)
            report.requeued_records += len(stale)
            if stale:
                logger.warning("Requeued %d stale records of job %s", len(stale), job.id)

            if not resume:
                continue
            if job.status == JobStatus.CANCELLING:
                await self._cancel_detached(job)
                report.cancelled_jobs.append(job.id)
                continue
            try:
                await self._resume_job(job)
            except BatchError as exc:
                logger.error("Cannot resume batch job %s: %s", job.id, exc)
                report.failed_resumes.append(job.id)
                continue
            report.resumed_jobs.append(job.id)
        return report

    async def _resume_job(self, job: BatchJob) -> None:
        folder = await self._require_folder(job.folder_id)
        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        pending = await self._store.list_records(job_id=job.id, statuses=set(_UNSTARTED))
        await self._launch(job, folder, storage, self._global_config, pending, len(pending))

    # ------------------------------------------------------------------
    # Auto start
    # ------------------------------------------------------------------

    async def enable_auto_start(self, folder_id: str) -> str:
        """Start the folder's monitor and launch a job for every scan with new files."""
        folder = await self._require_folder(folder_id)
        if not (self._global_config.auto_start and folder.processing_config.auto_start):
            raise BatchError(f"Auto start is disabled for folder {folder.name}")
        existing = self._monitors.get(folder_id)
        if existing is not None:
            return existing.handle

        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        monitor = await self._factory.create_monitor_provider(
            folder.monitor_config.type, folder.monitor_config.config, storage=storage,
        )

        async def on_scan(files: list[RemoteFile], handle: str) -> None:
            await self._process_new_files(folder_id, files)

        handle = await monitor.start_monitoring(folder.monitor_config.config, on_scan=on_scan)
        self._monitors[folder_id] = _AutoMonitor(monitor=monitor, storage=storage, handle=handle)
        logger.info("Auto start enabled for folder %s (%s)", folder.name, handle)
        return handle

    async def disable_auto_start(self, folder_id: str) -> bool:
        entry = self._monitors.pop(folder_id, None)
        if entry is None:
            return False
        await entry.monitor.stop_monitoring(entry.handle)
        entry.storage.disconnect()
        return True

    async def _process_new_files(
        self,
        folder_id: str,
        files: list[RemoteFile],
    ) -> None:
        if any(rt.folder.id == folder_id for rt in self._active.values()):
            return
        folder = await self._store.get_folder(folder_id)
        if folder is None or not folder.is_active:
            return

        known: set[str] = set()
        for job in await self._store.list_jobs(folder_id=folder_id):
            known.update(r.remote_path for r in await self._store.list_records(job_id=job.id))
        new_files = [f for f in files if f.path not in known]
        if not new_files:
            return

        admission = apply_admission(new_files, folder.processing_config)
        # The monitor's provider lives as long as auto start; each job gets its own.
        storage = await self._factory.create_storage_provider(
            folder.storage_config.type, folder.storage_config.config,
        )
        try:
            await self._create_job(
                folder, storage, admission,
                BatchJobOptions(name=f"{folder.name} - auto"),
            )
        except BaseException:
            storage.disconnect()
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def wait_for_job(self, job_id: str, timeout: float | None = None) -> BatchJob:
        """Wait until the job task ends and return the stored job.

        Re-raises the unexpected exception that stopped the job, if any.
        """
        rt = self._active.get(job_id)
        if rt is not None and rt.task is not None:
            await asyncio.wait_for(asyncio.shield(rt.task), timeout)
        return await self._require_job(job_id)

    def get_active_batch_jobs(self) -> list[str]:
        return list(self._active)

    async def get_job(self, job_id: str) -> BatchJob:
        return await self._require_job(job_id)

    async def list_jobs(
        self,
        folder_id: str | None = None,
        statuses: set[JobStatus] | None = None,
    ) -> list[BatchJob]:
        return await self._store.list_jobs(folder_id=folder_id, statuses=statuses)

    async def count_active_jobs(self, folder_id: str) -> int:
        jobs = await self._store.list_jobs(folder_id=folder_id, statuses=set(_ACTIVE_JOB_STATUSES))
        return len(jobs)

    def get_system_status(self) -> dict[str, Any]:
        return {
            "active_jobs": len(self._active),
            "active_job_ids": list(self._active),
            "files_in_flight": sum(len(rt.in_flight) for rt in self._active.values()),
            "files_queued": sum(rt.queue.qsize() for rt in self._active.values()),
            "pending_retries": sum(len(rt.retry_tasks) for rt in self._active.values()),
            "auto_start_folders": list(self._monitors),
            "providers": self._factory.get_available_providers(),
            "global_config": self._global_config.model_dump(mode="json"),
        }

    async def _require_folder(self, folder_id: str) -> ExternalFolderConfig:
        folder = await self._store.get_folder(folder_id)
        if folder is None:
            raise FolderNotFound(folder_id)
        if not folder.is_active:
            raise FolderInactive(folder.name)
        return folder

    async def _require_job(self, job_id: str) -> BatchJob:
        job = await self._store.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job
