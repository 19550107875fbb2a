"""
Transcode orchestrator.

Drives each compression job from ``pending`` to a terminal state:

    pending --(slot picks it up)--> processing --(progress)--> processing
    processing --(engine success)--> completed
    processing --(engine failure / timeout / cancel)--> failed

A job cancelled while still queued goes through both steps
back to back (pending -> processing -> failed) and never reaches the engine.

Every job gets exactly one run on the EncodeWorkerPool. The run starts the
engine with a bounded event channel and is that channel's only consumer, so
progress for a job is applied in arrival order. All state changes go through
the registry; engine and internal errors end up in the job record, never as
exceptions across the async boundary.
"""

import queue
import threading
import time
from typing import Callable, Dict, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.enums.job_status import JobStatus
from compressor.enums.quality import EncodeParameters, QualityTier
from compressor.errors import EngineError, JobNotFoundError, JobStateError
from compressor.job_registry import JobRegistry
from compressor.models import CompressionJob, format_bytes
from compressor.storage import LocalStorage
from compressor.transcoder import (
    EncodeHandle,
    FailureEvent,
    ProgressEvent,
    SuccessEvent,
    TranscodeEngine,
)
from compressor.worker_pool import EncodeWorkerPool

logger = setup_enhanced_logging(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"
SHUTDOWN_MESSAGE = "Service shutting down"
INTERNAL_ERROR_MESSAGE = "Internal error during compression"
OUTPUT_MISSING_MESSAGE = "Failed to read compressed output"

# Upper bound on a single channel wait, so aborts are noticed promptly
POLL_INTERVAL_SECONDS = 0.5


class EncodeRun:
    """Bookkeeping for one job's run: its engine handle and abort reason."""

    def __init__(self, job_id: str, input_path: str, output_path: str, params: EncodeParameters):
        self.job_id = job_id
        self.input_path = input_path
        self.output_path = output_path
        self.params = params
        self.handle: Optional[EncodeHandle] = None
        self.abort_reason: Optional[str] = None
        self._lock = threading.Lock()

    def attach(self, handle: EncodeHandle) -> bool:
        """Record the engine handle. Returns False if the run was aborted meanwhile."""
        with self._lock:
            self.handle = handle
            aborted = self.abort_reason is not None
        if aborted:
            handle.terminate()
        return not aborted

    def abort(self, reason: str) -> bool:
        """Ask the run to stop. Only the first reason sticks."""
        with self._lock:
            if self.abort_reason is not None:
                return False
            self.abort_reason = reason
            handle = self.handle
        if handle is not None:
            handle.terminate()
        return True


class TranscodeOrchestrator:
    def __init__(
        self,
        registry: JobRegistry,
        storage: LocalStorage,
        engine: TranscodeEngine,
        pool: EncodeWorkerPool,
        max_encode_seconds: float = 0,
        channel_size: int = 64,
        on_completed: Optional[Callable[[CompressionJob], None]] = None,
    ):
        self.registry = registry
        self.storage = storage
        self.engine = engine
        self.pool = pool
        self.max_encode_seconds = max_encode_seconds
        self.channel_size = channel_size
        self.on_completed = on_completed

        self._runs: Dict[str, EncodeRun] = {}
        self._runs_lock = threading.Lock()

    # -- public API ------------------------------------------------------------

    def submit(self, job_id: str, input_path: str, quality: QualityTier, original_file_name: str) -> str:
        """
        Queue the encode for a pending job and return immediately.

        Returns:
            The output path the encode will write to

        Raises:
            JobStateError: If the job already has a run
            QueueFullError: If the encode queue is at its limit
        """
        output_path = self.storage.output_path_for(job_id, original_file_name)
        run = EncodeRun(job_id, input_path, output_path, quality.parameters)

        with self._runs_lock:
            if job_id in self._runs:
                raise JobStateError(job_id, "already submitted")
            self._runs[job_id] = run

        try:
            self.pool.submit(f"encode-{job_id}", lambda: self._execute(run))
        except Exception:
            with self._runs_lock:
                self._runs.pop(job_id, None)
            raise

        log_with_context(
            logger, "info", "[Orchestrator] Job queued",
            job_id=job_id, quality=quality.value, output=output_path,
        )
        return output_path

    def cancel(self, job_id: str) -> CompressionJob:
        """
        Cancel a pending or processing job.

        A queued job fails immediately; a running encode is terminated and
        fails once the engine reports back.

        Raises:
            JobNotFoundError: If the job is unknown
            JobStateError: If the job is already completed or failed
        """
        job = self.registry.snapshot(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.is_terminal:
            raise JobStateError(job_id, job.status.value)

        with self._runs_lock:
            run = self._runs.get(job_id)

        if run is not None:
            run.abort(CANCELLED_MESSAGE)

        # Only a job still waiting in the queue is failed here
        updated = self._fail_queued(job_id, CANCELLED_MESSAGE)

        log_with_context(logger, "info", "[Orchestrator] Job cancel requested", job_id=job_id)
        return updated or self.registry.snapshot(job_id) or job

    def active_job_ids(self):
        with self._runs_lock:
            return list(self._runs.keys())

    def stats(self) -> Dict[str, int]:
        stats = self.pool.stats()
        stats["tracked_runs"] = len(self.active_job_ids())
        return stats

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Abort every queued and running encode, then stop the pool."""
        with self._runs_lock:
            runs = list(self._runs.values())

        # Queued runs first, so a slot freed by a terminated encode finds them aborted
        runs.sort(key=lambda run: run.handle is not None)
        for run in runs:
            run.abort(SHUTDOWN_MESSAGE)
            self._fail_queued(run.job_id, SHUTDOWN_MESSAGE)

        self.pool.shutdown(wait=wait, timeout=timeout)

    def _fail_queued(self, job_id: str, message: str) -> Optional[CompressionJob]:
        """
        Fail a job that no run has picked up yet.

        The job is moved to processing and then failed, so it never skips a
        state. Returns None if the job was not pending.
        """
        # Set on every attempt; a store may rerun the mutator after a conflict
        moved = [False]

        def begin(job):
            moved[0] = job.status == JobStatus.PENDING
            return job.start_processing() if moved[0] else job

        self.registry.update(job_id, begin)
        if not moved[0]:
            return None
        return self.registry.update(job_id, lambda j: j if j.is_terminal else j.fail(message))

    # -- run ---------------------------------------------------------------------

    def _execute(self, run: EncodeRun) -> None:
        job_id = run.job_id
        try:
            self._run_encode(run)
        except Exception as e:
            log_with_context(
                logger, "error", f"[Orchestrator] Job {job_id} failed: {e}",
                job_id=job_id, error_type=type(e).__name__, exc_info=True,
            )
            self._fail(run, INTERNAL_ERROR_MESSAGE)
        finally:
            with self._runs_lock:
                self._runs.pop(job_id, None)

    def _run_encode(self, run: EncodeRun) -> None:
        job_id = run.job_id

        if run.abort_reason is not None:
            # Cancelled (and already failed) while waiting in the queue
            self._fail(run, run.abort_reason)
            return

        job = self.registry.update(
            job_id, lambda j: j.start_processing() if j.status == JobStatus.PENDING else j
        )
        if job is None or job.status != JobStatus.PROCESSING:
            log_with_context(
                logger, "warning", "[Orchestrator] Job not startable, skipping run",
                job_id=job_id, status=job.status.value if job else None,
            )
            return

        if run.abort_reason is not None:
            # Cancelled between the queue check and the start
            self._fail(run, run.abort_reason)
            return

        log_with_context(
            logger, "info", "[Orchestrator] Starting compression",
            job_id=job_id, file=job.original_file_name, size=format_bytes(job.original_size),
        )

        channel: "queue.Queue" = queue.Queue(maxsize=self.channel_size)
        try:
            handle = self.engine.start(run.input_path, run.output_path, run.params, channel)
        except EngineError as e:
            self._fail(run, e.message)
            return
        run.attach(handle)

        deadline = None
        if self.max_encode_seconds and self.max_encode_seconds > 0:
            deadline = time.monotonic() + self.max_encode_seconds

        while True:
            if deadline is not None and run.abort_reason is None and time.monotonic() >= deadline:
                log_with_context(
                    logger, "warning", "[Orchestrator] Encode timed out",
                    job_id=job_id, max_seconds=self.max_encode_seconds,
                )
                run.abort(
                    f"Compression exceeded the maximum duration of {self.max_encode_seconds:g} seconds"
                )

            wait = POLL_INTERVAL_SECONDS
            if deadline is not None and run.abort_reason is None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))

            try:
                event = channel.get(timeout=wait)
            except queue.Empty:
                continue

            if isinstance(event, ProgressEvent):
                if run.abort_reason is None:
                    self.registry.update(job_id, lambda j: j.with_progress(event.percent))
                continue

            if isinstance(event, SuccessEvent):
                if run.abort_reason is not None:
                    self._fail(run, run.abort_reason)
                else:
                    self._complete(run)
                return

            if isinstance(event, FailureEvent):
                self._fail(run, run.abort_reason or event.message)
                return

            log_with_context(
                logger, "warning", f"[Orchestrator] Ignoring unknown engine event {event!r}", job_id=job_id
            )

    # -- outcomes ----------------------------------------------------------------

    def _complete(self, run: EncodeRun) -> None:
        job_id = run.job_id
        compressed_size = self.storage.get_file_size(run.output_path)
        if compressed_size is None:
            log_with_context(
                logger, "error", "[Orchestrator] Engine reported success but output is missing",
                job_id=job_id, output=run.output_path,
            )
            self._fail(run, OUTPUT_MISSING_MESSAGE)
            return

        job = self.registry.update(job_id, lambda j: j.complete(compressed_size, run.output_path))
        if job is None or job.status != JobStatus.COMPLETED:
            # Deleted or already terminal: nobody may download this output
            self.storage.delete_file(run.output_path)
            return

        log_with_context(
            logger, "info", "[Orchestrator] Job completed successfully",
            job_id=job_id,
            original=format_bytes(job.original_size),
            compressed=format_bytes(compressed_size),
        )

        if self.on_completed is not None:
            try:
                self.on_completed(job)
            except Exception:
                logger.exception(f"[Orchestrator] Completion hook failed for job {job_id}")

    def _fail(self, run: EncodeRun, message: str) -> None:
        job_id = run.job_id
        job = self.registry.update(job_id, lambda j: j if j.is_terminal else j.fail(message))

        # Never leave a partial artifact behind for Download to serve
        if job is None or job.status != JobStatus.COMPLETED:
            self.storage.delete_file(run.output_path)

        log_with_context(
            logger, "error", "[Orchestrator] Job failed",
            job_id=job_id, error=message, status=job.status.value if job else None,
        )
