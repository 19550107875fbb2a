"""
Retention sweeper.

Runs on the TaskScheduler every SWEEP_INTERVAL seconds. Terminal jobs whose
``completed_at`` is older than RETENTION_TTL lose their files and their
registry record. Outputs held by an in-flight download are left alone and
retried on the next cycle.

Also schedules the early input cleanup: a completed job's upload is deleted
INPUT_CLEANUP_DELAY seconds after completion, independent of the sweep cycle.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.job_registry import JobRegistry
from compressor.models import CompressionJob, utcnow
from compressor.scheduler import ScheduledTask, TaskScheduler
from compressor.storage import LocalStorage

logger = setup_enhanced_logging(__name__)


class RetentionSweeper:
    def __init__(
        self,
        registry: JobRegistry,
        storage: LocalStorage,
        scheduler: TaskScheduler,
        retention_ttl: float = 24 * 3600,
        sweep_interval: float = 3600,
        input_cleanup_delay: float = 3600,
    ):
        self.registry = registry
        self.storage = storage
        self.scheduler = scheduler
        self.retention_ttl = timedelta(seconds=retention_ttl)
        self.sweep_interval = sweep_interval
        self.input_cleanup_delay = input_cleanup_delay
        self._task: Optional[ScheduledTask] = None

    def start(self) -> None:
        """Register the periodic sweep on the scheduler."""
        if self._task is not None:
            return
        self._task = self.scheduler.every(self.sweep_interval, self.sweep, name="retention-sweep")
        log_with_context(
            logger, "info", "[Sweeper] Retention sweep scheduled",
            interval_seconds=self.sweep_interval,
            ttl_hours=self.retention_ttl.total_seconds() / 3600,
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def is_expired(self, job: CompressionJob, now: datetime) -> bool:
        return (
            job.is_terminal
            and job.completed_at is not None
            and job.completed_at + self.retention_ttl < now
        )

    def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """
        Evict expired terminal jobs and their files.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            Ids of the evicted jobs
        """
        now = now or utcnow()
        evicted = []
        skipped = 0

        for job_id in self.registry.job_ids():
            job = self.registry.snapshot(job_id)
            if job is None or not self.is_expired(job, now):
                continue

            if job.output_path and not self.storage.delete_if_unleased(job.output_path):
                log_with_context(
                    logger, "info", "[Sweeper] Output is being downloaded, retrying next cycle",
                    job_id=job_id,
                )
                skipped += 1
                continue

            self.storage.delete_file(job.input_path)
            self.registry.delete(job_id)
            evicted.append(job_id)

        log_with_context(
            logger, "info", "[Sweeper] Sweep finished", evicted=len(evicted), skipped=skipped
        )
        return evicted

    def schedule_input_cleanup(self, job: CompressionJob) -> ScheduledTask:
        """Delete ``job``'s upload once INPUT_CLEANUP_DELAY has passed."""
        input_path = job.input_path

        def cleanup():
            if self.storage.delete_file(input_path):
                log_with_context(logger, "info", "[Sweeper] Input file removed", job_id=job.id)

        return self.scheduler.call_later(
            self.input_cleanup_delay, cleanup, name=f"input-cleanup-{job.id}"
        )
