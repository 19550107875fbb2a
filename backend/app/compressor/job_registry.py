"""
Job registry: the single source of truth for compression job state.

The registry owns every CompressionJob record. Readers get frozen snapshots;
writers hand in a mutator that runs under exclusive access for that job id.
Mutations that would break the job lifecycle (leaving a terminal state,
skipping a state, moving progress backwards) are dropped and logged as
anomalies rather than raised at the caller.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.errors import DuplicateJobError
from compressor.models import CompressionJob, transition_violation

logger = setup_enhanced_logging(__name__)

Mutator = Callable[[CompressionJob], CompressionJob]


class JobRegistry(ABC):
    @abstractmethod
    def create(self, job: CompressionJob) -> CompressionJob:
        """Store a new job. Raises DuplicateJobError if the id already exists."""

    @abstractmethod
    def snapshot(self, job_id: str) -> Optional[CompressionJob]:
        """Return an immutable copy of the job, or None if unknown."""

    @abstractmethod
    def update(self, job_id: str, mutator: Mutator) -> Optional[CompressionJob]:
        """
        Apply ``mutator`` to the job under exclusive access for ``job_id``.

        Returns the stored record after the update (unchanged if the mutation
        was rejected), or None if the job is unknown.
        """

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Remove a job. Returns False if it did not exist."""

    @abstractmethod
    def job_ids(self) -> List[str]:
        """Ids of all stored jobs."""

    def close(self) -> None:
        """Release any resources held by the registry."""

    def __len__(self) -> int:
        return len(self.job_ids())

    def __contains__(self, job_id) -> bool:
        return self.snapshot(job_id) is not None


def apply_mutation(current: CompressionJob, mutator: Mutator) -> CompressionJob:
    """
    Run ``mutator`` on ``current`` and validate the result.

    Returns the record that should be stored: the mutator's result, or
    ``current`` unchanged when the mutation violates the lifecycle rules.
    """
    proposed = mutator(current)
    if proposed is None or proposed is current:
        return current

    violation = transition_violation(current, proposed)
    if violation:
        log_with_context(
            logger,
            "warning",
            f"[Registry] Rejected job mutation: {violation}",
            job_id=current.id,
            status=current.status.value,
            proposed_status=proposed.status.value,
        )
        return current

    return proposed


class InMemoryJobRegistry(JobRegistry):
    """
    Process-local registry.

    Each job id has its own lock, so updates to different jobs never wait on
    each other. ``_index_lock`` only guards adding and removing map entries and
    is never held while a mutator runs.
    """

    def __init__(self):
        self._jobs: Dict[str, CompressionJob] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._index_lock = threading.Lock()

    def create(self, job: CompressionJob) -> CompressionJob:
        with self._index_lock:
            if job.id in self._jobs:
                raise DuplicateJobError(job.id)
            self._locks[job.id] = threading.Lock()
            self._jobs[job.id] = job

        log_with_context(
            logger, "info", "[Registry] Job created", job_id=job.id, status=job.status.value
        )
        return job

    def snapshot(self, job_id: str) -> Optional[CompressionJob]:
        # Records are frozen, so the stored object is already a safe snapshot
        return self._jobs.get(job_id)

    def update(self, job_id: str, mutator: Mutator) -> Optional[CompressionJob]:
        lock = self._locks.get(job_id)
        if lock is None:
            return None

        with lock:
            current = self._jobs.get(job_id)
            if current is None:
                # Deleted while we waited for the lock
                return None
            updated = apply_mutation(current, mutator)
            if updated is not current:
                self._jobs[job_id] = updated
            return updated

    def delete(self, job_id: str) -> bool:
        lock = self._locks.get(job_id)
        if lock is None:
            return False

        # Wait for any in-flight mutator on this id before removing it
        with lock:
            with self._index_lock:
                existed = self._jobs.pop(job_id, None) is not None
                self._locks.pop(job_id, None)

        if existed:
            log_with_context(logger, "info", "[Registry] Job deleted", job_id=job_id)
        return existed

    def job_ids(self) -> List[str]:
        with self._index_lock:
            return list(self._jobs.keys())

    def close(self) -> None:
        with self._index_lock:
            self._jobs.clear()
            self._locks.clear()
