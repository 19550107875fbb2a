from enum import Enum


class JobStatus(Enum):
    """Enum for compression job status values."""

    # Active States
    PENDING = "pending"        # Upload persisted, waiting for a free encode slot (initial state)
    PROCESSING = "processing"  # ffmpeg is running for this job

    # Terminal States
    COMPLETED = "completed"    # Compressed output written and ready for download
    FAILED = "failed"          # Encode failed, timed out or was cancelled

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Legal (from, to) transitions. Nothing leaves a terminal state.
ALLOWED_TRANSITIONS = frozenset(
    {
        (JobStatus.PENDING, JobStatus.PROCESSING),
        (JobStatus.PROCESSING, JobStatus.PROCESSING),  # progress updates
        (JobStatus.PROCESSING, JobStatus.COMPLETED),
        (JobStatus.PROCESSING, JobStatus.FAILED),
    }
)


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Return True if a job may move from ``current`` to ``new``."""
    return (current, new) in ALLOWED_TRANSITIONS
