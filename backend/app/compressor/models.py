import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from compressor.enums.job_status import JobStatus, can_transition
from compressor.enums.quality import QualityTier

# Fields fixed at intake; a stored job never changes them.
IMMUTABLE_FIELDS = (
    "id",
    "original_file_name",
    "original_size",
    "quality",
    "input_path",
    "created_at",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_bytes(bytes_value):
    """Format bytes into human-readable string (e.g., '1.5 MB')"""
    if bytes_value is None:
        return None

    if bytes_value == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB"]
    unit_index = 0
    size = float(bytes_value)

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    if unit_index <= 1:
        return f"{int(size)} {units[unit_index]}"
    return f"{size:.1f} {units[unit_index]}"


def get_file_extension(filename):
    """Extract file extension from filename (e.g., 'clip.MP4' -> '.mp4')"""
    if not filename or "." not in filename:
        return ""
    return os.path.splitext(filename)[1].lower()


def clamp_progress(value) -> int:
    """Clamp an engine-reported percentage to an int in [0, 100]."""
    try:
        percent = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, percent))


@dataclass(frozen=True)
class CompressionJob:
    """
    One compression request and its current state.

    Instances are immutable. The registry stores a record and hands out the
    same frozen object as a snapshot; every change goes through the transition
    helpers below, which return a new record.
    """

    id: str
    original_file_name: str
    original_size: int
    quality: QualityTier
    input_path: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    compressed_size: Optional[int] = None
    output_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            object.__setattr__(self, "created_at", utcnow())

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def output_filename(self) -> Optional[str]:
        if self.output_path is None:
            return None
        return os.path.basename(self.output_path)

    @property
    def download_name(self) -> str:
        return f"compressed_{self.original_file_name}"

    # -- transitions ---------------------------------------------------------

    def start_processing(self) -> "CompressionJob":
        return replace(self, status=JobStatus.PROCESSING, started_at=utcnow())

    def with_progress(self, reported) -> "CompressionJob":
        """Apply an engine progress report without ever moving backwards."""
        progress = max(self.progress, clamp_progress(reported))
        if progress == self.progress:
            return self
        return replace(self, progress=progress)

    def complete(self, compressed_size: int, output_path: str) -> "CompressionJob":
        return replace(
            self,
            status=JobStatus.COMPLETED,
            progress=100,
            compressed_size=compressed_size,
            output_path=output_path,
            error_message=None,
            completed_at=utcnow(),
        )

    def fail(self, message: str) -> "CompressionJob":
        return replace(
            self,
            status=JobStatus.FAILED,
            compressed_size=None,
            output_path=None,
            error_message=message or "Compression failed",
            completed_at=utcnow(),
        )

    # -- views ---------------------------------------------------------------

    def to_status_dict(self) -> Dict[str, Any]:
        """Client-facing status payload (camelCase, as the web UI expects)."""
        return {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "originalFileName": self.original_file_name,
            "originalSize": self.original_size,
            "compressedSize": self.compressed_size,
            "outputFileName": self.output_filename,
            "error": self.error_message,
            "quality": self.quality.value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


def transition_violation(old: CompressionJob, new: CompressionJob) -> Optional[str]:
    """
    Check a proposed replacement record against the job invariants.

    Returns a description of the first violated rule, or None if ``new`` may
    replace ``old``.
    """
    if new is old:
        return None

    if old.is_terminal:
        return f"job is terminal ({old.status.value})"

    if not can_transition(old.status, new.status):
        return f"illegal transition {old.status.value} -> {new.status.value}"

    for field_name in IMMUTABLE_FIELDS:
        if getattr(old, field_name) != getattr(new, field_name):
            return f"immutable field '{field_name}' changed"

    if new.progress < old.progress:
        return f"progress regressed {old.progress} -> {new.progress}"
    if not 0 <= new.progress <= 100:
        return f"progress out of range: {new.progress}"

    completed = new.status == JobStatus.COMPLETED
    if completed != (new.compressed_size is not None and new.output_path is not None):
        return "result fields must be set exactly when completed"
    if (new.status == JobStatus.FAILED) != bool(new.error_message):
        return "error message must be set exactly when failed"
    if new.is_terminal and new.completed_at is None:
        return "terminal job without completed_at"

    return None
