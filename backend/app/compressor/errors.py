"""
Error types for the compression service.

Every error carries the HTTP status code the routes answer with, so a route can
turn any CompressorError into ``jsonify({"error": e.message}), e.status_code``.
"""

from typing import Iterable, Optional


class CompressorError(Exception):
    """Base exception for all compression service failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CompressorError):
    """Upload rejected before a job was created."""

    status_code = 400


class MissingFileError(ValidationError):
    """Raised when the request carries no video file."""

    def __init__(self, message: str = "No video file uploaded"):
        super().__init__(message)


class UnsupportedFileFormatError(ValidationError):
    """Raised when an upload is not an allowed video container."""

    def __init__(
        self,
        filename: str,
        extension: Optional[str] = None,
        allowed: Iterable[str] = (),
    ):
        self.filename = filename
        self.extension = extension

        if not extension:
            message = (
                f"File '{filename}' has no extension. Please provide a video file with a valid extension."
            )
        else:
            message = (
                f"File format '{extension}' is not supported. "
                f"Only video files are allowed: {', '.join(allowed)}"
            )

        super().__init__(message)


class InvalidQualityError(ValidationError):
    """Raised for a quality tier outside the enumerated set."""

    def __init__(self, quality: str, allowed: Iterable[str] = ()):
        self.quality = quality
        super().__init__(
            f"Unknown quality '{quality}'. Expected one of: {', '.join(allowed)}"
        )


class UploadTooLargeError(ValidationError):
    """Raised when an upload exceeds the configured size ceiling."""

    status_code = 413

    def __init__(self, limit_bytes: int):
        self.limit_bytes = limit_bytes
        limit_gb = limit_bytes / (1024 ** 3)
        super().__init__(f"File too large. Maximum upload size is {limit_gb:g}GB")


class JobNotFoundError(CompressorError):
    """Raised when a job id is unknown or its output is not available."""

    status_code = 404

    def __init__(self, job_id: str, message: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message or "Job not found")


class JobStateError(CompressorError):
    """Raised when an operation is not valid in the job's current state."""

    status_code = 409

    def __init__(self, job_id: str, status: str, message: Optional[str] = None):
        self.job_id = job_id
        self.status = status
        super().__init__(message or f"Job {job_id} is already {status}")


class DuplicateJobError(CompressorError):
    """Raised when creating a job whose id already exists in the registry."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job with ID '{job_id}' already exists")


class QueueFullError(CompressorError):
    """Raised when the encode queue cannot accept more work."""

    status_code = 503

    def __init__(self, queue_limit: int):
        self.queue_limit = queue_limit
        super().__init__(
            f"Compression queue is full ({queue_limit} jobs waiting). Please try again later."
        )


class EngineError(CompressorError):
    """Raised by a transcoding engine that cannot start or run an encode."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Transcoding engine failure: {reason}")
