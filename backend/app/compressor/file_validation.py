"""
Upload validation for the video compressor.

Checks the client's declared size, container extension, MIME type and quality
tier before anything is written to disk or a job is created.
"""

from typing import Optional

from compressor.enums.quality import DEFAULT_QUALITY, QualityTier
from compressor.errors import (
    InvalidQualityError,
    UnsupportedFileFormatError,
    UploadTooLargeError,
)
from compressor.models import get_file_extension

# Supported video containers
SUPPORTED_VIDEO_EXTENSIONS = [".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm", ".3gp"]


def allowed_file(filename: str) -> bool:
    """Check if file extension is an allowed video container."""
    return get_file_extension(filename) in SUPPORTED_VIDEO_EXTENSIONS


def validate_declared_size(content_length: Optional[int], max_bytes: int) -> None:
    """
    Reject a request whose declared length is already over the ceiling.

    A missing Content-Length (chunked upload) passes here; the streaming writer
    enforces the limit instead.

    Raises:
        UploadTooLargeError: If ``content_length`` exceeds ``max_bytes``
    """
    if content_length is not None and content_length > max_bytes:
        raise UploadTooLargeError(max_bytes)


def validate_video_upload(filename: str, mimetype: Optional[str]) -> str:
    """
    Validate that an upload is a video file.

    Both the extension and the MIME type must agree: the extension must be a
    supported container and the MIME type must be ``video/*``.

    Args:
        filename: Client-supplied file name
        mimetype: Client-supplied content type of the file part

    Returns:
        The lowercase extension (including the dot)

    Raises:
        UnsupportedFileFormatError: If the file is not an allowed video
    """
    if not filename:
        raise UnsupportedFileFormatError("unnamed file", None, SUPPORTED_VIDEO_EXTENSIONS)

    extension = get_file_extension(filename)
    if not extension:
        raise UnsupportedFileFormatError(filename, None, SUPPORTED_VIDEO_EXTENSIONS)

    if not allowed_file(filename):
        raise UnsupportedFileFormatError(filename, extension, SUPPORTED_VIDEO_EXTENSIONS)

    if not (mimetype or "").lower().startswith("video/"):
        raise UnsupportedFileFormatError(filename, mimetype or "unknown type", SUPPORTED_VIDEO_EXTENSIONS)

    return extension


def parse_quality(value: Optional[str]) -> QualityTier:
    """Resolve the form's quality field, defaulting to balanced when absent."""
    if value is None or not value.strip():
        return DEFAULT_QUALITY
    try:
        return QualityTier(value.strip().lower())
    except ValueError:
        raise InvalidQualityError(value, [q.value for q in QualityTier])
