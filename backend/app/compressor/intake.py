"""
Upload intake: validate, persist, create the job, hand it to the orchestrator.

Uploads are checked in two stages. ``open_spool`` runs on the file part's
headers, before any of its bytes are read, and returns the file the part is
streamed into. ``accept`` runs once the whole request body has arrived and
turns the spooled file into a pending job.

Returns the new job synchronously; encoding happens later on the worker pool.
Every rejection happens before a job id leaves this module, and anything
written for a rejected upload is removed again.
"""

import os
import uuid
from typing import Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.errors import MissingFileError
from compressor.file_validation import parse_quality, validate_declared_size, validate_video_upload
from compressor.job_registry import JobRegistry
from compressor.models import CompressionJob, format_bytes
from compressor.orchestrator import TranscodeOrchestrator
from compressor.storage import LocalStorage, UploadSpool

logger = setup_enhanced_logging(__name__)


def display_name(filename: str) -> str:
    """Client file name without any directory part (browsers on Windows send full paths)."""
    return os.path.basename((filename or "").replace("\\", "/")).strip()


class UploadIntake:
    def __init__(
        self,
        registry: JobRegistry,
        storage: LocalStorage,
        orchestrator: TranscodeOrchestrator,
        max_upload_size: int,
    ):
        self.registry = registry
        self.storage = storage
        self.orchestrator = orchestrator
        self.max_upload_size = max_upload_size

    def open_spool(
        self,
        filename: Optional[str],
        mimetype: Optional[str],
        content_length: Optional[int] = None,
    ) -> UploadSpool:
        """
        Validate a file part's headers and open the file it is written to.

        Raises:
            MissingFileError: The part carries no file name
            UploadTooLargeError: Declared part size over the ceiling
            UnsupportedFileFormatError: Not an allowed video file
        """
        original_name = display_name(filename)
        if not original_name:
            raise MissingFileError()
        validate_declared_size(content_length or None, self.max_upload_size)
        validate_video_upload(original_name, mimetype)
        return self.storage.open_upload(original_name, self.max_upload_size)

    def accept(self, spool: UploadSpool, filename: str, quality: Optional[str] = None) -> CompressionJob:
        """
        Turn a fully received upload into a pending job.

        The spool is kept on success and discarded on any failure.

        Raises:
            InvalidQualityError: Unknown quality tier
            QueueFullError: Encode queue saturated; nothing is kept
        """
        original_name = display_name(filename)

        try:
            tier = parse_quality(quality)
        except Exception:
            spool.discard()
            raise

        spool.close()
        job = CompressionJob(
            id=str(uuid.uuid4()),
            original_file_name=original_name,
            original_size=spool.size,
            quality=tier,
            input_path=spool.path,
        )

        try:
            self.registry.create(job)
            self.orchestrator.submit(job.id, spool.path, tier, original_name)
        except Exception:
            # Roll back so the rejected upload leaves nothing observable
            self.registry.delete(job.id)
            spool.discard()
            raise
        spool.keep()

        log_with_context(
            logger, "info", "[Intake] Upload accepted",
            job_id=job.id, file=original_name, size=format_bytes(spool.size), quality=tier.value,
        )
        return job
