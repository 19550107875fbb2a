"""Local filesystem storage for uploaded and compressed videos."""

import os
import threading
import uuid
from collections import Counter
from pathlib import Path
from typing import Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.errors import UploadTooLargeError
from compressor.models import get_file_extension

logger = setup_enhanced_logging(__name__)


class UploadSpool:
    """
    Writable file an upload is streamed into as it arrives.

    The byte ceiling is enforced on every write, so an oversized body is cut
    off without being written out in full. Unless ``keep()`` is called the
    file is removed by ``discard()``.
    """

    def __init__(self, path: Path, max_bytes: int):
        self.path = str(path)
        self.max_bytes = max_bytes
        self.size = 0
        self.kept = False
        self._file = open(path, "w+b")

    def write(self, data: bytes) -> int:
        self.size += len(data)
        if self.size > self.max_bytes:
            raise UploadTooLargeError(self.max_bytes)
        return self._file.write(data)

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._file.seek(offset, whence)

    def tell(self) -> int:
        return self._file.tell()

    def flush(self) -> None:
        self._file.flush()

    @property
    def closed(self) -> bool:
        return self._file.closed

    def close(self) -> None:
        self._file.close()

    def keep(self) -> None:
        self.kept = True

    def discard(self) -> None:
        """Close and delete the file unless it was kept."""
        self.close()
        if self.kept:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return
        log_with_context(logger, "debug", "[Storage] Upload discarded", path=os.path.basename(self.path))


class LocalStorage:
    """
    Local filesystem storage for uploads and processed outputs.

    Layout under ``base_path``:
        uploads/{uuid}{ext}                 raw uploads, never the client name
        processed/{job_id}_compressed{ext}  encoder outputs

    Downloads take a lease on the file they stream. Leased files are never
    deleted by ``delete_if_unleased``.
    """

    def __init__(self, base_path="/data"):
        """
        Initialize local storage.

        Args:
            base_path: Base directory for all file storage
        """
        self.base_path = Path(base_path)
        self.uploads_path = self.base_path / "uploads"
        self.processed_path = self.base_path / "processed"

        self.uploads_path.mkdir(parents=True, exist_ok=True)
        self.processed_path.mkdir(parents=True, exist_ok=True)

        self._leases = Counter()
        self._lease_lock = threading.Lock()

    def open_upload(self, original_filename: str, max_bytes: int) -> UploadSpool:
        """
        Open a new upload file under a generated name.

        Args:
            original_filename: Client-supplied name, used only for its extension
            max_bytes: Size ceiling in bytes

        Returns:
            UploadSpool at ``uploads/{uuid}{ext}``
        """
        file_path = self.uploads_path / f"{uuid.uuid4()}{get_file_extension(original_filename)}"
        spool = UploadSpool(file_path, max_bytes)
        log_with_context(logger, "debug", "[Storage] Upload opened", path=file_path.name)
        return spool

    def output_path_for(self, job_id: str, original_filename: str) -> str:
        """Deterministic output location for a job."""
        ext = get_file_extension(original_filename) or ".mp4"
        return str(self.processed_path / f"{job_id}_compressed{ext}")

    def get_file_size(self, file_path) -> Optional[int]:
        """
        Get size of a file in bytes.

        Returns:
            int: File size in bytes, or None if file doesn't exist
        """
        path = Path(file_path)
        if path.is_file():
            return path.stat().st_size
        return None

    def exists(self, file_path) -> bool:
        return bool(file_path) and Path(file_path).is_file()

    def delete_file(self, file_path) -> bool:
        """Delete a file if present. Returns True if something was removed."""
        if not file_path:
            return False
        try:
            os.remove(file_path)
        except FileNotFoundError:
            return False
        log_with_context(logger, "debug", "[Storage] File deleted", path=str(file_path))
        return True

    # -- download leases -----------------------------------------------------

    def acquire_lease(self, file_path) -> None:
        with self._lease_lock:
            self._leases[str(file_path)] += 1

    def release_lease(self, file_path) -> None:
        key = str(file_path)
        with self._lease_lock:
            self._leases[key] -= 1
            if self._leases[key] <= 0:
                del self._leases[key]

    def is_leased(self, file_path) -> bool:
        with self._lease_lock:
            return self._leases[str(file_path)] > 0

    def delete_if_unleased(self, file_path) -> bool:
        """
        Delete ``file_path`` unless a download currently holds a lease on it.

        Returns False if the file is leased (caller should retry later), True
        otherwise, including when the file was already gone.
        """
        if not file_path:
            return True
        with self._lease_lock:
            if self._leases[str(file_path)] > 0:
                return False
            self.delete_file(file_path)
        return True
