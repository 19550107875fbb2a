"""Tests for storage functionality."""

import os

import pytest

from compressor.errors import UploadTooLargeError
from helpers import store_upload


class TestLocalStorage:
    """Test local storage functionality."""

    def test_storage_path_creation(self, storage):
        """Test that the uploads and processed directories are created."""
        assert storage.uploads_path.is_dir()
        assert storage.processed_path.is_dir()

    def test_open_upload(self, storage):
        """Test an upload is written under a generated name keeping the extension."""
        spool = storage.open_upload("../../etc/My Video.MKV", max_bytes=10_000)
        spool.write(b"x" * 1000)
        spool.write(b"x" * 2000)
        spool.close()

        assert spool.size == 3000
        assert os.path.dirname(spool.path) == str(storage.uploads_path)
        assert spool.path.endswith(".mkv")
        assert "My Video" not in spool.path
        with open(spool.path, "rb") as f:
            assert f.read() == b"x" * 3000

    def test_uploads_get_distinct_names(self, storage):
        """Test two uploads of the same file never collide."""
        first = store_upload(storage, b"a", "clip.mp4")
        second = store_upload(storage, b"b", "clip.mp4")

        assert first.path != second.path

    def test_upload_at_limit(self, storage):
        """Test an upload of exactly the limit is accepted."""
        spool = store_upload(storage, b"x" * 100, max_bytes=100)
        assert spool.size == 100

    def test_oversized_upload_leaves_nothing(self, storage):
        """Test the write crossing the limit is refused and discarding removes the partial file."""
        spool = storage.open_upload("clip.mp4", max_bytes=100)
        spool.write(b"x" * 60)

        with pytest.raises(UploadTooLargeError):
            spool.write(b"x" * 41)

        spool.discard()
        assert os.listdir(storage.uploads_path) == []

    def test_spool_reads_back(self, storage):
        """Test a spool can be rewound and read like the file it wraps."""
        spool = storage.open_upload("clip.mp4", max_bytes=100)
        spool.write(b"abc")
        spool.flush()

        assert spool.tell() == 3
        spool.seek(0)
        assert spool.read() == b"abc"
        spool.discard()

    def test_kept_spool_survives_discard(self, storage):
        """Test discard closes a kept spool without deleting it, and may be repeated."""
        spool = store_upload(storage, b"x")

        spool.discard()
        spool.discard()

        assert spool.closed
        assert storage.exists(spool.path)

    def test_output_path_for(self, storage):
        """Test output paths keep the source container."""
        assert storage.output_path_for("job-1", "clip.webm") == str(
            storage.processed_path / "job-1_compressed.webm"
        )
        assert storage.output_path_for("job-2", "noext").endswith("job-2_compressed.mp4")

    def test_file_size_calculation(self, storage):
        """Test file size of existing and missing files."""
        path = store_upload(storage, b"x" * 42).path

        assert storage.get_file_size(path) == 42
        assert storage.get_file_size(path + ".missing") is None

    def test_delete_file(self, storage):
        """Test deleting present, missing and empty paths."""
        path = store_upload(storage, b"x").path

        assert storage.delete_file(path) is True
        assert storage.exists(path) is False
        assert storage.delete_file(path) is False
        assert storage.delete_file(None) is False


class TestDownloadLeases:
    """Test leases that protect files being downloaded."""

    def test_leased_file_is_not_deleted(self, storage):
        """Test delete_if_unleased skips a leased file."""
        path = store_upload(storage, b"x").path

        storage.acquire_lease(path)
        assert storage.is_leased(path)
        assert storage.delete_if_unleased(path) is False
        assert storage.exists(path)
        storage.release_lease(path)

        assert not storage.is_leased(path)
        assert storage.delete_if_unleased(path) is True
        assert not storage.exists(path)

    def test_leases_are_counted(self, storage):
        """Test a file stays leased until every holder releases it."""
        storage.acquire_lease("/some/file")
        storage.acquire_lease("/some/file")
        storage.release_lease("/some/file")

        assert storage.is_leased("/some/file")

        storage.release_lease("/some/file")
        assert not storage.is_leased("/some/file")

    def test_delete_if_unleased_missing_file(self, storage):
        """Test a missing file counts as already deleted."""
        assert storage.delete_if_unleased(str(storage.processed_path / "gone.mp4")) is True
        assert storage.delete_if_unleased(None) is True
