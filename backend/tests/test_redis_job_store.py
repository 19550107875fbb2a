"""Tests for the Redis-backed job registry."""

import os
import uuid

import fakeredis
import pytest
import redis

from compressor.enums.job_status import JobStatus
from compressor.enums.quality import QualityTier
from compressor.errors import DuplicateJobError
from compressor.models import CompressionJob
from compressor.redis_job_store import RedisJobRegistry, decode_job, encode_job

REDIS_URL = os.getenv("REDIS_URL")


def make_job():
    return CompressionJob(
        id=str(uuid.uuid4()),
        original_file_name="clip.mkv",
        original_size=2048,
        quality=QualityTier.HIGH_QUALITY,
        input_path="/data/uploads/abc.mkv",
    )


class TestEncoding:
    """Test conversion between jobs and Redis hashes."""

    def test_encode_decode(self):
        """Test a completed job survives the hash encoding unchanged."""
        job = make_job().start_processing().with_progress(40).complete(1024, "/data/processed/x.mkv")

        data = encode_job(job)

        assert data["status"] == "completed"
        assert data["quality"] == "high_quality"
        assert data["error_message"] == ""
        assert all(isinstance(value, str) for value in data.values())
        assert decode_job(data) == job


@pytest.fixture(params=["fakeredis", "redis"])
def connect(request):
    """Factory of clients that all talk to the same Redis server."""
    if request.param == "redis":
        if not REDIS_URL:
            pytest.skip("Requires REDIS_URL pointing at a Redis server")
        return lambda: redis.Redis.from_url(REDIS_URL, decode_responses=True)

    server = fakeredis.FakeServer()
    return lambda: fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def redis_registry(connect):
    registry = RedisJobRegistry(connect())
    created = []
    original_create = registry.create

    def tracking_create(job):
        created.append(job.id)
        return original_create(job)

    registry.create = tracking_create
    yield registry
    for job_id in created:
        registry.delete(job_id)
    registry.close()


class TestRedisJobRegistry:
    """Test the registry against an in-process fake Redis and, with REDIS_URL, a real one."""

    def test_create_and_snapshot(self, redis_registry):
        """Test a stored job reads back equal."""
        job = make_job()
        redis_registry.create(job)

        assert redis_registry.snapshot(job.id) == job
        assert job.id in redis_registry.job_ids()

    def test_duplicate(self, redis_registry):
        """Test duplicate ids are rejected."""
        job = make_job()
        redis_registry.create(job)
        with pytest.raises(DuplicateJobError):
            redis_registry.create(job)

    def test_update_and_reject(self, redis_registry):
        """Test valid updates are stored and invalid ones dropped."""
        job = make_job()
        redis_registry.create(job)

        redis_registry.update(job.id, lambda j: j.start_processing())
        redis_registry.update(job.id, lambda j: j.with_progress(70))
        result = redis_registry.update(job.id, lambda j: j.with_progress(20))

        assert result.progress == 70
        assert redis_registry.snapshot(job.id).status == JobStatus.PROCESSING

    def test_conflicting_write_is_retried(self, redis_registry, connect):
        """Test a write that lands between read and commit makes the update start over."""
        job = make_job()
        redis_registry.create(job)
        other_writer = RedisJobRegistry(connect())
        seen = []

        def mutator(current):
            seen.append(current.status)
            if len(seen) == 1:
                other_writer.update(job.id, lambda j: j.start_processing())
            if current.status == JobStatus.PENDING:
                return current.start_processing()
            return current.with_progress(30)

        result = redis_registry.update(job.id, mutator)
        other_writer.close()

        assert seen == [JobStatus.PENDING, JobStatus.PROCESSING]
        assert result.status == JobStatus.PROCESSING
        assert result.progress == 30
        assert redis_registry.snapshot(job.id) == result

    def test_updates_to_other_jobs_do_not_conflict(self, redis_registry):
        """Test writing another job while a mutator runs does not force a retry."""
        first = make_job()
        second = make_job()
        redis_registry.create(first)
        redis_registry.create(second)
        calls = []

        def mutator(current):
            calls.append(current.id)
            redis_registry.update(second.id, lambda j: j.start_processing())
            return current.start_processing()

        result = redis_registry.update(first.id, mutator)

        assert calls == [first.id]
        assert result.status == JobStatus.PROCESSING
        assert redis_registry.snapshot(second.id).status == JobStatus.PROCESSING

    def test_delete(self, redis_registry):
        """Test deleted jobs disappear."""
        job = make_job()
        redis_registry.create(job)

        assert redis_registry.delete(job.id) is True
        assert redis_registry.snapshot(job.id) is None
        assert redis_registry.update(job.id, lambda j: j.start_processing()) is None
        assert redis_registry.delete(job.id) is False
