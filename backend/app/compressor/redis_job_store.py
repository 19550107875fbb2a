"""
Redis-backed job registry.

Lets job state survive a restart of the web process. Selected with
``JOB_STORE=redis``.

Schema:
    job:{job_id} -> Hash with all CompressionJob fields (None stored as "")

Per-job exclusive access uses WATCH/MULTI optimistic transactions on the
job's own key, so concurrent updates to different jobs never conflict.
Records have no Redis TTL; the retention sweeper deletes them together with
their files.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import redis

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.enums.job_status import JobStatus
from compressor.enums.quality import QualityTier
from compressor.errors import DuplicateJobError
from compressor.job_registry import JobRegistry, Mutator, apply_mutation
from compressor.models import CompressionJob

logger = setup_enhanced_logging(__name__)

KEY_PREFIX = "job:"

INT_FIELDS = {"original_size", "progress", "compressed_size"}
DATETIME_FIELDS = {"created_at", "started_at", "completed_at"}


def encode_job(job: CompressionJob) -> Dict[str, str]:
    """Convert a job into a flat string mapping for a Redis hash."""
    redis_data = {}
    for key, value in job.__dict__.items():
        if isinstance(value, datetime):
            redis_data[key] = value.isoformat()
        elif isinstance(value, (JobStatus, QualityTier)):
            redis_data[key] = value.value
        elif value is None:
            redis_data[key] = ""
        else:
            redis_data[key] = str(value)
    return redis_data


def decode_job(data: Dict[str, str]) -> CompressionJob:
    """Rebuild a job from a Redis hash written by ``encode_job``."""
    fields: Dict[str, Any] = {}
    for key, value in data.items():
        if value == "":
            fields[key] = None
        elif key in INT_FIELDS:
            fields[key] = int(value)
        elif key in DATETIME_FIELDS:
            fields[key] = datetime.fromisoformat(value)
        elif key == "status":
            fields[key] = JobStatus(value)
        elif key == "quality":
            fields[key] = QualityTier(value)
        else:
            fields[key] = value
    return CompressionJob(**fields)


class RedisJobRegistry(JobRegistry):
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisJobRegistry":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        client.ping()
        log_with_context(logger, "info", "[RedisJobStore] Redis connection established", url=url)
        return cls(client)

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{KEY_PREFIX}{job_id}"

    def create(self, job: CompressionJob) -> CompressionJob:
        key = self._key(job.id)
        with self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    if pipe.exists(key):
                        pipe.unwatch()
                        raise DuplicateJobError(job.id)
                    pipe.multi()
                    pipe.hset(key, mapping=encode_job(job))
                    pipe.execute()
                    break
                except redis.WatchError:
                    continue

        log_with_context(
            logger, "info", "[RedisJobStore] Job created", job_id=job.id, status=job.status.value
        )
        return job

    def snapshot(self, job_id: str) -> Optional[CompressionJob]:
        data = self._client.hgetall(self._key(job_id))
        if not data:
            return None
        return decode_job(data)

    def update(self, job_id: str, mutator: Mutator) -> Optional[CompressionJob]:
        key = self._key(job_id)
        with self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    data = pipe.hgetall(key)
                    if not data:
                        pipe.unwatch()
                        return None

                    current = decode_job(data)
                    updated = apply_mutation(current, mutator)
                    if updated is current:
                        pipe.unwatch()
                        return current

                    pipe.multi()
                    pipe.hset(key, mapping=encode_job(updated))
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    # Another writer touched this job; re-read and retry
                    log_with_context(
                        logger, "debug", "[RedisJobStore] Update conflict, retrying", job_id=job_id
                    )
                    continue

    def delete(self, job_id: str) -> bool:
        removed = self._client.delete(self._key(job_id))
        if removed:
            log_with_context(logger, "info", "[RedisJobStore] Job deleted", job_id=job_id)
        return bool(removed)

    def job_ids(self) -> List[str]:
        ids = []
        for key in self._client.scan_iter(match=f"{KEY_PREFIX}*", count=100):
            # Only accept keys with exactly one colon: job:{id}
            if key.count(":") != 1:
                continue
            ids.append(key.split(":", 1)[1])
        return ids

    def close(self) -> None:
        self._client.close()
