"""
Job Status Cache
Redis-backed read-through/write-through cache in front of the job registry.
"""

import logging
from typing import Optional

from redis.exceptions import RedisError

from modelproxy.core.redis import RedisManager
from modelproxy.models.job import Job
from modelproxy.services.registry import JobRegistry

logger = logging.getLogger(__name__)


class StatusCache:
    """
    Caches job snapshots in Redis with a TTL.

    The registry stays authoritative: reads consult it first and only fall
    back to Redis for jobs this process does not hold. Cache failures are
    logged and treated as misses.
    """

    KEY_PREFIX = "job:status:"

    def __init__(self, registry: JobRegistry, redis_manager: RedisManager, ttl: int = 3600):
        self.registry = registry
        self.redis_manager = redis_manager
        self.ttl = ttl

    @property
    def redis(self):
        return self.redis_manager.get_connection()

    def _key(self, job_id: str) -> str:
        return f"{self.KEY_PREFIX}{job_id}"

    async def store(self, job: Job) -> bool:
        """
        Write a snapshot through to Redis.

        When the write fails the existing entry is dropped, so an older
        snapshot is never served in place of this one.

        Returns:
            False when Redis is unavailable
        """
        try:
            await self.redis.setex(self._key(job.id), self.ttl, job.model_dump_json())
            logger.debug(f"Job status cached: {job.id} ({job.status.value})")
            return True
        except RedisError as e:
            logger.warning(f"Failed to cache job status for {job.id}: {e}")
            await self.delete(job.id)
            return False

    async def fetch(self, job_id: str) -> Optional[Job]:
        """Cached snapshot only, no registry fallback."""
        try:
            value = await self.redis.get(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Failed to get cached job status for {job_id}: {e}")
            return None

        if not value:
            return None

        try:
            return Job.model_validate_json(value)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry for {job_id}: {e}")
            return None

    async def get(self, job_id: str) -> Optional[Job]:
        """
        Latest known snapshot of a job.

        Jobs held by the registry are answered from it. Jobs this process no
        longer holds (e.g. after a restart or eviction) are still answered
        from Redis until their TTL expires. Reads never write to Redis; the
        job's runner is the only writer.
        """
        job = self.registry.get(job_id)
        if job is not None:
            return job
        return await self.fetch(job_id)

    async def delete(self, job_id: str) -> None:
        try:
            await self.redis.delete(self._key(job_id))
            logger.debug(f"Job cache cleared: {job_id}")
        except RedisError as e:
            logger.warning(f"Failed to clear job cache for {job_id}: {e}")

    async def health_check(self) -> dict:
        return await self.redis_manager.health_check()

    async def close(self) -> None:
        await self.redis_manager.close()


__all__ = ["StatusCache"]
