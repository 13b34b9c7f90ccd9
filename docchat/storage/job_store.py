"""
docchat/storage/job_store.py

Persistence for ingest job status.

InMemoryJobStore
    Dict-backed; the default for a single server process.

RedisJobStore
    Stores each job as a JSON string under ``ingest:job:<id>`` with a TTL,
    so several API workers can answer status polls for the same upload.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

import structlog
from redis.asyncio import Redis

from docchat.errors import NotFoundError
from docchat.models.schemas.ingest import IngestJob

logger = structlog.get_logger(__name__)

_REDIS_KEY_PREFIX = "ingest:job:"


class JobStore(ABC):
    """Where ingest job records are kept."""

    async def aclose(self) -> None:
        return None

    @abstractmethod
    async def save(self, job: IngestJob) -> None:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> IngestJob:
        """Raises NotFoundError when the job is unknown or expired."""
        ...


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: dict[str, IngestJob] = {}

    async def save(self, job: IngestJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def get(self, job_id: str) -> IngestJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Ingest job '{job_id}' not found.")
        return job.model_copy(deep=True)


class RedisJobStore(JobStore):
    def __init__(self, redis: Redis, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @classmethod
    async def connect(cls, url: str, ttl_seconds: int, max_connections: int = 20) -> RedisJobStore:
        """Open a pooled client for *url* and verify connectivity (called on app startup)."""
        redis = Redis.from_url(url, max_connections=max_connections, decode_responses=True)
        try:
            await redis.ping()
        except Exception:
            await redis.aclose()
            raise
        logger.info("redis_connected", url=url.rsplit("@", 1)[-1])
        return cls(redis, ttl_seconds)

    async def aclose(self) -> None:
        """Close the client and its connection pool (called on app shutdown)."""
        await self._redis.aclose()

    async def save(self, job: IngestJob) -> None:
        await self._redis.set(
            f"{_REDIS_KEY_PREFIX}{job.id}",
            job.model_dump_json(),
            ex=self._ttl,
        )
        logger.debug("ingest_job_saved", job_id=job.id, status=job.status.value)

    async def get(self, job_id: str) -> IngestJob:
        raw: str | None = await self._redis.get(f"{_REDIS_KEY_PREFIX}{job_id}")
        if raw is None:
            raise NotFoundError(f"Ingest job '{job_id}' not found.")
        return IngestJob.model_validate_json(raw)
