"""
tests/unit/test_job_store.py

Unit tests for docchat.storage.job_store.

The Redis store is exercised against an AsyncMock client, so no running
Redis is required.

Coverage
--------
  - InMemoryJobStore: save/get, copies isolate callers, NotFoundError
  - RedisJobStore: connect() pings (and closes on failure), aclose(),
    JSON value under ingest:job:<id> with TTL, decode on get,
    NotFoundError for missing keys
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from docchat.errors import NotFoundError
from docchat.models.schemas.document import DocumentType
from docchat.models.schemas.ingest import IngestJob, JobStatus
from docchat.storage.job_store import InMemoryJobStore, RedisJobStore


def _job(job_id: str = "job-1") -> IngestJob:
    return IngestJob(
        id=job_id,
        filename="report.pdf",
        document_type=DocumentType.pdf,
        size=10,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_save_then_get(self) -> None:
        store = InMemoryJobStore()
        await store.save(_job())
        job = await store.get("job-1")
        assert job.filename == "report.pdf"
        assert job.status is JobStatus.processing

    @pytest.mark.asyncio
    async def test_returned_jobs_are_copies(self) -> None:
        store = InMemoryJobStore()
        original = _job()
        await store.save(original)

        original.status = JobStatus.failed
        fetched = await store.get("job-1")
        fetched.stage = "mutated"

        again = await store.get("job-1")
        assert again.status is JobStatus.processing
        assert again.stage == "queued"

    @pytest.mark.asyncio
    async def test_unknown_job_raises(self) -> None:
        with pytest.raises(NotFoundError):
            await InMemoryJobStore().get("missing")


class TestRedisJobStore:
    @pytest.mark.asyncio
    async def test_save_writes_json_with_ttl(self) -> None:
        redis = AsyncMock()
        store = RedisJobStore(redis, ttl_seconds=3600)

        await store.save(_job())

        redis.set.assert_awaited_once()
        key, value = redis.set.await_args.args
        assert key == "ingest:job:job-1"
        assert IngestJob.model_validate_json(value).id == "job-1"
        assert redis.set.await_args.kwargs["ex"] == 3600

    @pytest.mark.asyncio
    async def test_get_decodes_json(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = _job().model_dump_json()
        store = RedisJobStore(redis, ttl_seconds=60)

        job = await store.get("job-1")

        redis.get.assert_awaited_once_with("ingest:job:job-1")
        assert job.document_type is DocumentType.pdf

    @pytest.mark.asyncio
    async def test_missing_key_raises(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = None
        with pytest.raises(NotFoundError):
            await RedisJobStore(redis, ttl_seconds=60).get("gone")

    @pytest.mark.asyncio
    async def test_connect_pings_and_aclose_closes(self) -> None:
        redis = AsyncMock()
        with patch("docchat.storage.job_store.Redis.from_url", return_value=redis) as from_url:
            store = await RedisJobStore.connect("redis://localhost:6379/0", ttl_seconds=60)

        from_url.assert_called_once_with(
            "redis://localhost:6379/0", max_connections=20, decode_responses=True
        )
        redis.ping.assert_awaited_once()

        await store.aclose()
        redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_closes_client(self) -> None:
        redis = AsyncMock()
        redis.ping.side_effect = ConnectionError("refused")
        with patch("docchat.storage.job_store.Redis.from_url", return_value=redis):
            with pytest.raises(ConnectionError):
                await RedisJobStore.connect("redis://localhost:6379/0", ttl_seconds=60)
        redis.aclose.assert_awaited_once()
