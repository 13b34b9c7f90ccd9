"""
docchat/ingestion/service.py

Background ingest jobs.

start() records a job in status "processing" and runs the pipeline as an
asyncio task; the HTTP layer answers immediately with the job handle and
the client polls get() until the job is terminal.  cancel() stops a job
that is still running; once a job is indexed, cancelling it is a no-op.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

import structlog

from docchat.errors import DocChatError, ProcessingError
from docchat.ingestion.pipeline import IngestionPipeline
from docchat.models.schemas.document import Document, DocumentType
from docchat.models.schemas.ingest import ErrorInfo, IngestJob, JobStatus
from docchat.storage.job_store import JobStore

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IngestService:
    def __init__(self, pipeline: IngestionPipeline, jobs: JobStore) -> None:
        self._pipeline = pipeline
        self._jobs = jobs
        self._running: dict[str, asyncio.Task[None]] = {}

    async def start(self, payload: bytes, filename: str, document_type: DocumentType) -> IngestJob:
        """Record a new job and start processing *payload* in the background."""
        job = IngestJob(
            id=str(uuid.uuid4()),
            filename=filename,
            document_type=document_type,
            size=len(payload),
            created_at=_now(),
        )
        await self._jobs.save(job)

        task = asyncio.create_task(self._run(job, payload), name=f"ingest-{job.id}")
        self._running[job.id] = task
        task.add_done_callback(lambda _: self._running.pop(job.id, None))

        logger.info("ingest_job_started", job_id=job.id, filename=filename, size=job.size)
        return job.model_copy(deep=True)

    async def get(self, job_id: str) -> IngestJob:
        return await self._jobs.get(job_id)

    async def wait(self, job_id: str) -> IngestJob:
        """Return the job once it is no longer processing."""
        task = self._running.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return await self._jobs.get(job_id)

    async def cancel(self, job_id: str) -> IngestJob:
        """Stop a running job. Terminal jobs are returned unchanged."""
        job = await self._jobs.get(job_id)
        if job.status.is_terminal:
            return job

        task = self._running.get(job_id)
        if task is not None:
            task.cancel()
            await asyncio.wait({task})
            return await self._jobs.get(job_id)

        # Started by another worker process; only the record can be updated.
        job.status = JobStatus.cancelled
        job.completed_at = _now()
        await self._jobs.save(job)
        logger.info("ingest_job_cancelled", job_id=job_id, running_here=False)
        return job

    async def aclose(self) -> None:
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    async def _run(self, job: IngestJob, payload: bytes) -> None:
        document: Document | None = None

        async def on_stage(label: str) -> None:
            job.stage = label
            await self._jobs.save(job)

        try:
            document = await self._pipeline.run(payload, job.filename, job.document_type, on_stage)
        except asyncio.CancelledError:
            job.status = JobStatus.cancelled
            job.completed_at = _now()
            await self._jobs.save(job)
            logger.info("ingest_job_cancelled", job_id=job.id, stage=job.stage)
            raise
        except DocChatError as exc:
            job.status = JobStatus.failed
            job.error = ErrorInfo(kind=exc.kind, reason=exc.reason)
            logger.warning("ingest_job_failed", job_id=job.id, kind=exc.kind, reason=exc.reason)
        except Exception as exc:  # noqa: BLE001
            logger.exception("ingest_job_crashed", job_id=job.id)
            error = ProcessingError(f"Unexpected error while processing '{job.filename}': {exc}")
            job.status = JobStatus.failed
            job.error = ErrorInfo(kind=error.kind, reason=error.reason)
        else:
            job.status = JobStatus.indexed
            job.stage = "done"
            job.document = document

        job.completed_at = _now()
        await asyncio.shield(self._jobs.save(job))
        logger.info("ingest_job_finished", job_id=job.id, status=job.status.value)
