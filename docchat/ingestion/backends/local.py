"""
docchat/ingestion/backends/local.py

In-process StorageBackend driving the server-side IngestService directly.

Used to embed DocChat without an HTTP hop and to run the upload controller
end-to-end in tests.  Progress is reported per chunk exactly as the HTTP
backend does; ``chunk_delay`` slows the transfer down so it can be
observed or cancelled part-way.
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import structlog

from docchat.config import settings
from docchat.errors import (
    BackendUnavailableError,
    DocChatError,
    ProcessingError,
    UnsupportedTypeError,
    error_from_kind,
)
from docchat.ingestion.backends.base import (
    StorageBackend,
    TransferComplete,
    TransferEvent,
    TransferProgress,
)
from docchat.ingestion.filetypes import classify
from docchat.ingestion.service import IngestService
from docchat.models.schemas.document import Document
from docchat.models.schemas.ingest import JobStatus
from docchat.storage.document_store import DocumentStore

logger = structlog.get_logger(__name__)


class LocalStorageBackend(StorageBackend):
    def __init__(
        self,
        service: IngestService,
        store: DocumentStore,
        *,
        chunk_bytes: int = settings.transfer_chunk_bytes,
        chunk_delay: float = 0.0,
    ) -> None:
        self._service = service
        self._store = store
        self._chunk_bytes = chunk_bytes
        self._chunk_delay = chunk_delay

    async def transfer(
        self,
        payload: bytes,
        filename: str,
        mime_type: str,
    ) -> AsyncIterator[TransferEvent]:
        try:
            document_type = classify(filename, mime_type)
        except UnsupportedTypeError as exc:
            raise ProcessingError(exc.reason) from exc

        total = len(payload)
        received = bytearray()
        for start in range(0, total, self._chunk_bytes):
            await asyncio.sleep(self._chunk_delay)
            received += payload[start:start + self._chunk_bytes]
            yield TransferProgress(bytes_sent=len(received), total_bytes=total)

        job = await self._service.start(bytes(received), filename, document_type)
        yield TransferComplete(handle=job.id, bytes_acknowledged=len(received))

    async def await_result(self, handle: str) -> Document:
        job = await self._service.wait(handle)
        if job.status is JobStatus.indexed and job.document is not None:
            return job.document
        if job.status is JobStatus.cancelled:
            raise ProcessingError(f"Processing of '{job.filename}' was cancelled.")
        if job.error is not None:
            raise error_from_kind(job.error.kind, job.error.reason)
        raise BackendUnavailableError(f"Ingest job '{handle}' ended without a result.")

    async def cancel(self, handle: str) -> None:
        try:
            await self._service.cancel(handle)
        except DocChatError as exc:
            logger.warning("local_backend_cancel_failed", handle=handle, error=str(exc))

    async def delete(self, document_id: str) -> None:
        await self._store.delete(document_id)

    async def list_documents(self) -> list[Document]:
        return await self._store.list()
