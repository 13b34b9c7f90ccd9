"""
docchat/ingestion/backends/http.py

StorageBackend talking to the DocChat REST API with httpx.

Endpoints
---------
  POST   /api/ingest            streamed raw body → 202 IngestAccepted
  GET    /api/ingest/{handle}   job status, polled until terminal
  DELETE /api/ingest/{handle}   best-effort cancel
  GET    /api/documents         listing
  DELETE /api/documents/{id}    delete document + index

Status mapping for the upload request:
  415 / 422          → ProcessingError (content refused, never retried)
  408 / 429 / 5xx    → TransferError, retryable
  other 4xx          → TransferError, not retryable
  connection errors  → TransferError, retryable
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from docchat.config import settings
from docchat.errors import (
    BackendUnavailableError,
    NotFoundError,
    ProcessingError,
    TransferError,
    error_from_kind,
)
from docchat.ingestion.backends.base import (
    StorageBackend,
    TransferComplete,
    TransferEvent,
    TransferProgress,
)
from docchat.models.schemas.document import Document
from docchat.models.schemas.ingest import IngestAccepted, IngestJob, JobStatus

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS: frozenset[int] = frozenset({408, 429})
_CONTENT_REJECTED_STATUS: frozenset[int] = frozenset({415, 422})
# Consecutive failed status polls tolerated before giving up.
_MAX_POLL_FAILURES = 3


def _detail(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return response.reason_phrase


def _raise_for_upload_status(response: httpx.Response, filename: str) -> None:
    code = response.status_code
    if code < 400:
        return
    reason = f"Upload of '{filename}' rejected ({code}): {_detail(response)}"
    if code in _CONTENT_REJECTED_STATUS:
        raise ProcessingError(reason)
    if code >= 500 or code in _RETRYABLE_STATUS:
        raise TransferError(reason, retryable=True)
    raise TransferError(reason, retryable=False)


class HttpStorageBackend(StorageBackend):
    """Async client for the ingest and document endpoints."""

    def __init__(
        self,
        base_url: str = settings.api_base_url,
        api_key: str = settings.api_key,
        *,
        timeout: float = settings.request_timeout,
        chunk_bytes: int = settings.transfer_chunk_bytes,
        poll_interval: float = settings.processing_poll_interval,
        processing_timeout: float = settings.processing_timeout,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-API-Key": api_key}
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._chunk_bytes = chunk_bytes
        self._poll_interval = poll_interval
        self._processing_timeout = processing_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    # ── Transfer ─────────────────────────────────────────
    async def transfer(
        self,
        payload: bytes,
        filename: str,
        mime_type: str,
    ) -> AsyncIterator[TransferEvent]:
        total = len(payload)
        # None marks the end of the request body stream.
        events: asyncio.Queue[TransferProgress | None] = asyncio.Queue()

        async def body() -> AsyncIterator[bytes]:
            sent = 0
            for start in range(0, total, self._chunk_bytes):
                chunk = payload[start:start + self._chunk_bytes]
                yield chunk
                sent += len(chunk)
                events.put_nowait(TransferProgress(bytes_sent=sent, total_bytes=total))

        async def send() -> httpx.Response:
            try:
                async with self._client() as client:
                    return await client.post(
                        "/api/ingest",
                        content=body(),
                        headers={
                            "Content-Type": mime_type or "application/octet-stream",
                            "X-Filename": quote(filename),
                            "X-Upload-Size": str(total),
                        },
                    )
            finally:
                events.put_nowait(None)

        request = asyncio.create_task(send(), name=f"upload-{filename}")
        try:
            while (event := await events.get()) is not None:
                yield event
            try:
                response = await request
            except httpx.TimeoutException as exc:
                raise TransferError(f"Upload of '{filename}' timed out.") from exc
            except httpx.TransportError as exc:
                raise TransferError(f"Upload of '{filename}' failed: {exc}") from exc
        finally:
            if not request.done():
                request.cancel()

        _raise_for_upload_status(response, filename)
        try:
            accepted = IngestAccepted.model_validate(response.json())
        except ValueError as exc:
            raise TransferError(
                f"Upload of '{filename}' got an unreadable acknowledgement.", retryable=False
            ) from exc
        logger.debug("http_transfer_accepted", handle=accepted.handle, bytes=accepted.received_bytes)
        yield TransferComplete(handle=accepted.handle, bytes_acknowledged=accepted.received_bytes)

    # ── Processing result ────────────────────────────────
    async def await_result(self, handle: str) -> Document:
        deadline = time.monotonic() + self._processing_timeout
        failures = 0
        async with self._client() as client:
            while True:
                job, error = await self._poll(client, handle)
                if job is not None:
                    failures = 0
                    if job.status.is_terminal:
                        return self._job_result(job)
                else:
                    failures += 1
                    logger.warning("http_poll_failed", handle=handle, failures=failures, error=error)
                    if failures >= _MAX_POLL_FAILURES:
                        raise BackendUnavailableError(
                            f"Lost contact with the server while processing: {error}"
                        )

                if time.monotonic() >= deadline:
                    raise BackendUnavailableError(
                        f"Processing did not finish within {self._processing_timeout:.0f}s."
                    )
                await asyncio.sleep(self._poll_interval)

    async def _poll(self, client: httpx.AsyncClient, handle: str) -> tuple[IngestJob | None, str]:
        """Fetch the job once. Transient failures come back as (None, error)."""
        try:
            response = await client.get(f"/api/ingest/{handle}")
        except httpx.TransportError as exc:
            return None, str(exc) or type(exc).__name__

        code = response.status_code
        if code == 404:
            raise BackendUnavailableError(f"Ingest job '{handle}' is no longer known to the server.")
        if code >= 500 or code in _RETRYABLE_STATUS:
            return None, f"status {code}"
        if code >= 400:
            raise BackendUnavailableError(f"Status poll rejected ({code}): {_detail(response)}")
        try:
            return IngestJob.model_validate(response.json()), ""
        except ValueError:
            return None, "unreadable status response"

    @staticmethod
    def _job_result(job: IngestJob) -> Document:
        if job.status is JobStatus.indexed and job.document is not None:
            return job.document
        if job.status is JobStatus.cancelled:
            raise ProcessingError(f"Processing of '{job.filename}' was cancelled on the server.")
        if job.error is not None:
            raise error_from_kind(job.error.kind, job.error.reason)
        raise ProcessingError(f"Processing of '{job.filename}' failed without a reason.")

    # ── Cancel ───────────────────────────────────────────
    async def cancel(self, handle: str) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(f"/api/ingest/{handle}")
            logger.debug("http_cancel_sent", handle=handle, status_code=response.status_code)
        except httpx.HTTPError as exc:
            logger.warning("http_cancel_failed", handle=handle, error=str(exc))

    # ── Documents ────────────────────────────────────────
    async def delete(self, document_id: str) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(f"/api/documents/{document_id}")
        except httpx.TransportError as exc:
            raise BackendUnavailableError(f"Could not reach the server: {exc}") from exc
        if response.status_code == 404:
            raise NotFoundError(f"Document '{document_id}' not found.")
        if response.status_code >= 400:
            raise BackendUnavailableError(f"Delete failed ({response.status_code}): {_detail(response)}")

    async def list_documents(self) -> list[Document]:
        try:
            async with self._client() as client:
                response = await client.get("/api/documents")
        except httpx.TransportError as exc:
            raise BackendUnavailableError(f"Could not reach the server: {exc}") from exc
        if response.status_code >= 400:
            raise BackendUnavailableError(f"Listing failed ({response.status_code}): {_detail(response)}")
        try:
            return [Document.model_validate(item) for item in response.json()]
        except (TypeError, ValueError) as exc:
            raise BackendUnavailableError("The server sent an unreadable document listing.") from exc
