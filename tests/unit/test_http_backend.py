"""
tests/unit/test_http_backend.py

Unit tests for docchat.ingestion.backends.http.HttpStorageBackend.

The server is replaced by httpx.MockTransport; handlers read the streamed
request body so progress events are produced exactly as on the wire.

Coverage
--------
  - transfer(): headers, per-chunk progress, TransferComplete with handle
  - transfer(): 415 → ProcessingError, 5xx → retryable TransferError,
    other 4xx → non-retryable TransferError, connection errors retryable,
    an unreadable acknowledgement is not retried
  - await_result(): polls until terminal, tolerates transient poll
    failures, gives up after repeated failures (unreadable bodies included)
    or on 404
  - await_result(): failed jobs rebuilt into their error kind, unknown kinds kept
  - cancel(): best effort; delete(): 404 → NotFoundError; list_documents(),
    unreadable listing → BackendUnavailableError
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from docchat.errors import (
    BackendUnavailableError,
    DocChatError,
    NotFoundError,
    ProcessingError,
    TransferError,
)
from docchat.ingestion.backends.base import TransferComplete, TransferProgress
from docchat.ingestion.backends.http import HttpStorageBackend
from docchat.models.schemas.document import DocumentType
from docchat.models.schemas.ingest import ErrorInfo, IngestJob, JobStatus

PDF = "application/pdf"


def _backend(handler, **kwargs: Any) -> HttpStorageBackend:
    options: dict[str, Any] = {"chunk_bytes": 10, "poll_interval": 0.0, "processing_timeout": 5.0}
    options.update(kwargs)
    return HttpStorageBackend(
        "http://docchat.test",
        "test-key",
        transport=httpx.MockTransport(handler),
        **options,
    )


def _job(status: JobStatus, **fields: Any) -> dict:
    job = IngestJob(
        id="job-1",
        filename="report.pdf",
        document_type=DocumentType.pdf,
        size=35,
        status=status,
        created_at=datetime.now(timezone.utc),
        **fields,
    )
    return job.model_dump(mode="json")


async def _events(backend: HttpStorageBackend, payload: bytes, filename: str = "report.pdf") -> list:
    return [event async for event in backend.transfer(payload, filename, PDF)]


class TestTransfer:
    @pytest.mark.asyncio
    async def test_streams_body_and_reports_progress(self) -> None:
        seen: dict[str, Any] = {}

        async def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = await request.aread()
            seen["headers"] = request.headers
            seen["path"] = request.url.path
            return httpx.Response(
                202,
                json={"handle": "job-1", "filename": "q3 report.pdf", "received_bytes": len(seen["body"])},
            )

        events = await _events(_backend(handler), b"x" * 35, filename="q3 report.pdf")

        assert seen["path"] == "/api/ingest"
        assert seen["body"] == b"x" * 35
        assert seen["headers"]["x-api-key"] == "test-key"
        assert seen["headers"]["x-filename"] == "q3%20report.pdf"
        assert seen["headers"]["x-upload-size"] == "35"
        assert seen["headers"]["content-type"] == PDF

        *progress, complete = events
        assert [e.bytes_sent for e in progress] == [10, 20, 30, 35]
        assert all(isinstance(e, TransferProgress) and e.total_bytes == 35 for e in progress)
        assert complete == TransferComplete(handle="job-1", bytes_acknowledged=35)

    @pytest.mark.asyncio
    async def test_unsupported_media_is_processing_error(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await request.aread()
            return httpx.Response(415, json={"detail": "Not a PDF."})

        with pytest.raises(ProcessingError, match="Not a PDF."):
            await _events(_backend(handler), b"x" * 12)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code, retryable", [(503, True), (429, True), (400, False), (401, False)])
    async def test_status_mapping(self, code: int, retryable: bool) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await request.aread()
            return httpx.Response(code, json={"detail": "nope"})

        with pytest.raises(TransferError) as exc_info:
            await _events(_backend(handler), b"x" * 12)
        assert exc_info.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransferError) as exc_info:
            await _events(_backend(handler), b"x" * 12)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unreadable_acknowledgement_is_not_retried(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await request.aread()
            return httpx.Response(202, text="<html>accepted</html>")

        with pytest.raises(TransferError) as exc_info:
            await _events(_backend(handler), b"x" * 12)
        assert exc_info.value.retryable is False


class TestAwaitResult:
    @pytest.mark.asyncio
    async def test_polls_until_indexed(self, make_document) -> None:
        document = make_document("doc-9", page_count=4)
        replies = [
            httpx.Response(200, json=_job(JobStatus.processing)),
            httpx.Response(503),
            httpx.Response(200, json=_job(JobStatus.indexed, document=document)),
        ]
        paths: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return replies.pop(0)

        result = await _backend(handler).await_result("job-1")

        assert result == document
        assert paths == ["/api/ingest/job-1"] * 3

    @pytest.mark.asyncio
    async def test_failed_job_raises_its_error_kind(self) -> None:
        failed = _job(
            JobStatus.failed,
            error=ErrorInfo(kind="processing_error", reason="PDF is password-protected."),
        )

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=failed)

        with pytest.raises(ProcessingError, match="password-protected"):
            await _backend(handler).await_result("job-1")

    @pytest.mark.asyncio
    async def test_unknown_error_kind_is_kept(self) -> None:
        failed = _job(JobStatus.failed, error=ErrorInfo(kind="quota_exceeded", reason="Storage quota reached."))

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=failed)

        with pytest.raises(DocChatError) as exc_info:
            await _backend(handler).await_result("job-1")
        assert exc_info.value.kind == "quota_exceeded"
        assert exc_info.value.reason == "Storage quota reached."

    @pytest.mark.asyncio
    async def test_cancelled_job_is_processing_error(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_job(JobStatus.cancelled))

        with pytest.raises(ProcessingError):
            await _backend(handler).await_result("job-1")

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_poll_failures(self) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendUnavailableError):
            await _backend(handler).await_result("job-1")
        assert calls == 3

    @pytest.mark.asyncio
    async def test_unreadable_status_counts_as_poll_failure(self) -> None:
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"status": "somewhere"})

        with pytest.raises(BackendUnavailableError):
            await _backend(handler).await_result("job-1")
        assert calls == 3

    @pytest.mark.asyncio
    async def test_unknown_handle(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"detail": "Ingest job 'job-1' not found."})

        with pytest.raises(BackendUnavailableError):
            await _backend(handler).await_result("job-1")

    @pytest.mark.asyncio
    async def test_processing_timeout(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_job(JobStatus.processing))

        with pytest.raises(BackendUnavailableError, match="did not finish"):
            await _backend(handler, processing_timeout=0.0).await_result("job-1")


class TestCancelAndDocuments:
    @pytest.mark.asyncio
    async def test_cancel_sends_delete(self) -> None:
        requests: list[tuple[str, str]] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))
            return httpx.Response(200, json=_job(JobStatus.cancelled))

        await _backend(handler).cancel("job-1")
        assert requests == [("DELETE", "/api/ingest/job-1")]

    @pytest.mark.asyncio
    async def test_cancel_never_raises(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        await _backend(handler).cancel("job-1")

    @pytest.mark.asyncio
    async def test_delete_ok_and_missing(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/gone"):
                return httpx.Response(404, json={"detail": "not found"})
            return httpx.Response(204)

        backend = _backend(handler)
        await backend.delete("doc-1")
        with pytest.raises(NotFoundError):
            await backend.delete("gone")

    @pytest.mark.asyncio
    async def test_delete_server_error(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"detail": "boom"})

        with pytest.raises(BackendUnavailableError):
            await _backend(handler).delete("doc-1")

    @pytest.mark.asyncio
    async def test_list_documents(self, make_document) -> None:
        documents = [make_document("a"), make_document("b", "notes.docx")]

        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[d.model_dump(mode="json") for d in documents])

        assert await _backend(handler).list_documents() == documents

    @pytest.mark.asyncio
    async def test_unreadable_listing(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"documents": "soon"})

        with pytest.raises(BackendUnavailableError):
            await _backend(handler).list_documents()
