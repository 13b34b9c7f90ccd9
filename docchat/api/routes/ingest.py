"""
docchat/api/routes/ingest.py

Streaming ingestion endpoints used by the upload controller.

POST /ingest
    Raw request body (not multipart).  The file name travels in the
    percent-encoded ``X-Filename`` header, the declared type in
    ``Content-Type`` and the expected length in ``X-Upload-Size``.  Once
    the whole body has been received a background job is started and the
    handle returned with status 202; the number of bytes received lets the
    client confirm nothing was lost.

GET /ingest/{handle}
    Job status, polled by the client until it is terminal.

DELETE /ingest/{handle}
    Cancel a job that is still processing.  Cancelling a finished job
    returns it unchanged.
"""
from __future__ import annotations

from urllib.parse import unquote

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from docchat.api.routes import get_ingest_service, require_api_key
from docchat.config import settings
from docchat.ingestion.filetypes import classify
from docchat.ingestion.service import IngestService
from docchat.models.schemas.ingest import IngestAccepted, IngestJob

logger = structlog.get_logger(__name__)

router = APIRouter()


def _too_large() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"File exceeds maximum allowed size of {settings.max_upload_bytes // (1024 * 1024)} MB.",
    )


@router.post(
    "",
    response_model=IngestAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Stream a file for ingestion",
)
async def start_ingest(
    request: Request,
    x_filename: str = Header(..., description="Percent-encoded original file name"),
    content_type: str = Header(default="", description="Declared MIME type"),
    x_upload_size: int | None = Header(default=None, ge=0, description="Expected body length"),
    service: IngestService = Depends(get_ingest_service),
    _key: str = Depends(require_api_key),
) -> IngestAccepted:
    filename = unquote(x_filename).strip() or "upload"
    document_type = classify(filename, content_type)

    if x_upload_size is not None and x_upload_size > settings.max_upload_bytes:
        raise _too_large()

    received = bytearray()
    async for chunk in request.stream():
        received += chunk
        if len(received) > settings.max_upload_bytes:
            raise _too_large()

    if x_upload_size is not None and len(received) != x_upload_size:
        logger.warning("ingest_size_mismatch", filename=filename, expected=x_upload_size, received=len(received))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Expected {x_upload_size} bytes but received {len(received)}.",
        )

    job = await service.start(bytes(received), filename, document_type)
    return IngestAccepted(handle=job.id, filename=filename, received_bytes=len(received))


@router.get(
    "/{handle}",
    response_model=IngestJob,
    summary="Get ingest job status",
)
async def get_ingest_job(
    handle: str,
    service: IngestService = Depends(get_ingest_service),
    _key: str = Depends(require_api_key),
) -> IngestJob:
    return await service.get(handle)


@router.delete(
    "/{handle}",
    response_model=IngestJob,
    summary="Cancel an ingest job",
)
async def cancel_ingest_job(
    handle: str,
    service: IngestService = Depends(get_ingest_service),
    _key: str = Depends(require_api_key),
) -> IngestJob:
    return await service.cancel(handle)
