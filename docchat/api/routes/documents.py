"""
docchat/api/routes/documents.py

Document management endpoints.

GET /documents
    All indexed documents, oldest first.

POST /documents
    One-shot multipart upload: the file is ingested before the response is
    sent and the new Document is returned (201).

DELETE /documents/{document_id}
    Remove a document together with its index and stored file.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status

from docchat.api.routes import get_document_store, get_pipeline, require_api_key
from docchat.config import settings
from docchat.ingestion.filetypes import classify
from docchat.ingestion.pipeline import IngestionPipeline
from docchat.models.schemas.document import Document
from docchat.storage.document_store import DocumentStore

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=list[Document],
    summary="List documents",
)
async def list_documents(
    store: DocumentStore = Depends(get_document_store),
    _key: str = Depends(require_api_key),
) -> list[Document]:
    return await store.list()


@router.post(
    "",
    response_model=Document,
    status_code=status.HTTP_201_CREATED,
    summary="Upload and ingest a file",
)
async def upload_document(
    file: UploadFile = File(..., description="PDF or DOCX file"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
    _key: str = Depends(require_api_key),
) -> Document:
    """Ingest a PDF or DOCX upload synchronously.

    Maximum file size: ``max_upload_bytes`` (50 MB by default).
    """
    filename = file.filename or "upload"
    document_type = classify(filename, file.content_type or "")

    contents = await file.read()
    if len(contents) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds maximum allowed size of {settings.max_upload_bytes // (1024 * 1024)} MB.",
        )

    document = await pipeline.run(contents, filename, document_type)
    logger.info("document_uploaded", document_id=document.id, filename=filename)
    return document


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document",
)
async def delete_document(
    document_id: str,
    store: DocumentStore = Depends(get_document_store),
    _key: str = Depends(require_api_key),
) -> Response:
    await store.delete(document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
