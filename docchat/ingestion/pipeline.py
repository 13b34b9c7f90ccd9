"""
docchat/ingestion/pipeline.py

Server-side processing of one uploaded file.

    verify signature → dedup by fingerprint → extract pages → normalise →
    build page index → store (document + index published together)

Every content problem surfaces as ProcessingError; nothing is stored
unless every step succeeded.
"""
from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from docchat.config import settings
from docchat.errors import ProcessingError
from docchat.ingestion.connectors.base import BaseConnector
from docchat.ingestion.connectors.file import FileConnector
from docchat.ingestion.filetypes import verify_signature
from docchat.ingestion.normalizer import normalize
from docchat.models.schemas.document import Document, DocumentType
from docchat.storage.document_store import DocumentStore, compute_fingerprint
from docchat.storage.search_index import DocumentIndex

logger = structlog.get_logger(__name__)

StageCallback = Callable[[str], Awaitable[None]]


class IngestionPipeline:
    def __init__(
        self,
        store: DocumentStore,
        connector: BaseConnector | None = None,
        *,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
    ) -> None:
        self._store = store
        self._connector = connector or FileConnector()
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    async def run(
        self,
        payload: bytes,
        filename: str,
        document_type: DocumentType,
        on_stage: StageCallback | None = None,
    ) -> Document:
        """Ingest *payload* and return the stored Document.

        Args:
            payload:       Complete file bytes.
            filename:      Original filename, kept as the document name.
            document_type: Declared type, already checked against the accepted set.
            on_stage:      Awaited with a stage label as the pipeline advances.

        Raises:
            ProcessingError: The content is corrupt, encrypted, or has no text.
        """
        async def stage(label: str) -> None:
            logger.debug("ingest_stage", filename=filename, stage=label)
            if on_stage is not None:
                await on_stage(label)

        await stage("verifying")
        if not payload:
            raise ProcessingError(f"'{filename}' is empty.")
        verify_signature(payload, document_type)

        fingerprint = compute_fingerprint(payload)
        existing = self._store.find_by_fingerprint(fingerprint)
        if existing is not None:
            logger.info("ingest_duplicate", filename=filename, existing_id=existing.id)
            return existing

        await stage("extracting")
        result = await self._connector.extract(payload, document_type)
        pages = [normalize(page) for page in result.pages]
        if not any(pages):
            raise ProcessingError(
                f"No extractable text found in '{filename}'. Scanned documents are not supported."
            )

        await stage("indexing")
        document = Document(
            id=str(uuid.uuid4()),
            name=filename,
            type=document_type,
            size=len(payload),
            uploaded_at=datetime.now(timezone.utc),
            page_count=len(pages),
        )
        index = DocumentIndex.build(
            document.id,
            pages,
            chunk_size=self._chunk_size,
            chunk_overlap=self._chunk_overlap,
        )

        await stage("storing")
        stored = await self._store.add(document, index, payload, fingerprint)

        logger.info(
            "ingest_complete",
            document_id=stored.id,
            filename=filename,
            pages=stored.page_count,
            chunks=len(index),
        )
        return stored
