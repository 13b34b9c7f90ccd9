"""
docchat/storage/document_store.py

Authoritative store of ingested documents.

A document and its search index live in one record, so they become visible
together and disappear together.  Mutations take an asyncio lock and never
await between touching the record map, the fingerprint map and the index;
readers therefore never observe a document without its index (or an index
without its document).

The original file bytes are written under ``upload_dir`` before the record
is published and unlinked after it has been removed.

Duplicate uploads are detected by SHA-256 fingerprint of the raw bytes: the
same content ingested twice resolves to the existing document.
"""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path

import structlog

from docchat.errors import NotFoundError
from docchat.models.schemas.document import Document
from docchat.storage.search_index import DocumentIndex, SearchHit

logger = structlog.get_logger(__name__)


def compute_fingerprint(payload: bytes) -> str:
    """Return the SHA-256 hex digest of the raw file bytes."""
    return hashlib.sha256(payload).hexdigest()


def _discard_file(path: Path | None) -> None:
    if path is not None:
        path.unlink(missing_ok=True)
        logger.debug("document_file_discarded", path=str(path))


@dataclass
class _StoredDocument:
    document: Document
    index: DocumentIndex
    fingerprint: str
    path: Path | None


class DocumentStore:
    """In-process store of documents, their indexes and original files."""

    def __init__(self, upload_dir: Path | None = None) -> None:
        self._upload_dir = upload_dir
        self._records: dict[str, _StoredDocument] = {}
        self._by_fingerprint: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._records

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def list(self) -> list[Document]:
        """All documents, oldest upload first."""
        return sorted(
            (record.document for record in self._records.values()),
            key=lambda doc: doc.uploaded_at,
        )

    async def get(self, document_id: str) -> Document:
        record = self._records.get(document_id)
        if record is None:
            raise NotFoundError(f"Document '{document_id}' not found.")
        return record.document

    def find_by_fingerprint(self, fingerprint: str) -> Document | None:
        document_id = self._by_fingerprint.get(fingerprint)
        if document_id is None:
            return None
        return self._records[document_id].document

    def search(
        self,
        query: str,
        *,
        document_id: str | None = None,
        top_k: int = 5,
    ) -> list[SearchHit]:
        """Search one document, or every document when *document_id* is None.

        Raises:
            NotFoundError: *document_id* is not stored.
        """
        if document_id is not None:
            record = self._records.get(document_id)
            if record is None:
                raise NotFoundError(f"Document '{document_id}' not found.")
            return record.index.search(query, top_k)

        hits: list[SearchHit] = []
        for record in list(self._records.values()):
            hits.extend(record.index.search(query, top_k))
        hits.sort(key=lambda h: h.rank_key)
        return hits[:top_k]

    # ── Writes ────────────────────────────────────────────────────────────────

    async def add(
        self,
        document: Document,
        index: DocumentIndex,
        payload: bytes,
        fingerprint: str | None = None,
    ) -> Document:
        """Publish a fully indexed document.

        If content with the same fingerprint was stored meanwhile, the
        existing document is returned and nothing is written.
        """
        fingerprint = fingerprint or compute_fingerprint(payload)
        path = await self._write_file(document, payload)

        try:
            async with self._lock:
                existing_id = self._by_fingerprint.get(fingerprint)
                if existing_id is not None:
                    duplicate = True
                else:
                    duplicate = False
                    self._records[document.id] = _StoredDocument(
                        document=document,
                        index=index,
                        fingerprint=fingerprint,
                        path=path,
                    )
                    self._by_fingerprint[fingerprint] = document.id
        except asyncio.CancelledError:
            # Only the lock wait can be interrupted; nothing was published.
            _discard_file(path)
            raise

        if duplicate:
            await self._unlink(path)
            logger.info("document_duplicate_content", document_id=existing_id, name=document.name)
            return self._records[existing_id].document

        logger.info(
            "document_stored",
            document_id=document.id,
            name=document.name,
            pages=document.page_count,
            chunks=len(index),
        )
        return document

    async def delete(self, document_id: str) -> Document:
        """Remove a document together with its index and original file.

        Raises:
            NotFoundError: The document does not exist.
        """
        async with self._lock:
            record = self._records.pop(document_id, None)
            if record is None:
                raise NotFoundError(f"Document '{document_id}' not found.")
            self._by_fingerprint.pop(record.fingerprint, None)

        await self._unlink(record.path)
        logger.info("document_deleted", document_id=document_id, name=record.document.name)
        return record.document

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _write_file(self, document: Document, payload: bytes) -> Path | None:
        if self._upload_dir is None:
            return None
        path = self._upload_dir / f"{document.id}.{document.type.value}"

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)

        write = asyncio.ensure_future(asyncio.to_thread(_write))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; drop the file once it is done.
            write.add_done_callback(lambda _: _discard_file(path))
            raise
        return path

    async def _unlink(self, path: Path | None) -> None:
        if path is not None:
            await asyncio.to_thread(path.unlink, missing_ok=True)
