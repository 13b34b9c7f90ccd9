"""
docchat/registry.py

The visible document list.

The registry is the only list of documents the client keeps; the upload
controller appends to it when an upload is indexed, and deletes, refreshes
and the sidebar go through it as well.  Mutations are serialized by one
asyncio lock.  A removed id is remembered so a late append of the same
document (an upload that finished after the user deleted it) cannot bring
it back.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable

import structlog

from docchat.errors import NotFoundError
from docchat.models.schemas.document import Document

logger = structlog.get_logger(__name__)

RegistryListener = Callable[[list[Document]], None]


class DocumentRegistry(ABC):
    @abstractmethod
    def list(self) -> list[Document]:
        """Documents in display order (oldest first)."""
        ...

    @abstractmethod
    def get(self, document_id: str) -> Document:
        ...

    @abstractmethod
    async def append(self, document: Document) -> bool:
        """Add *document*. Returns False when it was already present or was removed."""
        ...

    @abstractmethod
    async def remove(self, document_id: str) -> Document:
        """Raises NotFoundError if *document_id* is not in the registry."""
        ...

    @property
    @abstractmethod
    def version(self) -> int:
        """Counter advanced by every mutation; pass it to replace_all() as *since*."""
        ...

    @abstractmethod
    async def replace_all(self, documents: list[Document], since: int | None = None) -> None:
        """Replace the contents with a backend listing.

        Documents appended after version *since* are kept even when the
        listing (fetched before they were appended) does not contain them.
        """
        ...

    @abstractmethod
    def add_listener(self, listener: RegistryListener) -> Callable[[], None]:
        """Call *listener* with the new list after every change. Returns an unsubscribe function."""
        ...


class InMemoryDocumentRegistry(DocumentRegistry):
    def __init__(self, documents: list[Document] | None = None) -> None:
        self._documents: dict[str, Document] = {doc.id: doc for doc in documents or []}
        self._removed: set[str] = set()
        # id -> version at which it was appended
        self._appended: dict[str, int] = {}
        self._version = 0
        self._listeners: list[RegistryListener] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    @property
    def version(self) -> int:
        return self._version

    def list(self) -> list[Document]:
        return sorted(self._documents.values(), key=lambda doc: doc.uploaded_at)

    def get(self, document_id: str) -> Document:
        try:
            return self._documents[document_id]
        except KeyError:
            raise NotFoundError(f"Document '{document_id}' not found.") from None

    async def append(self, document: Document) -> bool:
        async with self._lock:
            if document.id in self._documents:
                return False
            if document.id in self._removed:
                logger.info("registry_append_after_remove", document_id=document.id)
                return False
            self._documents[document.id] = document
            self._version += 1
            self._appended[document.id] = self._version
        logger.debug("registry_appended", document_id=document.id, name=document.name)
        self._changed()
        return True

    async def remove(self, document_id: str) -> Document:
        async with self._lock:
            document = self._documents.pop(document_id, None)
            if document is None:
                raise NotFoundError(f"Document '{document_id}' not found.")
            self._removed.add(document_id)
            self._appended.pop(document_id, None)
            self._version += 1
        logger.debug("registry_removed", document_id=document_id)
        self._changed()
        return document

    async def replace_all(self, documents: list[Document], since: int | None = None) -> None:
        async with self._lock:
            fresh = {doc.id: doc for doc in documents if doc.id not in self._removed}
            if since is not None:
                for document_id, appended_at in self._appended.items():
                    if appended_at > since and document_id not in fresh:
                        fresh[document_id] = self._documents[document_id]
                        logger.debug("registry_refresh_kept_append", document_id=document_id)
            self._documents = fresh
            self._appended = {i: v for i, v in self._appended.items() if i in fresh}
            self._version += 1
        self._changed()

    def add_listener(self, listener: RegistryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        snapshot = self.list()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("registry_listener_failed")
