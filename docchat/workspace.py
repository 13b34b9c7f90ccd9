"""
docchat/workspace.py

Application state of a DocChat front end.

A Workspace wires the document registry, the upload controller, the
conversation binding and the notification sink together.  Views read from
it and change it only through these operations.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from docchat.chat.client import ChatClient, HttpChatClient
from docchat.chat.conversation import ConversationBinding
from docchat.config import settings
from docchat.errors import NotFoundError
from docchat.ingestion.backends.base import SourceFile, StorageBackend
from docchat.ingestion.backends.http import HttpStorageBackend
from docchat.ingestion.controller import BatchSubmission, IngestionController
from docchat.models.schemas.document import Document
from docchat.notifications import LogNotificationSink, NotificationSink
from docchat.registry import DocumentRegistry, InMemoryDocumentRegistry

logger = structlog.get_logger(__name__)


class Workspace:
    def __init__(
        self,
        backend: StorageBackend,
        chat_client: ChatClient,
        *,
        registry: DocumentRegistry | None = None,
        notifications: NotificationSink | None = None,
        **upload_options: Any,
    ) -> None:
        self.backend = backend
        self.notifications = notifications or LogNotificationSink()
        self.registry = registry or InMemoryDocumentRegistry()
        self.uploads = IngestionController(backend, self.registry, self.notifications, **upload_options)
        self.conversation = ConversationBinding(chat_client, self.notifications)

    @classmethod
    def connect(
        cls,
        base_url: str = settings.api_base_url,
        api_key: str = settings.api_key,
        **kwargs: Any,
    ) -> Workspace:
        """Workspace backed by a DocChat server over HTTP."""
        return cls(
            HttpStorageBackend(base_url, api_key),
            HttpChatClient(base_url, api_key),
            **kwargs,
        )

    @property
    def selected(self) -> Document | None:
        return self.conversation.document

    async def refresh_documents(self) -> list[Document]:
        """Reload the registry from the backend listing."""
        since = self.registry.version
        documents = await self.backend.list_documents()
        await self.registry.replace_all(documents, since=since)
        selected = self.selected
        if selected is not None and selected.id not in {doc.id for doc in self.registry.list()}:
            self.conversation.bind(None)
        logger.debug("workspace_refreshed", documents=len(documents))
        return self.registry.list()

    def select_document(self, document_id: str | None) -> Document | None:
        """Bind the conversation to a registry document, or to none.

        Raises:
            NotFoundError: *document_id* is not in the registry.
        """
        document = self.registry.get(document_id) if document_id is not None else None
        current = self.selected
        if (document.id if document else None) != (current.id if current else None):
            self.conversation.bind(document)
        return document

    async def delete_document(self, document_id: str) -> None:
        """Delete on the backend, then drop it from the registry and the conversation.

        Raises:
            NotFoundError: The backend does not know the document.
        """
        try:
            await self.backend.delete(document_id)
        except NotFoundError:
            await self._forget(document_id)
            raise
        document = await self._forget(document_id)
        name = document.name if document else document_id
        self.notifications.success("Document deleted", f"'{name}' was removed.")

    def upload(self, files: Iterable[SourceFile]) -> BatchSubmission:
        return self.uploads.submit_many(files)

    async def aclose(self) -> None:
        await self.uploads.aclose()
        await self.backend.aclose()

    async def _forget(self, document_id: str) -> Document | None:
        if self.selected is not None and self.selected.id == document_id:
            self.conversation.bind(None)
        try:
            return await self.registry.remove(document_id)
        except NotFoundError:
            return None
