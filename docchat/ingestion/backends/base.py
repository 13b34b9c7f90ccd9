"""
docchat/ingestion/backends/base.py

Contract between the upload controller and whatever stores and indexes
the files.

transfer() is an async generator: it yields TransferProgress while bytes
are being consumed and finishes with exactly one TransferComplete carrying
the processing handle.  Closing the generator early aborts the transfer.
"""
from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

from docchat.models.schemas.document import Document


@dataclass(frozen=True)
class SourceFile:
    """A file picked by the user, not yet validated."""
    name: str
    payload: bytes = field(repr=False)
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.payload)

    @classmethod
    def from_path(cls, path: Path | str, mime_type: str | None = None) -> SourceFile:
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or ""
        return cls(name=path.name, payload=path.read_bytes(), mime_type=mime_type)


@dataclass(frozen=True)
class TransferProgress:
    bytes_sent: int
    total_bytes: int

    @property
    def fraction(self) -> float:
        if self.total_bytes <= 0:
            return 1.0
        return min(self.bytes_sent / self.total_bytes, 1.0)


@dataclass(frozen=True)
class TransferComplete:
    handle: str
    bytes_acknowledged: int


TransferEvent = TransferProgress | TransferComplete


class StorageBackend(ABC):
    """Accepts raw bytes and turns them into indexed Documents."""

    @abstractmethod
    def transfer(
        self,
        payload: bytes,
        filename: str,
        mime_type: str,
    ) -> AsyncIterator[TransferEvent]:
        """Send *payload* and stream progress.

        Raises:
            TransferError:   Delivery failed; ``retryable`` tells whether
                             starting over may succeed.
            ProcessingError: The backend refused the content outright.
        """
        ...

    @abstractmethod
    async def await_result(self, handle: str) -> Document:
        """Wait until processing of *handle* finishes and return its Document.

        Raises:
            ProcessingError:         Extraction or indexing failed.
            BackendUnavailableError: The backend stopped answering.
        """
        ...

    @abstractmethod
    async def cancel(self, handle: str) -> None:
        """Ask the backend to stop work for *handle*. Best effort; never raises."""
        ...

    @abstractmethod
    async def delete(self, document_id: str) -> None:
        """Delete a document and its index data.

        Raises:
            NotFoundError: No such document.
        """
        ...

    @abstractmethod
    async def list_documents(self) -> list[Document]:
        ...

    async def aclose(self) -> None:
        return None
