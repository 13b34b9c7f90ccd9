"""
docchat/errors.py

Error taxonomy shared by the upload controller, the REST clients and the
server routes.

Every error carries a machine-readable ``kind`` and a human-readable
``reason`` so terminal failures can be shown to the user by category.
``status_code`` is the HTTP status the API answers with when the error
escapes a route.
"""
from __future__ import annotations

from fastapi import status


class DocChatError(Exception):
    """Base class for all DocChat domain errors."""

    kind: str = "error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"[{self.kind}] {self.reason}"


class UnsupportedTypeError(DocChatError):
    """The file is not a PDF or DOCX; rejected before any network call."""

    kind = "unsupported_type"
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class TransferError(DocChatError):
    """The payload could not be delivered to the storage backend."""

    kind = "transfer_error"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, reason: str, *, retryable: bool = True) -> None:
        super().__init__(reason)
        self.retryable = retryable


class ProcessingError(DocChatError):
    """Extraction or indexing failed because of the file's content."""

    kind = "processing_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(DocChatError):
    """An operation referenced an unknown task, job or document id."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class BackendUnavailableError(DocChatError):
    """The backend (or the model behind it) could not be reached."""

    kind = "backend_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NoRelevantContentError(DocChatError):
    """Retrieval found nothing in the document that relates to the question."""

    kind = "no_relevant_content"
    status_code = status.HTTP_404_NOT_FOUND


ERRORS_BY_KIND: dict[str, type[DocChatError]] = {
    cls.kind: cls
    for cls in (
        UnsupportedTypeError,
        TransferError,
        ProcessingError,
        NotFoundError,
        BackendUnavailableError,
        NoRelevantContentError,
    )
}


def error_from_kind(kind: str, reason: str) -> DocChatError:
    """Rebuild a domain error from its wire representation."""
    cls = ERRORS_BY_KIND.get(kind)
    if cls is None:
        error = DocChatError(reason)
        error.kind = kind
        return error
    return cls(reason)
