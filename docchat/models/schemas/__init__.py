from docchat.models.schemas.document import Document, DocumentType
from docchat.models.schemas.ingest import ErrorInfo, IngestAccepted, IngestJob, JobStatus
from docchat.models.schemas.chat import (
    ChatAnswer,
    ChatMessage,
    ChatRequest,
    Citation,
    MessageStatus,
)

__all__ = [
    "Document",
    "DocumentType",
    "ErrorInfo",
    "IngestAccepted",
    "IngestJob",
    "JobStatus",
    "ChatAnswer",
    "ChatMessage",
    "ChatRequest",
    "Citation",
    "MessageStatus",
]
