from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from docchat.models.schemas.document import Document, DocumentType


class JobStatus(str, Enum):
    processing = "processing"
    indexed = "indexed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.processing


class ErrorInfo(BaseModel):
    """Structured error attached to a failed job."""
    kind: str
    reason: str


class IngestJob(BaseModel):
    """Server-side status of one uploaded file's ingestion."""
    id: str
    filename: str
    document_type: DocumentType
    size: int = Field(..., ge=0)
    status: JobStatus = JobStatus.processing
    stage: str = Field(default="queued", description="Last pipeline stage reached")
    document: Document | None = None
    error: ErrorInfo | None = None
    created_at: datetime
    completed_at: datetime | None = None


class IngestAccepted(BaseModel):
    """Response after the full payload of a transfer was received."""
    handle: str
    filename: str
    received_bytes: int
    status: JobStatus = JobStatus.processing
