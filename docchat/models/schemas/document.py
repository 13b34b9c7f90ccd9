from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    """Accepted document classifications."""
    pdf = "pdf"
    docx = "docx"


class Document(BaseModel):
    """A successfully ingested document."""
    id: str
    name: str
    type: DocumentType
    size: int = Field(..., ge=0, description="Payload size in bytes")
    uploaded_at: datetime
    page_count: int | None = Field(default=None, ge=0, description="Number of pages, when known")
