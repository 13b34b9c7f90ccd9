from datetime import datetime, timezone
from enum import Enum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class Citation(BaseModel):
    """Where in a document an answer's supporting evidence was found."""
    page: int = Field(..., ge=1)
    excerpt: str


class ChatRequest(BaseModel):
    """Request body for asking a question."""
    question: str = Field(..., min_length=1, description="Question about the document")
    document_id: str | None = Field(default=None, description="Restrict retrieval to one document")


class ChatAnswer(BaseModel):
    """Answer returned by the chat endpoint."""
    answer: str
    citations: list[Citation] = Field(default_factory=list)


class MessageStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class ChatMessage(BaseModel):
    """One turn of a conversation bound to a document."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sources: list[Citation] = Field(default_factory=list)
    status: MessageStatus = MessageStatus.confirmed
