"""
docchat/api/routes/chat.py

POST /chat
    Answer a question about one document (or all documents when
    ``document_id`` is omitted) with page citations.  404 with code
    ``no_relevant_content`` when retrieval finds nothing; 503 when the
    language model is unavailable and the extractive fallback is off.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from docchat.api.routes import get_chat_service, require_api_key
from docchat.chat.service import ChatService
from docchat.models.schemas.chat import ChatAnswer, ChatRequest

router = APIRouter()


@router.post(
    "",
    response_model=ChatAnswer,
    summary="Ask a question about a document",
)
async def chat(
    body: ChatRequest,
    service: ChatService = Depends(get_chat_service),
    _key: str = Depends(require_api_key),
) -> ChatAnswer:
    return await service.answer(body.question, body.document_id)
