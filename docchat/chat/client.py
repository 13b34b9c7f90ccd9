"""
docchat/chat/client.py

Chat contract used by the conversation binding.

ask() either returns an answer with citations or fails in one of two
distinct ways: BackendUnavailableError (the server or its model could not
be reached) or NoRelevantContentError (the question was understood but
nothing in the document relates to it).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from docchat.chat.service import ChatService
from docchat.config import settings
from docchat.errors import ERRORS_BY_KIND, BackendUnavailableError, error_from_kind
from docchat.models.schemas.chat import ChatAnswer

logger = structlog.get_logger(__name__)


class ChatClient(ABC):
    @abstractmethod
    async def ask(self, question: str, document_id: str | None) -> ChatAnswer:
        ...


class HttpChatClient(ChatClient):
    """POST /api/chat against the DocChat server."""

    def __init__(
        self,
        base_url: str = settings.api_base_url,
        api_key: str = settings.api_key,
        *,
        timeout: float = settings.request_timeout,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-API-Key": api_key}
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def ask(self, question: str, document_id: str | None) -> ChatAnswer:
        payload: dict[str, Any] = {"question": question, "document_id": document_id}
        try:
            async with self._client() as client:
                response = await client.post("/api/chat", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("chat_request_failed", error=str(exc))
            raise BackendUnavailableError(f"Could not reach the chat service: {exc}") from exc

        if response.status_code >= 400:
            raise self._error_for(response)
        try:
            return ChatAnswer.model_validate(response.json())
        except ValueError as exc:
            logger.warning("chat_response_malformed", status_code=response.status_code, error=str(exc))
            raise BackendUnavailableError(
                f"Chat service sent an unreadable answer (status {response.status_code}).",
            ) from exc

    @staticmethod
    def _error_for(response: httpx.Response) -> Exception:
        try:
            body: Any = response.json()
        except ValueError:
            body = {}
        code = body.get("code") if isinstance(body, dict) else None
        detail = body.get("detail") if isinstance(body, dict) else None
        if code in ERRORS_BY_KIND and isinstance(detail, str):
            return error_from_kind(code, detail)
        return BackendUnavailableError(
            f"Chat service answered with status {response.status_code}."
        )


class LocalChatClient(ChatClient):
    """Calls a ChatService in the same process."""

    def __init__(self, service: ChatService) -> None:
        self._service = service

    async def ask(self, question: str, document_id: str | None) -> ChatAnswer:
        return await self._service.answer(question, document_id)
