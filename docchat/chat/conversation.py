"""
docchat/chat/conversation.py

The conversation bound to the selected document.

Messages are appended in two phases: the user's message goes in at once as
``pending`` and is confirmed (or marked ``failed``) when the answer
arrives.  Every bind() clears the thread and advances a generation
counter; an answer that comes back for an older generation is dropped, so
a reply about the previous document never lands in the new thread.
"""
from __future__ import annotations

import structlog

from docchat.chat.client import ChatClient
from docchat.errors import DocChatError, NoRelevantContentError
from docchat.models.schemas.chat import ChatMessage, MessageStatus
from docchat.models.schemas.document import Document
from docchat.notifications import LogNotificationSink, NotificationSink

logger = structlog.get_logger(__name__)


class ConversationBinding:
    def __init__(self, client: ChatClient, notifications: NotificationSink | None = None) -> None:
        self._client = client
        self._notifications = notifications or LogNotificationSink()
        self._document: Document | None = None
        self._messages: list[ChatMessage] = []
        self._generation = 0
        self._in_flight = 0

    @property
    def document(self) -> Document | None:
        return self._document

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    def bind(self, document: Document | None) -> None:
        """Switch to *document* (or to no document) and start an empty thread."""
        self._generation += 1
        self._document = document
        self._messages = []
        self._in_flight = 0
        logger.debug(
            "conversation_bound",
            document_id=document.id if document else None,
            generation=self._generation,
        )

    async def send(self, question: str) -> ChatMessage | None:
        """Ask *question* about the bound document.

        Returns the assistant message, or None when the request failed or
        the binding changed while it was in flight.

        Raises:
            ValueError: *question* is blank.
        """
        question = question.strip()
        if not question:
            raise ValueError("Question must not be empty.")

        generation = self._generation
        document = self._document
        user_message = ChatMessage(role="user", content=question, status=MessageStatus.pending)
        self._messages.append(user_message)
        self._in_flight += 1

        try:
            answer = await self._client.ask(question, document.id if document else None)
        except NoRelevantContentError as exc:
            if self._is_stale(generation):
                return None
            user_message.status = MessageStatus.confirmed
            return self._append_assistant(exc.reason)
        except DocChatError as exc:
            if self._is_stale(generation):
                return None
            user_message.status = MessageStatus.failed
            logger.warning("chat_failed", kind=exc.kind, reason=exc.reason)
            self._notifications.error("Chat failed", exc.reason, exc.kind)
            return None
        finally:
            if generation == self._generation:
                self._in_flight -= 1

        if self._is_stale(generation):
            return None

        user_message.status = MessageStatus.confirmed
        page_count = document.page_count if document else None
        sources = [
            citation for citation in answer.citations
            if page_count is None or citation.page <= page_count
        ]
        if len(sources) < len(answer.citations):
            logger.info("chat_citations_dropped", dropped=len(answer.citations) - len(sources))
        return self._append_assistant(answer.answer, sources)

    def _is_stale(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        logger.info("chat_response_discarded", sent_generation=generation, current=self._generation)
        return True

    def _append_assistant(self, content: str, sources: list | None = None) -> ChatMessage:
        message = ChatMessage(role="assistant", content=content, sources=sources or [])
        self._messages.append(message)
        return message
