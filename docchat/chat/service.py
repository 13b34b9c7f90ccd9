"""
docchat/chat/service.py

Server-side question answering over stored documents.

  1. Resolve the document (NotFoundError for unknown ids).
  2. Retrieve the top-k page chunks sharing terms with the question; with
     no hit the answer is NoRelevantContentError, never an empty reply.
  3. Format the excerpts into a grounded prompt and ask Ollama.
  4. When Ollama cannot be reached, either answer extractively from the
     retrieved excerpts (``chat_llm_fallback``) or raise
     BackendUnavailableError.

Citations are built from the retrieval hits, one per page, so they always
point at pages that exist in the document.
"""
from __future__ import annotations

import httpx
import structlog

from docchat.config import settings
from docchat.errors import BackendUnavailableError, NoRelevantContentError
from docchat.llm.client import OllamaClient
from docchat.llm.prompts import DOCUMENT_QA_SYSTEM, DOCUMENT_QA_USER, EXCERPT_LINE
from docchat.models.schemas.chat import ChatAnswer, Citation
from docchat.storage.document_store import DocumentStore
from docchat.storage.search_index import SearchHit

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def trim_excerpt(text: str, limit: int) -> str:
    """Shorten *text* to at most *limit* characters, cutting at a word boundary."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0] if " " in text[:limit] else text[:limit]
    return cut.rstrip(".,;:") + "..."


def build_citations(hits: list[SearchHit], excerpt_chars: int) -> list[Citation]:
    """One citation per (document, page), in ranking order."""
    seen: set[tuple[str, int]] = set()
    citations: list[Citation] = []
    for hit in hits:
        key = (hit.document_id, hit.page)
        if key in seen:
            continue
        seen.add(key)
        citations.append(Citation(page=hit.page, excerpt=trim_excerpt(hit.text, excerpt_chars)))
    return citations


def format_context(hits: list[SearchHit], names: dict[str, str]) -> str:
    return "\n\n".join(
        EXCERPT_LINE.format(document=names.get(hit.document_id, hit.document_id), page=hit.page, text=hit.text)
        for hit in hits
    )


def fallback_answer(hits: list[SearchHit], excerpt_chars: int) -> str:
    """Extractive answer used when the language model is unavailable."""
    lines = ["The language model is unavailable right now. The most relevant passages are:"]
    for citation in build_citations(hits, excerpt_chars):
        lines.append(f"- (p. {citation.page}) {citation.excerpt}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ChatService:
    def __init__(
        self,
        store: DocumentStore,
        llm: OllamaClient,
        *,
        top_k: int = settings.chat_top_k,
        excerpt_chars: int = settings.chat_excerpt_chars,
        llm_fallback: bool = settings.chat_llm_fallback,
    ) -> None:
        self._store = store
        self._llm = llm
        self._top_k = top_k
        self._excerpt_chars = excerpt_chars
        self._llm_fallback = llm_fallback

    async def answer(self, question: str, document_id: str | None = None) -> ChatAnswer:
        """Answer *question* from one document, or from every document when *document_id* is None.

        Raises:
            NotFoundError:           *document_id* is unknown.
            NoRelevantContentError:  Nothing in scope relates to the question.
            BackendUnavailableError: The LLM failed and the fallback is disabled.
        """
        if document_id is not None:
            await self._store.get(document_id)

        hits = self._store.search(question, document_id=document_id, top_k=self._top_k)
        if not hits:
            logger.info("chat_no_relevant_content", document_id=document_id)
            raise NoRelevantContentError(
                "I couldn't find any relevant information in this document to answer your question."
            )

        names = {}
        for hit in hits:
            if hit.document_id not in names:
                names[hit.document_id] = (await self._store.get(hit.document_id)).name

        messages = [
            {"role": "system", "content": DOCUMENT_QA_SYSTEM},
            {"role": "user", "content": DOCUMENT_QA_USER.format(
                context=format_context(hits, names),
                question=question,
            )},
        ]

        try:
            answer = (await self._llm.chat(messages)).strip()
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.warning("chat_llm_failed", document_id=document_id, error=str(exc))
            if not self._llm_fallback:
                raise BackendUnavailableError(
                    "The language model is unavailable. Please try again later."
                ) from exc
            answer = fallback_answer(hits, self._excerpt_chars)

        logger.info("chat_answered", document_id=document_id, hits=len(hits))
        return ChatAnswer(answer=answer, citations=build_citations(hits, self._excerpt_chars))
