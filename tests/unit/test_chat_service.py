"""
tests/unit/test_chat_service.py

Unit tests for docchat.chat.service.

The Ollama client is mocked (AsyncMock with patch-free injection); the
document store is real and filled through DocumentIndex.build.

Coverage
--------
  - trim_excerpt / build_citations / fallback_answer helpers
  - answer(): LLM reply returned with one citation per page
  - answer(): prompt carries the excerpts and the question
  - answer(): unknown document → NotFoundError
  - answer(): no matching chunk → NoRelevantContentError (LLM not called)
  - answer(): LLM down → extractive fallback, or BackendUnavailableError
    when the fallback is disabled
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from docchat.chat.service import ChatService, build_citations, fallback_answer, trim_excerpt
from docchat.errors import BackendUnavailableError, NoRelevantContentError, NotFoundError
from docchat.llm.client import OllamaClient
from docchat.storage.document_store import DocumentStore
from docchat.storage.search_index import DocumentIndex, SearchHit


def _hit(page: int, text: str = "Revenue grew strongly.", document_id: str = "d1") -> SearchHit:
    return SearchHit(document_id=document_id, page=page, text=text, score=1.0)


async def _store_with_report(make_document) -> DocumentStore:
    store = DocumentStore()
    pages = [
        "Revenue grew twelve percent in the third quarter.",
        "Headcount stayed flat across all regions.",
        "Revenue guidance for next year was raised.",
    ]
    index = DocumentIndex.build("d1", pages, chunk_size=500, chunk_overlap=50)
    await store.add(make_document("d1", "report.pdf", page_count=3), index, b"report")
    return store


class TestHelpers:
    def test_trim_excerpt_short_text_unchanged(self) -> None:
        assert trim_excerpt("short   text", 50) == "short text"

    def test_trim_excerpt_cuts_on_word(self) -> None:
        assert trim_excerpt("alpha beta gamma delta", 12) == "alpha beta..."

    def test_citations_one_per_page(self) -> None:
        citations = build_citations([_hit(2), _hit(2, "other chunk"), _hit(1)], 100)
        assert [c.page for c in citations] == [2, 1]

    def test_fallback_lists_passages(self) -> None:
        text = fallback_answer([_hit(3, "Costs fell.")], 100)
        assert "unavailable" in text
        assert "(p. 3) Costs fell." in text


class TestAnswer:
    @pytest.mark.asyncio
    async def test_llm_answer_with_citations(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        llm.chat.return_value = "  Revenue grew 12% (p. 1).  "
        service = ChatService(await _store_with_report(make_document), llm, top_k=5, excerpt_chars=200)

        answer = await service.answer("How did revenue change?", "d1")

        assert answer.answer == "Revenue grew 12% (p. 1)."
        assert sorted(c.page for c in answer.citations) == [1, 3]

        messages = llm.chat.await_args.args[0]
        assert messages[0]["role"] == "system"
        assert "How did revenue change?" in messages[1]["content"]
        assert "[report.pdf p. 1]" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_unknown_document_raises(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        service = ChatService(await _store_with_report(make_document), llm)
        with pytest.raises(NotFoundError):
            await service.answer("revenue?", "missing")
        llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_relevant_content(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        service = ChatService(await _store_with_report(make_document), llm)
        with pytest.raises(NoRelevantContentError):
            await service.answer("penguin migration routes", "d1")
        llm.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_down_uses_fallback(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        llm.chat.side_effect = httpx.ConnectError("connection refused")
        service = ChatService(await _store_with_report(make_document), llm, llm_fallback=True)

        answer = await service.answer("headcount", "d1")

        assert "unavailable" in answer.answer
        assert [c.page for c in answer.citations] == [2]

    @pytest.mark.asyncio
    async def test_llm_down_without_fallback_raises(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        llm.chat.side_effect = httpx.ConnectError("connection refused")
        service = ChatService(await _store_with_report(make_document), llm, llm_fallback=False)

        with pytest.raises(BackendUnavailableError):
            await service.answer("headcount", "d1")

    @pytest.mark.asyncio
    async def test_question_across_all_documents(self, make_document) -> None:
        llm = AsyncMock(spec=OllamaClient)
        llm.chat.return_value = "Flat."
        service = ChatService(await _store_with_report(make_document), llm)

        answer = await service.answer("headcount regions")

        assert answer.citations[0].page == 2
