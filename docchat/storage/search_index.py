"""
docchat/storage/search_index.py

Keyword retrieval over document pages.

Each document gets its own DocumentIndex: the page texts are cut into
overlapping character chunks and scored with BM25 (rank_bm25).  An index
is built once, never mutated, and is replaced or dropped as a whole when
its document is stored or deleted.

BM25 idf turns negative for terms present in most chunks of a small
corpus, so a raw score says little about relevance.  A chunk counts as a
hit only if it shares at least one query term; BM25 then orders the hits.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from rank_bm25 import BM25Okapi

_TOKEN = re.compile(r"\w+", re.UNICODE)

_STOPWORDS: frozenset[str] = frozenset(
    """a an and are as at be but by can do does for from has have how i in is it
    its me my not of on or so that the their them there these this those to was
    we were what when where which who why will with you your""".split()
)


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens with stopwords and single characters removed."""
    return [
        token
        for token in _TOKEN.findall(text.lower())
        if len(token) > 1 and token not in _STOPWORDS
    ]


def chunk_page(text: str, size: int, overlap: int) -> list[str]:
    """Split one page into chunks of at most *size* characters.

    Chunks end on whitespace where possible and consecutive chunks share
    roughly *overlap* characters.
    """
    text = text.strip()
    if not text:
        return []
    if len(text) <= size:
        return [text]

    overlap = min(overlap, size // 2)
    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        if end < len(text):
            cut = text.rfind(" ", start + overlap + 1, end)
            if cut != -1:
                end = cut
        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= len(text):
            break
        next_start = max(end - overlap, start + 1)
        if text[next_start - 1] != " ":
            # Start the overlap at a word boundary.
            space = text.find(" ", next_start, end)
            if space != -1:
                next_start = space + 1
        start = next_start
    return chunks


@dataclass(frozen=True)
class SearchHit:
    """One retrieved chunk."""

    document_id: str
    page: int
    text: str
    score: float
    matched_terms: int = 1

    @property
    def rank_key(self) -> tuple[int, float, int]:
        """Sort key: more distinct query terms first, then BM25, then earlier pages."""
        return (-self.matched_terms, -self.score, self.page)


@dataclass(frozen=True)
class _Chunk:
    page: int
    text: str
    tokens: tuple[str, ...]

    @property
    def vocabulary(self) -> frozenset[str]:
        return frozenset(self.tokens)


class DocumentIndex:
    """Immutable BM25 index over the chunks of one document."""

    def __init__(self, document_id: str, chunks: list[_Chunk]) -> None:
        self.document_id = document_id
        self._chunks = chunks
        self._bm25 = BM25Okapi([list(c.tokens) for c in chunks]) if chunks else None

    @classmethod
    def build(
        cls,
        document_id: str,
        pages: list[str],
        *,
        chunk_size: int,
        chunk_overlap: int,
    ) -> DocumentIndex:
        """Index *pages* (page 1 first) for *document_id*."""
        chunks: list[_Chunk] = []
        for page_number, page_text in enumerate(pages, start=1):
            for piece in chunk_page(page_text, chunk_size, chunk_overlap):
                tokens = tuple(tokenize(piece))
                if tokens:
                    chunks.append(_Chunk(page=page_number, text=piece, tokens=tokens))
        return cls(document_id, chunks)

    def __len__(self) -> int:
        return len(self._chunks)

    def search(self, query: str, top_k: int) -> list[SearchHit]:
        """Return up to *top_k* chunks sharing a term with *query*, best first."""
        terms = tokenize(query)
        if not terms or self._bm25 is None:
            return []

        wanted = frozenset(terms)
        scores = self._bm25.get_scores(terms)

        hits: list[SearchHit] = []
        for chunk, score in zip(self._chunks, scores):
            matched = len(chunk.vocabulary & wanted)
            if not matched:
                continue
            hits.append(
                SearchHit(
                    document_id=self.document_id,
                    page=chunk.page,
                    text=chunk.text,
                    score=float(score),
                    matched_terms=matched,
                )
            )

        hits.sort(key=lambda h: h.rank_key)
        return hits[:top_k]
