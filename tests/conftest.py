"""
tests/conftest.py

Builders for real PDF and DOCX payloads shared by the unit, API and
integration suites.  Files are generated in memory with PyMuPDF and
python-docx, so no fixtures live on disk.
"""
from __future__ import annotations

import io
import os
from collections.abc import Callable
from datetime import datetime, timezone

import fitz
import pytest
from docx import Document as DocxDocument

from docchat.models.schemas.document import Document, DocumentType


def build_pdf(pages: list[str], padding_bytes: int = 0) -> bytes:
    """A PDF with one text page per entry; *padding_bytes* of random data are embedded."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_textbox(fitz.Rect(72, 72, 540, 770), text, fontsize=11)
    if padding_bytes:
        doc.embfile_add("padding.bin", os.urandom(padding_bytes))
    data = doc.tobytes()
    doc.close()
    return data


def build_docx(pages: list[list[str]]) -> bytes:
    """A DOCX whose pages (lists of paragraphs) are separated by page breaks."""
    doc = DocxDocument()
    for index, paragraphs in enumerate(pages):
        if index:
            doc.add_page_break()
        for text in paragraphs:
            doc.add_paragraph(text)
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def build_document(
    document_id: str = "doc-1",
    name: str = "report.pdf",
    page_count: int | None = 3,
    uploaded_at: datetime | None = None,
) -> Document:
    return Document(
        id=document_id,
        name=name,
        type=DocumentType.pdf if name.endswith(".pdf") else DocumentType.docx,
        size=1024,
        uploaded_at=uploaded_at or datetime.now(timezone.utc),
        page_count=page_count,
    )


@pytest.fixture()
def make_pdf() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture()
def make_docx() -> Callable[..., bytes]:
    return build_docx


@pytest.fixture()
def make_document() -> Callable[..., Document]:
    return build_document
