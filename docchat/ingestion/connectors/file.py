import asyncio
import io

import fitz  # PyMuPDF
import structlog
from docx import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from docchat.errors import ProcessingError
from docchat.ingestion.connectors.base import BaseConnector, ConnectorResult
from docchat.models.schemas.document import DocumentType

logger = structlog.get_logger(__name__)


class FileConnector(BaseConnector):
    """Extracts page text from PDF and DOCX payloads."""

    async def extract(self, payload: bytes, document_type: DocumentType) -> ConnectorResult:
        """Extract page text from an uploaded file.

        Parsing is CPU-bound, so it runs in a worker thread.

        Raises:
            ProcessingError: If the file is corrupt, encrypted, or unreadable.
        """
        logger.info("file_connector_extracting", document_type=document_type.value, size=len(payload))

        if document_type is DocumentType.pdf:
            return await asyncio.to_thread(self._extract_pdf, payload)
        return await asyncio.to_thread(self._extract_docx, payload)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _extract_pdf(self, payload: bytes) -> ConnectorResult:
        """Extract text from a PDF using PyMuPDF, one string per page."""
        try:
            doc = fitz.open(stream=payload, filetype="pdf")
        except Exception as exc:  # noqa: BLE001
            raise ProcessingError(f"PDF is corrupt or unreadable: {exc}") from exc

        try:
            if doc.needs_pass:
                raise ProcessingError("PDF is password-protected.")
            if doc.page_count == 0:
                raise ProcessingError("PDF has no pages.")

            try:
                pages = [page.get_text() for page in doc]
            except Exception as exc:  # noqa: BLE001
                raise ProcessingError(f"PDF page content could not be decoded: {exc}") from exc

            metadata = {"pdf_metadata": doc.metadata or {}}
        finally:
            doc.close()

        logger.debug("pdf_extracted", pages=len(pages))
        return ConnectorResult(pages=pages, metadata=metadata)

    def _extract_docx(self, payload: bytes) -> ConnectorResult:
        """Extract text from a DOCX file using python-docx.

        Word does not store pages, so pages are split on explicit page
        breaks and on the rendered-page markers Word writes when saving.
        Table rows are kept in document order as "cell | cell" lines.
        """
        try:
            doc = DocxDocument(io.BytesIO(payload))
        except Exception as exc:  # noqa: BLE001
            raise ProcessingError(f"DOCX is corrupt or unreadable: {exc}") from exc

        pages: list[list[str]] = [[]]
        paragraph_count = 0

        for child in doc.element.body.iterchildren():
            if child.tag == qn("w:p"):
                if _starts_new_page(child) and pages[-1]:
                    pages.append([])
                text = Paragraph(child, doc).text
                if text.strip():
                    pages[-1].append(text)
                    paragraph_count += 1
            elif child.tag == qn("w:tbl"):
                for row in Table(child, doc).rows:
                    cells = [cell.text.strip() for cell in row.cells]
                    line = " | ".join(cell for cell in cells if cell)
                    if line:
                        pages[-1].append(line)

        metadata = {"paragraph_count": paragraph_count}

        logger.debug("docx_extracted", pages=len(pages), paragraphs=paragraph_count)
        return ConnectorResult(pages=["\n".join(lines) for lines in pages], metadata=metadata)


def _starts_new_page(paragraph) -> bool:
    """Whether a w:p element begins on a new page."""
    properties = paragraph.find(qn("w:pPr"))
    if properties is not None and properties.find(qn("w:pageBreakBefore")) is not None:
        return True
    for br in paragraph.iter(qn("w:br")):
        if br.get(qn("w:type")) == "page":
            return True
    return next(paragraph.iter(qn("w:lastRenderedPageBreak")), None) is not None
