"""
docchat/ingestion/filetypes.py

Accepted input types.

Exactly two kinds of file are accepted: PDF and DOCX.  The client checks
the *declared* type (MIME type, falling back to the file extension when the
browser sends nothing useful) before any network call.  The server also
checks the *content* signature, since a declared type can lie.
"""
from __future__ import annotations

from pathlib import PurePath

from docchat.errors import ProcessingError, UnsupportedTypeError
from docchat.models.schemas.document import DocumentType

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

MIME_TYPES: dict[str, DocumentType] = {
    PDF_MIME: DocumentType.pdf,
    DOCX_MIME: DocumentType.docx,
}

EXTENSIONS: dict[str, DocumentType] = {
    ".pdf": DocumentType.pdf,
    ".docx": DocumentType.docx,
}

# MIME types that carry no information about the content.
_GENERIC_MIME_TYPES: frozenset[str] = frozenset(
    {"", "application/octet-stream", "binary/octet-stream"}
)

_PDF_SIGNATURE = b"%PDF-"
_ZIP_SIGNATURE = b"PK\x03\x04"


def mime_type_for(document_type: DocumentType) -> str:
    return PDF_MIME if document_type is DocumentType.pdf else DOCX_MIME


def classify(filename: str, mime_type: str | None) -> DocumentType:
    """Return the declared document type of an upload.

    Args:
        filename:  Original filename, used when the MIME type is generic.
        mime_type: Declared MIME type (may carry parameters or be empty).

    Raises:
        UnsupportedTypeError: The file is neither PDF nor DOCX.
    """
    declared = (mime_type or "").split(";", 1)[0].strip().lower()

    if declared in MIME_TYPES:
        return MIME_TYPES[declared]

    if declared in _GENERIC_MIME_TYPES:
        suffix = PurePath(filename).suffix.lower()
        if suffix in EXTENSIONS:
            return EXTENSIONS[suffix]

    shown = declared or PurePath(filename).suffix.lower() or "unknown"
    raise UnsupportedTypeError(
        f"'{filename}' has unsupported type '{shown}'. Only PDF and DOCX files are accepted."
    )


def verify_signature(payload: bytes, declared: DocumentType) -> None:
    """Check that *payload* starts with the signature of *declared*.

    Raises:
        ProcessingError: The content does not match the declared type.
    """
    if declared is DocumentType.pdf:
        # Some producers emit a few junk bytes before the header.
        if _PDF_SIGNATURE not in payload[:1024]:
            raise ProcessingError("File is not a valid PDF (missing %PDF header).")
    elif not payload.startswith(_ZIP_SIGNATURE):
        raise ProcessingError("File is not a valid DOCX package (not a ZIP archive).")
