"""
Legal Document Text Extractor - Converts uploaded files to plain text

Uses PyMuPDF for PDF extraction and python-docx for Word documents.
Plain-text uploads are decoded as UTF-8. The file kind is resolved once from
the filename extension and carried through the pipeline.
"""

import io
import logging
import unicodedata
from enum import Enum
from typing import Union

from .errors import ParseFailureError, UnsupportedFormatError

logger = logging.getLogger(__name__)


class FileKind(str, Enum):
    """Supported upload formats."""
    PDF = "pdf"
    DOCX = "docx"
    TEXT = "txt"


# Closed set of accepted extensions
EXTENSION_KINDS = {
    "pdf": FileKind.PDF,
    "docx": FileKind.DOCX,
    "doc": FileKind.DOCX,
    "txt": FileKind.TEXT,
}

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "doc": "application/msword",
    "txt": "text/plain; charset=utf-8",
}


def get_file_extension(filename: str) -> str:
    """Lower-cased extension without the dot ("" when there is none)."""
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].strip().lower()


def is_valid_file_type(filename: str) -> bool:
    """Cheap pre-check so callers can reject a file before any I/O."""
    return get_file_extension(filename) in EXTENSION_KINDS


def resolve_file_kind(filename: str) -> FileKind:
    """Map a filename to its FileKind or raise UnsupportedFormatError."""
    ext = get_file_extension(filename)
    kind = EXTENSION_KINDS.get(ext)
    if kind is None:
        raise UnsupportedFormatError(
            "Unsupported file format. Use PDF, DOCX or TXT.",
            details=f"extension={ext or '(none)'}",
        )
    return kind


def content_type_for(filename: str) -> str:
    """Default MIME type for a supported filename."""
    return CONTENT_TYPES.get(get_file_extension(filename), "application/octet-stream")


def normalize_text(text: str) -> str:
    """NFC-normalize, unify line endings and drop NUL characters."""
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.replace("\x00", "")


class DocumentTextExtractor:
    """
    Extracts plain text from uploaded legal documents.

    Stateless: one instance can serve every request. Parser failures are
    reported as ParseFailureError with a readable reason; the underlying
    library error is logged and kept only as a short details string.
    """

    def extract(self, data: bytes, file: Union[str, FileKind]) -> str:
        """
        Extract normalized text from a raw byte buffer.

        Args:
            data: File contents
            file: Declared filename, or an already-resolved FileKind

        Returns:
            Normalized UTF-8 text (possibly empty)
        """
        kind = file if isinstance(file, FileKind) else resolve_file_kind(file)

        if kind is FileKind.PDF:
            text = self._extract_pdf(data)
        elif kind is FileKind.DOCX:
            text = self._extract_docx(data)
        else:
            text = self._extract_text(data)

        text = normalize_text(text)
        logger.debug(f"Extracted {len(text)} chars from {kind.value} upload")
        return text

    def _extract_pdf(self, data: bytes) -> str:
        """Extract text page by page with PyMuPDF."""
        import fitz  # PyMuPDF

        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                return "\n".join(page.get_text() for page in doc)
        except Exception as e:
            logger.error(f"PDF parse failed: {type(e).__name__}: {e}")
            raise ParseFailureError("The PDF file could not be read.", details=str(e)) from e

    def _extract_docx(self, data: bytes) -> str:
        """Extract paragraph text from a Word document."""
        import docx

        try:
            document = docx.Document(io.BytesIO(data))
            return "\n".join(p.text for p in document.paragraphs)
        except Exception as e:
            logger.error(f"DOCX parse failed: {type(e).__name__}: {e}")
            raise ParseFailureError("The Word document could not be read.", details=str(e)) from e

    def _extract_text(self, data: bytes) -> str:
        # Malformed sequences are replaced, not rejected
        return data.decode("utf-8", errors="replace")


def extract_text(data: bytes, filename: str) -> str:
    """Module-level shortcut for ``DocumentTextExtractor().extract``."""
    return DocumentTextExtractor().extract(data, filename)
