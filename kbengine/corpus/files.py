# kbengine/corpus/files.py
"""
Text extraction for imported documents.

This module provides functions for:
- Mapping file names to format tags
- Extracting text from PDF, DOCX and plain-text byte buffers
"""

from __future__ import annotations

import io
import logging
import os

from kbengine.errors import ExtractionError

logger = logging.getLogger(__name__)

# Configuration constants
SUPPORTED_EXTENSIONS: set[str] = {"pdf", "docx", "txt", "md"}
DEFAULT_PDF_MAX_PAGES = 50
DEFAULT_ENCODING = "utf-8"


def ext_for(path: str) -> str:
    """Return the lowercased extension without the dot ('txt' when there is none)."""
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    return ext or "txt"


def extract_text(ext: str | None, data: bytes, pdf_max_pages: int = DEFAULT_PDF_MAX_PAGES) -> str:
    """
    Convert a raw byte buffer into text according to its format tag.

    Args:
        ext: Format tag ('pdf', 'docx'; anything else is decoded as text)
        data: Raw file contents
        pdf_max_pages: Upper bound on PDF pages read

    Returns:
        Extracted text (may be empty)

    Raises:
        ExtractionError: If the buffer cannot be decoded for the format
    """
    fmt = (ext or "txt").lower().lstrip(".")

    try:
        if fmt == "pdf":
            return _read_pdf_text(data, pdf_max_pages)
        if fmt == "docx":
            return _read_docx_text(data)
        return _read_text_bytes(data)
    except ExtractionError:
        raise
    except Exception as e:
        logger.error(f"Failed to extract {fmt} text: {e}")
        raise ExtractionError(f"{fmt} extraction failed: {e}", fmt=fmt) from e


def _read_pdf_text(data: bytes, max_pages: int) -> str:
    """Read text from the first ``max_pages`` pages of a PDF."""
    import pdfplumber

    pages = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page_num, page in enumerate(pdf.pages[:max_pages]):
            pages.append(page.extract_text() or "")
            logger.debug(f"Extracted text from PDF page {page_num + 1}")

    logger.info(f"Extracted {len(pages)} pages from PDF")
    return "\n".join(pages).strip()


def _read_docx_text(data: bytes) -> str:
    """Read paragraph text from a DOCX document."""
    import docx  # python-docx

    document = docx.Document(io.BytesIO(data))
    parts = [p.text for p in document.paragraphs if p.text]
    logger.info(f"Extracted {len(parts)} paragraphs from DOCX")
    return "\n".join(parts).strip()


def _read_text_bytes(data: bytes) -> str:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ExtractionError(f"expected bytes, got {type(data).__name__}", fmt="txt")
    content = bytes(data).decode(DEFAULT_ENCODING, errors="replace")
    logger.debug(f"Decoded text buffer ({len(content)} characters)")
    return content
