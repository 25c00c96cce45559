"""Plain-text extraction for uploaded source PDFs."""
from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Iterable

from pypdf import PdfReader
from pypdf.errors import PdfReadError


class ExtractionError(RuntimeError):
    """Raised when a PDF cannot be parsed."""


@dataclass
class ExtractedText:
    text: str
    page_count: int


def extract_text(blob: bytes) -> ExtractedText:
    if not blob:
        raise ExtractionError("Document payload is empty.")
    try:
        reader = PdfReader(BytesIO(blob))
        pages: Iterable[str] = (page.extract_text() or "" for page in reader.pages)
        text = "\n".join(pages)
        page_count = len(reader.pages)
    except (PdfReadError, ValueError, KeyError) as exc:
        raise ExtractionError(f"Could not read PDF: {exc}") from exc
    if not text.strip():
        raise ExtractionError("Could not extract text from the document.")
    return ExtractedText(text=text.strip(), page_count=page_count)


def excerpt(text: str, limit: int = 1500) -> str:
    if not text or len(text) <= limit:
        return text or ""
    return text[:limit].rsplit(" ", 1)[0] + " ..."
