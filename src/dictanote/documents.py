"""PDF text extraction."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from .errors import DocumentError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedDocument:
    text: str
    page_count: int


class PdfExtractor:
    def extract(self, data: bytes) -> ExtractedDocument:
        try:
            from pypdf import PdfReader
        except Exception as exc:  # pragma: no cover - optional dependency
            raise DocumentError("pypdf is required for PDF extraction.") from exc

        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except Exception as exc:
            raise DocumentError(f"Could not read PDF: {exc}") from exc

        text = "\n\n".join(page for page in pages if page)
        logger.info("Extracted %s chars from %s pages", len(text), len(pages))
        return ExtractedDocument(text=text, page_count=len(pages))
