"""
Text extraction boundary for uploaded statements.

Import code depends only on `TextExtractor.extract_text(bytes) -> str`; which strategy produces
the text (text layer, OCR, a remote service) is an implementation detail of the extractor
passed in. Construct one extractor and pass it to every import call.
"""

from __future__ import annotations

import io
import logging
from typing import Protocol

from src.subtracker.config import StatementConfig
from src.subtracker.exceptions import TextExtractionError


log = logging.getLogger(__name__)


class TextExtractor(Protocol):
    def extract_text(self, content: bytes) -> str: ...


class PlainTextExtractor:
    """For statements already delivered as text (e.g. OCR output saved to a file)."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def extract_text(self, content: bytes) -> str:
        return content.decode(self.encoding, errors="ignore")


class PdfTextExtractor:
    def __init__(
        self,
        *,
        min_text_chars: int = 100,
        min_page_chars: int = 20,
        ocr_enabled: bool = False,
    ) -> None:
        self.min_text_chars = min_text_chars
        self.min_page_chars = min_page_chars
        self.ocr_enabled = ocr_enabled

    @classmethod
    def from_config(cls, cfg: StatementConfig) -> "PdfTextExtractor":
        return cls(
            min_text_chars=cfg.min_text_chars,
            min_page_chars=cfg.min_page_chars,
            ocr_enabled=cfg.ocr_enabled,
        )

    def _read_pages(self, content: bytes) -> list[str]:
        try:
            import pdfplumber

            with pdfplumber.open(io.BytesIO(content)) as pdf:
                return [p.extract_text() or "" for p in pdf.pages]
        except Exception as e:
            log.debug("pdfplumber failed (%s: %s); trying pypdf", type(e).__name__, e)
        try:
            from pypdf import PdfReader

            reader = PdfReader(io.BytesIO(content))
            return [p.extract_text() or "" for p in reader.pages]
        except Exception as e:
            raise TextExtractionError(f"Failed to extract text from PDF: {e}") from e

    def _ocr_pages(self, content: bytes, pages: list[str]) -> list[str]:
        targets = [i for i, t in enumerate(pages) if len((t or "").strip()) < self.min_page_chars]
        if not targets:
            return pages
        try:
            import pytesseract
            from pdf2image import convert_from_bytes
        except ImportError as e:
            log.warning("OCR requested but not available: %s", e)
            return pages
        out = list(pages)
        for idx in targets:
            try:
                images = convert_from_bytes(content, first_page=idx + 1, last_page=idx + 1)
            except Exception as e:
                log.warning("OCR rasterization failed on page %d: %s", idx + 1, e)
                continue
            if images:
                text = pytesseract.image_to_string(images[0])
                if text:
                    out[idx] = text
        return out

    def extract_text(self, content: bytes) -> str:
        pages = self._read_pages(content)
        if self.ocr_enabled:
            pages = self._ocr_pages(content, pages)
        text = "\n".join(p for p in pages if p).strip()
        if len(text) < self.min_text_chars:
            raise TextExtractionError(
                "Unable to extract text from PDF. It appears to be scanned or image-based; "
                "enable OCR or upload a PDF with selectable text."
            )
        return text
