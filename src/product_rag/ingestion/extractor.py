"""Text extraction — raw bytes + declared content type -> plain text.

Supported formats
-----------------
* ``text/plain`` — decoded as UTF-8 (undecodable bytes are replaced).
* Word documents — paragraphs and tables in reading order via ``python-docx``.
* ``application/pdf`` — pages in order via ``pypdf``; a page that fails
  to parse is skipped and counted, only a document where *no* page could
  be read is a failure.

Whatever the format, the result is normalised the same way and an
empty result raises :class:`~product_rag.exceptions.EmptyContentError`.
"""

from __future__ import annotations

import io
import logging
import re
import unicodedata

from product_rag.exceptions import (
    EmptyContentError,
    ExtractionFailedError,
    UnsupportedFormatError,
)
from product_rag.ingestion.models import ExtractionResult

logger = logging.getLogger(__name__)

PDF = "application/pdf"
MSWORD = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PLAIN_TEXT = "text/plain"

SUPPORTED_CONTENT_TYPES = frozenset({PDF, MSWORD, DOCX, PLAIN_TEXT})


def normalise_content_type(content_type: str) -> str:
    """Lower-case and drop parameters: ``"Text/Plain; charset=utf-8"`` -> ``"text/plain"``."""
    return content_type.split(";", 1)[0].strip().lower()


def normalise_text(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)  # ctrl chars
    text = re.sub(r"[^\S\n]+", " ", text)  # collapse spaces (keep \n)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)  # max two consecutive newlines
    return text.strip()


class TextExtractor:
    """Dispatch on content type and return normalised plain text."""

    def extract(self, data: bytes, content_type: str, filename: str = "") -> ExtractionResult:
        """Extract text from *data*.

        Parameters
        ----------
        data:
            Raw document bytes.
        content_type:
            Declared MIME type of *data*.
        filename:
            Only used in log lines and error details.

        Raises
        ------
        UnsupportedFormatError
            The content type is not one of :data:`SUPPORTED_CONTENT_TYPES`.
        ExtractionFailedError
            The document could not be opened or no page could be read.
        EmptyContentError
            The extracted text is empty or whitespace-only.
        """
        kind = normalise_content_type(content_type)
        if kind not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedFormatError(content_type, filename)

        logger.info("Extracting text from %s (%s, %d bytes)", filename or "<unnamed>", kind, len(data))

        page_count = 0
        skipped = 0
        if kind == PLAIN_TEXT:
            raw = self._extract_plain(data)
        elif kind == PDF:
            raw, page_count, skipped = self._extract_pdf(data, filename)
        else:
            raw = self._extract_word(data, filename)

        text = normalise_text(raw)
        if not text:
            raise EmptyContentError(
                "No text content extracted from document",
                {"filename": filename, "content_type": kind},
            )

        logger.info("Extracted %d characters from %s", len(text), filename or "<unnamed>")
        return ExtractionResult(
            text=text,
            content_type=kind,
            page_count=page_count,
            skipped_pages=skipped,
        )

    def extract_text(self, data: bytes, content_type: str, filename: str = "") -> str:
        """Shortcut for callers that only need the text."""
        return self.extract(data, content_type, filename).text

    # -- per-format readers ---------------------------------------------------

    @staticmethod
    def _extract_plain(data: bytes) -> str:
        return data.decode("utf-8-sig", errors="replace")

    @staticmethod
    def _extract_word(data: bytes, filename: str) -> str:
        from docx import Document as WordDocument
        from docx.table import Table

        try:
            document = WordDocument(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionFailedError(
                f"Failed to read Word document: {exc}",
                {"filename": filename},
            ) from exc

        blocks: list[str] = []
        for block in document.iter_inner_content():
            if isinstance(block, Table):
                for row in block.rows:
                    cells = [cell.text.strip() for cell in row.cells]
                    line = " | ".join(c for c in cells if c)
                    if line:
                        blocks.append(line)
            elif block.text.strip():
                blocks.append(block.text)
        return "\n".join(blocks)

    @staticmethod
    def _extract_pdf(data: bytes, filename: str) -> tuple[str, int, int]:
        from pypdf import PdfReader

        try:
            reader = PdfReader(io.BytesIO(data))
            page_count = len(reader.pages)
        except Exception as exc:
            raise ExtractionFailedError(
                f"Failed to extract text from PDF: {exc}",
                {"filename": filename},
            ) from exc

        if page_count == 0:
            raise ExtractionFailedError("PDF has no pages", {"filename": filename})

        texts: list[str] = []
        skipped = 0
        for number in range(page_count):
            try:
                page = reader.pages[number]
                page_text = page.extract_text() or ""
            except Exception as exc:
                skipped += 1
                logger.warning(
                    "Skipping page %d/%d of %s: %s", number + 1, page_count, filename or "<unnamed>", exc
                )
                continue
            runs = " ".join(page_text.split())
            if runs:
                texts.append(runs)

        if skipped == page_count:
            raise ExtractionFailedError(
                f"No readable pages in PDF ({page_count} pages failed)",
                {"filename": filename, "skipped_pages": skipped},
            )
        if skipped:
            logger.warning("Skipped %d of %d pages in %s", skipped, page_count, filename or "<unnamed>")
        return "\n\n".join(texts), page_count, skipped
