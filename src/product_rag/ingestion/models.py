"""Ephemeral data models flowing through the ingestion stages."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ExtractionResult(BaseModel):
    """Plain text pulled out of a raw document.

    Attributes
    ----------
    text:
        Normalised UTF-8 text, never empty.
    content_type:
        The normalised content type the extractor dispatched on.
    page_count:
        Number of pages seen (paginated formats only, ``0`` otherwise).
    skipped_pages:
        Pages that raised during extraction and were skipped.
    """

    text: str
    content_type: str
    page_count: int = 0
    skipped_pages: int = 0


class Chunk(BaseModel):
    """Bounded slice of a document's text with positional metadata.

    ``start`` and ``end`` are offsets of the raw window in the source
    text; ``text`` is that window with surrounding whitespace trimmed.
    ``total_chunks`` stays ``None`` until the full set is known.
    """

    index: int
    text: str
    start: int
    end: int
    size: int
    document_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    total_chunks: int | None = None


class EmbeddedChunk(Chunk):
    """A chunk together with its embedding vector and token usage."""

    embedding: list[float]
    tokens: int = 0


class QueryEmbedding(BaseModel):
    """Vector for a single string plus the tokens it consumed."""

    embedding: list[float]
    tokens: int = 0
