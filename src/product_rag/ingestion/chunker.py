"""Text chunking — boundary-aware sliding window with overlap."""

from __future__ import annotations

import logging
from typing import Any

from product_rag.ingestion.models import Chunk

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = (".", "?", "!")


class TextChunker:
    """Split normalised text into overlapping, boundary-aware chunks.

    Parameters
    ----------
    chunk_size:
        Target window length in characters.
    chunk_overlap:
        Number of characters a window re-reads from the previous one.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @property
    def step(self) -> int:
        """Minimum advance between window starts, unless the cut lands sooner."""
        return self.chunk_size - self.chunk_overlap

    def split(
        self,
        text: str,
        *,
        document_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[Chunk]:
        """Split *text* into ordered chunks.

        Whitespace-only windows are dropped without consuming an index, so
        indices are always contiguous ``0..N-1``. Empty input yields ``[]``.

        The next window starts ``chunk_overlap`` characters before the cut,
        but never less than :attr:`step` characters after the current start
        and never past the cut, so windows cover the text without gaps.
        """
        parent = dict(metadata or {})
        length = len(text)
        chunks: list[Chunk] = []
        start = 0

        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._find_cut(text, start, end)

            piece = text[start:end].strip()
            if piece:
                chunks.append(
                    Chunk(
                        index=len(chunks),
                        text=piece,
                        start=start,
                        end=end,
                        size=len(piece),
                        document_id=document_id,
                        metadata={**parent, "chunk_size": len(piece)},
                    )
                )

            if end >= length:
                break
            start = max(end - self.chunk_overlap, min(start + self.step, end))

        for chunk in chunks:
            chunk.total_chunks = len(chunks)
            chunk.metadata["total_chunks"] = len(chunks)

        logger.debug("Split %d characters into %d chunks", length, len(chunks))
        return chunks

    # -- internals ------------------------------------------------------------

    def _find_cut(self, text: str, start: int, edge: int) -> int:
        """Pick the cut position for the window ``[start, edge)``.

        Only positions strictly inside the trailing half of the window are
        considered: nearest sentence terminator (cut just after it), else
        nearest whitespace (cut on it), else the raw edge.
        """
        floor = start + self.chunk_size // 2

        terminator = max(text.rfind(mark, floor + 1, edge) for mark in SENTENCE_TERMINATORS)
        if terminator != -1:
            return terminator + 1

        for pos in range(edge - 1, floor, -1):
            if text[pos].isspace():
                return pos

        return edge


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    *,
    document_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> list[Chunk]:
    """Split *text* with a throwaway :class:`TextChunker`.

    Parameters
    ----------
    text:
        Normalised document text.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.

    Returns
    -------
    list[Chunk]
        Chunks ready for embedding.
    """
    chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return chunker.split(text, document_id=document_id, metadata=metadata)
