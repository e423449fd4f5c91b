"""Abstract base class for vector-store backends.

Adding a new backend (Qdrant, pgvector …) only requires subclassing
:class:`VectorStoreBase` and implementing the abstract coroutines. The
orchestrator and retriever are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from product_rag.ingestion.models import EmbeddedChunk
from product_rag.retrieval.models import SearchFilter, SearchHit


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    One instance owns one logical collection with a fixed dimensionality
    and cosine similarity.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    dimension:
        Length every stored and queried vector must have.
    """

    def __init__(self, collection_name: str, dimension: int) -> None:
        self.collection_name = collection_name
        self.dimension = dimension

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def initialize(self) -> None:
        """Create the collection and its payload indexes; safe to call repeatedly."""
        ...

    @abstractmethod
    async def upsert(
        self,
        document_id: str,
        agent_id: str | None,
        chunks: Sequence[EmbeddedChunk],
    ) -> int:
        """Persist one record per chunk and return how many were written.

        Each record gets a fresh store-generated id and the payload
        ``{document_id, agent_id, chunk_index, text, metadata}``.
        """
        ...

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> None:
        """Remove every record of *document_id*; a no-op for unknown ids."""
        ...

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        *,
        limit: int = 5,
        filters: SearchFilter | None = None,
    ) -> list[SearchHit]:
        """Return up to *limit* records, most similar first.

        Parameters
        ----------
        query_vector:
            Dense vector for the query.
        limit:
            Maximum number of hits.
        filters:
            Optional agent / document restriction, ANDed server-side.
        """
        ...

    @abstractmethod
    async def count_by_document(self, document_id: str) -> int:
        """Number of records stored for *document_id*."""
        ...

    @abstractmethod
    async def collection_info(self) -> dict[str, Any]:
        """Diagnostic description of the collection."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Return ``{"status": "healthy" | "unhealthy", ...}``; never raises."""
        ...
