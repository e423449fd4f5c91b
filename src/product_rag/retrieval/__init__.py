"""
Retrieval — vector storage and filtered similarity search.

This package wraps the vector store behind a clean interface so that
the orchestrator never needs to know which DB is backing retrieval.

Public surface
--------------
- :class:`DocumentRetriever` — main entry point for best-effort queries.
- :class:`VectorStoreBase` — abstract backend (subclass for Qdrant, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`SearchFilter`, :class:`SearchHit`, :class:`QueryResponse` — data models.
"""

from product_rag.retrieval.base import VectorStoreBase
from product_rag.retrieval.models import (
    MetadataFilter,
    QueryResponse,
    QueryResult,
    SearchFilter,
    SearchHit,
)
from product_rag.retrieval.retriever import DocumentRetriever

__all__ = [
    "ChromaVectorStore",
    "DocumentRetriever",
    "MetadataFilter",
    "QueryResponse",
    "QueryResult",
    "SearchFilter",
    "SearchHit",
    "VectorStoreBase",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from product_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
