"""Semantic retriever: query text in, ranked product-documentation passages out.

This is the read path used by the lead-research consumer. Retrieval is
best effort: any failure comes back as ``QueryResponse(success=False)``
instead of an exception, so a documentation miss never breaks the
caller's workflow.

Usage::

    retriever = DocumentRetriever(store, embedder)
    response = await retriever.query("pricing for the enterprise tier", agent_id="a1")
    for r in response.results:
        print(r.score, r.content[:80])
"""

from __future__ import annotations

import logging

from product_rag.config import settings
from product_rag.ingestion.embedder import EmbeddingGenerator
from product_rag.retrieval.base import VectorStoreBase
from product_rag.retrieval.models import QueryResponse, QueryResult, SearchFilter, SearchHit

logger = logging.getLogger(__name__)


class DocumentRetriever:
    """High-level retriever that wraps any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Generator used to embed the query text.
    default_limit:
        Number of results when the caller passes none.
    default_threshold:
        Minimum similarity score when the caller passes none.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: EmbeddingGenerator,
        *,
        default_limit: int = settings.query_default_limit,
        default_threshold: float = settings.query_default_threshold,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_limit = default_limit
        self.default_threshold = default_threshold

    # -- public API -----------------------------------------------------------

    async def query(
        self,
        text: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        agent_id: str | None = None,
        document_ids: list[str] | None = None,
    ) -> QueryResponse:
        """Embed *text*, search and keep hits scoring at least *threshold*.

        Parameters
        ----------
        text:
            Natural-language query string.
        limit:
            Maximum number of results (defaults to ``self.default_limit``).
        threshold:
            Minimum similarity score (defaults to ``self.default_threshold``).
        agent_id:
            Restrict the search to one agent's documents.
        document_ids:
            Restrict the search to these documents.

        Returns
        -------
        QueryResponse
            Results ordered by descending score, or ``success=False`` with
            the error message.
        """
        limit = self.default_limit if limit is None else limit
        threshold = self.default_threshold if threshold is None else threshold

        try:
            if not text.strip():
                raise ValueError("Query text must not be empty")
            query_embedding = await self._embedder.embed_query(text)
            hits = await self._store.search(
                query_embedding.embedding,
                limit=limit,
                filters=SearchFilter(agent_id=agent_id, document_ids=document_ids),
            )
        except Exception as exc:
            logger.exception("RAG query failed for agent %s", agent_id)
            return QueryResponse(success=False, query=text, error=str(exc))

        results = self._to_results(hits, threshold)
        logger.info(
            "RAG query returned %d/%d results above threshold %.2f", len(results), len(hits), threshold
        )
        return QueryResponse(success=True, query=text, results=results, result_count=len(results))

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _to_results(hits: list[SearchHit], threshold: float) -> list[QueryResult]:
        results = [
            QueryResult(
                score=hit.score,
                content=hit.text,
                metadata={
                    **hit.metadata,
                    "document_id": hit.document_id,
                    "agent_id": hit.agent_id,
                    "chunk_index": hit.chunk_index,
                },
            )
            for hit in hits
            if hit.score >= threshold
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results
