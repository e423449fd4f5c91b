"""Chroma implementation of the vector-store abstraction.

The Chroma client is synchronous; every call is pushed to a worker
thread with :func:`asyncio.to_thread` so the event loop never blocks on
the database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Sequence
from typing import Any

import chromadb

from product_rag.config import Settings, settings
from product_rag.exceptions import VectorStoreReadError, VectorStoreWriteError
from product_rag.ingestion.models import EmbeddedChunk
from product_rag.retrieval.base import VectorStoreBase
from product_rag.retrieval.models import MetadataFilter, SearchFilter, SearchHit

logger = logging.getLogger(__name__)

# Chroma payloads only hold scalars, so the free-form chunk metadata is
# stored as one JSON string next to the filterable keys.
_METADATA_KEY = "metadata_json"


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def build_chroma_client(config: Settings = settings) -> Any:
    """Create the Chroma client selected by ``config.chroma_mode``."""
    if config.chroma_mode == "http":
        return chromadb.HttpClient(host=config.chroma_host, port=config.chroma_port)
    if config.chroma_mode == "persistent":
        return chromadb.PersistentClient(path=config.chroma_persist_path)
    if config.chroma_mode == "ephemeral":
        return chromadb.EphemeralClient()
    raise ValueError(f"Unsupported chroma_mode: {config.chroma_mode!r}")


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    client:
        A ready Chroma client; built from settings when omitted.
    dimension:
        Expected vector length, checked on upsert and search.
    upsert_batch_size:
        Maximum number of records sent in one upsert call.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        client: Any | None = None,
        dimension: int = settings.embedding_dimension,
        upsert_batch_size: int = settings.chroma_upsert_batch_size,
    ) -> None:
        super().__init__(collection_name, dimension)
        self._client = client if client is not None else build_chroma_client()
        self._upsert_batch_size = upsert_batch_size
        self._collection: Any | None = None

    # -- VectorStoreBase overrides --------------------------------------------

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self._get_collection)
        except Exception as exc:
            raise VectorStoreWriteError(
                f"Failed to initialise collection {self.collection_name}: {exc}",
                {"collection": self.collection_name},
            ) from exc
        logger.info("Vector collection %s ready", self.collection_name)

    async def upsert(
        self,
        document_id: str,
        agent_id: str | None,
        chunks: Sequence[EmbeddedChunk],
    ) -> int:
        if not chunks:
            return 0

        ids: list[str] = []
        embeddings: list[list[float]] = []
        documents: list[str] = []
        metadatas: list[dict[str, Any]] = []
        for chunk in chunks:
            self._check_dimension(chunk.embedding)
            ids.append(str(uuid.uuid4()))
            embeddings.append(chunk.embedding)
            documents.append(chunk.text)
            metadatas.append(
                {
                    "document_id": document_id,
                    "agent_id": agent_id or "",
                    "chunk_index": chunk.index,
                    _METADATA_KEY: json.dumps(chunk.metadata, default=str),
                }
            )

        def _write() -> None:
            collection = self._get_collection()
            step = self._upsert_batch_size
            for start in range(0, len(ids), step):
                collection.upsert(
                    ids=ids[start : start + step],
                    embeddings=embeddings[start : start + step],
                    documents=documents[start : start + step],
                    metadatas=metadatas[start : start + step],
                )

        try:
            await asyncio.to_thread(_write)
        except Exception as exc:
            raise VectorStoreWriteError(
                f"Failed to store vectors for document {document_id}: {exc}",
                {"document_id": document_id, "count": len(ids)},
            ) from exc

        logger.info("Stored %d vectors for document %s", len(ids), document_id)
        return len(ids)

    async def delete_by_document(self, document_id: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._get_collection().delete(where={"document_id": document_id})
            )
        except Exception as exc:
            raise VectorStoreWriteError(
                f"Failed to delete vectors for document {document_id}: {exc}",
                {"document_id": document_id},
            ) from exc
        logger.info("Deleted vectors for document %s", document_id)

    async def search(
        self,
        query_vector: list[float],
        *,
        limit: int = 5,
        filters: SearchFilter | None = None,
    ) -> list[SearchHit]:
        if limit <= 0:
            return []
        self._check_dimension(query_vector)
        where = _build_chroma_where(filters.to_metadata_filters()) if filters else None

        def _query() -> dict[str, Any] | None:
            collection = self._get_collection()
            # Chroma rejects n_results larger than the number of matches.
            if where is None:
                available = collection.count()
            else:
                available = len(collection.get(where=where, include=[])["ids"])
            if available == 0:
                return None
            return collection.query(
                query_embeddings=[query_vector],
                n_results=min(limit, available),
                where=where,
                include=["documents", "metadatas", "distances"],
            )

        try:
            results = await asyncio.to_thread(_query)
        except Exception as exc:
            raise VectorStoreReadError(
                f"Vector search failed: {exc}", {"collection": self.collection_name}
            ) from exc
        if results is None:
            return []

        hits: list[SearchHit] = []
        ids = results.get("ids", [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for record_id, content, meta, dist in zip(ids, docs, metas, distances):
            meta = meta or {}
            # Cosine space: distance = 1 - cosine similarity.
            hits.append(
                SearchHit(
                    id=record_id,
                    score=1.0 - float(dist),
                    document_id=str(meta.get("document_id", "")),
                    agent_id=meta.get("agent_id") or None,
                    chunk_index=int(meta.get("chunk_index", 0)),
                    text=content or "",
                    metadata=json.loads(meta.get(_METADATA_KEY) or "{}"),
                )
            )
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    async def count_by_document(self, document_id: str) -> int:
        try:
            result = await asyncio.to_thread(
                lambda: self._get_collection().get(
                    where={"document_id": document_id}, include=[]
                )
            )
        except Exception as exc:
            raise VectorStoreReadError(
                f"Failed to count vectors for document {document_id}: {exc}",
                {"document_id": document_id},
            ) from exc
        return len(result["ids"])

    async def collection_info(self) -> dict[str, Any]:
        try:
            count = await asyncio.to_thread(lambda: self._get_collection().count())
        except Exception as exc:
            raise VectorStoreReadError(
                f"Failed to describe collection {self.collection_name}: {exc}",
                {"collection": self.collection_name},
            ) from exc
        return {
            "name": self.collection_name,
            "vectors_count": count,
            "dimension": self.dimension,
            "distance": "cosine",
        }

    async def health_check(self) -> dict[str, Any]:
        try:
            await asyncio.to_thread(self._client.heartbeat)
            info = await self.collection_info()
        except Exception as exc:
            logger.warning("Chroma health-check failed", exc_info=True)
            return {"status": "unhealthy", "error": str(exc)}
        return {"status": "healthy", **info}

    # -- internals ------------------------------------------------------------

    def _get_collection(self) -> Any:
        if self._collection is None:
            self._collection = self._client.get_or_create_collection(
                self.collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=None,
            )
        return self._collection

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise ValueError(
                f"Vector dimension {len(vector)} does not match collection dimension {self.dimension}"
            )
