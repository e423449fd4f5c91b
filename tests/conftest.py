"""Shared pytest configuration, fakes and fixtures."""

from __future__ import annotations

import hashlib
import math
import uuid
from collections.abc import Sequence
from typing import Any

import chromadb
import pytest

from product_rag.ingestion.chunker import TextChunker
from product_rag.ingestion.embedder import EmbeddingGenerator, EmbeddingProvider
from product_rag.ingestion.models import EmbeddedChunk, QueryEmbedding
from product_rag.processing.jobs import JobRegistry
from product_rag.processing.models import Document
from product_rag.processing.orchestrator import ProcessingOrchestrator
from product_rag.processing.storage import InMemoryBlobStore, InMemoryDocumentRepository
from product_rag.retrieval.base import VectorStoreBase
from product_rag.retrieval.models import SearchFilter, SearchHit

DIMENSION = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


def fake_vector(text: str, dimension: int = DIMENSION) -> list[float]:
    """Deterministic, non-zero vector derived from the text hash."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [digest[i] - 127.5 for i in range(dimension)]


def cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b)))


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeEmbeddingProvider(EmbeddingProvider):
    """Hash-based embeddings; texts containing ``fail_on`` raise."""

    model_name = "fake-embedding"

    def __init__(self, dimension: int = DIMENSION, fail_on: str | None = None) -> None:
        self.dimension = dimension
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed(self, text: str) -> QueryEmbedding:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError("provider rejected input")
        return QueryEmbedding(embedding=fake_vector(text, self.dimension), tokens=len(text.split()))


class FakeVectorStore(VectorStoreBase):
    """In-memory cosine store honouring the same filter semantics as Chroma."""

    def __init__(self, dimension: int = DIMENSION) -> None:
        super().__init__("test-collection", dimension)
        self.records: list[dict[str, Any]] = []
        self.initialized = 0
        self.fail_upsert = False
        self.fail_search = False

    async def initialize(self) -> None:
        self.initialized += 1

    async def upsert(
        self,
        document_id: str,
        agent_id: str | None,
        chunks: Sequence[EmbeddedChunk],
    ) -> int:
        if self.fail_upsert:
            raise RuntimeError("vector store unavailable")
        for chunk in chunks:
            self.records.append(
                {
                    "id": str(uuid.uuid4()),
                    "vector": chunk.embedding,
                    "document_id": document_id,
                    "agent_id": agent_id,
                    "chunk_index": chunk.index,
                    "text": chunk.text,
                    "metadata": dict(chunk.metadata),
                }
            )
        return len(chunks)

    async def delete_by_document(self, document_id: str) -> None:
        self.records = [r for r in self.records if r["document_id"] != document_id]

    async def search(
        self,
        query_vector: list[float],
        *,
        limit: int = 5,
        filters: SearchFilter | None = None,
    ) -> list[SearchHit]:
        if self.fail_search:
            raise RuntimeError("search unavailable")
        candidates = self.records
        if filters and filters.agent_id:
            candidates = [r for r in candidates if r["agent_id"] == filters.agent_id]
        if filters and filters.document_ids:
            candidates = [r for r in candidates if r["document_id"] in filters.document_ids]
        hits = [SearchHit(score=cosine(query_vector, r["vector"]), **r) for r in candidates]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: max(limit, 0)]

    async def count_by_document(self, document_id: str) -> int:
        return sum(1 for r in self.records if r["document_id"] == document_id)

    async def collection_info(self) -> dict[str, Any]:
        return {"name": self.collection_name, "vectors_count": len(self.records)}

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", **await self.collection_info()}


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(provider: FakeEmbeddingProvider) -> EmbeddingGenerator:
    return EmbeddingGenerator(provider, batch_size=4, batch_delay=0, dimension=DIMENSION)


@pytest.fixture
def store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def documents() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def orchestrator(
    documents: InMemoryDocumentRepository,
    blobs: InMemoryBlobStore,
    store: FakeVectorStore,
    embedder: EmbeddingGenerator,
) -> ProcessingOrchestrator:
    return ProcessingOrchestrator(
        documents=documents,
        blobs=blobs,
        store=store,
        embedder=embedder,
        chunker=TextChunker(chunk_size=200, chunk_overlap=40),
        jobs=JobRegistry(completed_ttl=30, failed_ttl=300),
        batch_delay=0,
    )


async def add_text_document(
    documents: InMemoryDocumentRepository,
    blobs: InMemoryBlobStore,
    text: str,
    *,
    agent_id: str = "agent-a",
    document_id: str = "doc-1",
    content_type: str = "text/plain",
) -> Document:
    """Store *text* as a blob and register a pending document for it."""
    key = f"{agent_id}/{document_id}.txt"
    data = text.encode("utf-8")
    await blobs.put(key, data)
    document = Document(
        id=document_id,
        agent_id=agent_id,
        name=f"{document_id}.txt",
        content_type=content_type,
        size=len(data),
        storage_key=key,
    )
    return await documents.save(document)


@pytest.fixture(scope="session")
def chroma_client() -> Any:
    """One in-process Chroma client for the whole session."""
    return chromadb.EphemeralClient()
