"""Unit tests for the serving layer."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import DIMENSION, FakeEmbeddingProvider, FakeVectorStore, add_text_document
from product_rag.ingestion.embedder import EmbeddingGenerator
from product_rag.processing.orchestrator import ProcessingOrchestrator
from product_rag.processing.storage import InMemoryBlobStore, InMemoryDocumentRepository
from product_rag.serving.app import create_app

TEXT = "The scheduler integrates with Slack and Teams. " * 20


@pytest.fixture
def client(
    orchestrator: ProcessingOrchestrator,
    documents: InMemoryDocumentRepository,
    blobs: InMemoryBlobStore,
) -> Iterator[TestClient]:
    asyncio.run(add_text_document(documents, blobs, TEXT))
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client


def _wait_until_completed(client: TestClient, path: str) -> dict:
    for _ in range(200):
        body = client.get(path).json()
        if body and body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"processing did not finish: {path}")


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_rag_health(client: TestClient, store: FakeVectorStore) -> None:
    response = client.get("/rag/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert store.initialized == 1


def test_rag_health_degraded_returns_503(
    documents: InMemoryDocumentRepository, blobs: InMemoryBlobStore, store: FakeVectorStore
) -> None:
    orchestrator = ProcessingOrchestrator(
        documents=documents,
        blobs=blobs,
        store=store,
        embedder=EmbeddingGenerator(FakeEmbeddingProvider(fail_on="Health"), dimension=DIMENSION),
    )
    with TestClient(create_app(orchestrator)) as test_client:
        response = test_client.get("/rag/health")
    assert response.status_code == 503
    assert response.json()["embeddings"]["status"] == "unhealthy"


def test_process_document_then_query(client: TestClient) -> None:
    """Processing runs in the background; the query sees the stored chunks."""
    response = client.post("/rag/agents/agent-a/documents/doc-1/process")
    assert response.status_code == 202
    assert response.json()["document_id"] == "doc-1"

    job = _wait_until_completed(client, "/rag/agents/agent-a/documents/doc-1/rag-status")
    assert job["status"] == "completed"
    assert job["progress"] == 100

    stats = client.get("/rag/agents/agent-a/rag-stats").json()
    assert stats["processed_documents"] == 1

    verify = client.get("/rag/agents/agent-a/documents/doc-1/verify").json()
    assert verify["consistent"] is True

    statuses = client.get("/rag/agents/agent-a/rag-status").json()
    assert [s["document_id"] for s in statuses] == ["doc-1"]

    query = client.post(
        "/rag/query", json={"query": TEXT.strip(), "agent_id": "agent-a", "threshold": -1.0, "limit": 3}
    ).json()
    assert query["success"] is True
    assert 1 <= query["result_count"] <= 3


def test_batch_endpoint_accepts(client: TestClient) -> None:
    response = client.post("/rag/agents/agent-a/process-documents")
    assert response.status_code == 202
    _wait_until_completed(client, "/rag/agents/agent-a/documents/doc-1/rag-status")


def test_process_unknown_document_is_404(client: TestClient) -> None:
    response = client.post("/rag/agents/agent-a/documents/ghost/process")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_status_of_unknown_job_is_null(client: TestClient) -> None:
    response = client.get("/rag/agents/agent-a/documents/ghost/rag-status")
    assert response.status_code == 200
    assert response.json() is None


def test_delete_vectors(client: TestClient, store: FakeVectorStore) -> None:
    client.post("/rag/agents/agent-a/documents/doc-1/process")
    _wait_until_completed(client, "/rag/agents/agent-a/documents/doc-1/rag-status")

    response = client.delete("/rag/documents/doc-1/vectors")

    assert response.status_code == 200
    assert store.records == []


def test_query_failure_is_reported_not_raised(client: TestClient, store: FakeVectorStore) -> None:
    store.fail_search = True
    response = client.post("/rag/query", json={"query": "integrations"})
    assert response.status_code == 200
    assert response.json()["success"] is False


def test_query_validation(client: TestClient) -> None:
    assert client.post("/rag/query", json={"query": "x", "limit": 0}).status_code == 422


def test_upload_registers_and_processes_the_document(client: TestClient) -> None:
    """An uploaded file is stored, recorded as pending and processed in the background."""
    response = client.post(
        "/rag/agents/agent-b/documents",
        files={"file": ("pricing.txt", b"Plans start at ten dollars per seat. " * 10, "text/plain")},
    )
    assert response.status_code == 202
    document_id = response.json()["document_id"]
    assert document_id

    job = _wait_until_completed(client, f"/rag/agents/agent-b/documents/{document_id}/rag-status")
    assert job["status"] == "completed"

    stats = client.get("/rag/agents/agent-b/rag-stats").json()
    assert stats["total_documents"] == 1
    assert stats["processed_documents"] == 1
    assert client.get(f"/rag/agents/agent-b/documents/{document_id}/verify").json()["consistent"] is True


def test_upload_of_unsupported_type_is_415(client: TestClient) -> None:
    response = client.post(
        "/rag/agents/agent-b/documents",
        files={"file": ("logo.png", b"\x89PNG", "image/png")},
    )
    assert response.status_code == 415
    assert response.json()["success"] is False
    assert client.get("/rag/agents/agent-b/rag-stats").json()["total_documents"] == 0


def test_empty_upload_is_400(client: TestClient) -> None:
    response = client.post(
        "/rag/agents/agent-b/documents",
        files={"file": ("empty.txt", b"", "text/plain")},
    )
    assert response.status_code == 400
