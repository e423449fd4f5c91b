"""Error taxonomy for the ingestion and retrieval pipeline.

Every error carries a human-readable ``message`` and a ``details`` dict
that ends up in logs and in the structured failure result produced by
the orchestrator.
"""

from __future__ import annotations

from typing import Any


class RagError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnsupportedFormatError(RagError):
    """The declared content type is outside the supported set."""

    def __init__(self, content_type: str, filename: str = "") -> None:
        super().__init__(
            f"Unsupported document type: {content_type}",
            {"content_type": content_type, "filename": filename},
        )
        self.content_type = content_type


class EmptyContentError(RagError):
    """Extraction produced no usable text."""


class ExtractionFailedError(RagError):
    """The document could not be read at all (no page yielded text)."""


class EmbeddingFailedError(RagError):
    """One chunk failed to embed; the whole document's embedding stage is aborted."""

    def __init__(self, chunk_index: int, cause: str) -> None:
        super().__init__(
            f"Embedding failed for chunk {chunk_index}: {cause}",
            {"chunk_index": chunk_index},
        )
        self.chunk_index = chunk_index


class VectorStoreWriteError(RagError):
    """Upsert or delete against the vector store failed."""


class VectorStoreReadError(RagError):
    """Search, count or info call against the vector store failed."""


class DocumentNotFoundError(RagError):
    """The durable document record does not exist."""

    def __init__(self, agent_id: str, document_id: str) -> None:
        super().__init__(
            f"Document {document_id} not found for agent {agent_id}",
            {"agent_id": agent_id, "document_id": document_id},
        )


class BlobNotFoundError(RagError):
    """The blob store has no bytes under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No blob stored under key {key!r}", {"key": key})


class JobNotFoundError(RagError):
    """No live in-memory job exists for the (agent, document) pair."""

    def __init__(self, agent_id: str, document_id: str) -> None:
        super().__init__(
            f"No processing job for document {document_id} (agent {agent_id})",
            {"agent_id": agent_id, "document_id": document_id},
        )


class ProcessingConflictError(RagError):
    """Another run already holds the lease for this document."""

    def __init__(self, agent_id: str, document_id: str) -> None:
        super().__init__(
            f"Document {document_id} is already being processed",
            {"agent_id": agent_id, "document_id": document_id},
        )
