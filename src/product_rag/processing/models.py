"""Document records, processing jobs and pipeline results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle of a document in the RAG pipeline."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class ProcessingStats(BaseModel):
    """Figures recorded with a successful run."""

    original_length: int = 0
    chunks_created: int = 0
    avg_chunk_size: int = 0
    page_count: int = 0
    skipped_pages: int = 0
    total_tokens: int = 0


class Document(BaseModel):
    """Durable record of an uploaded document.

    Raw bytes live in the blob store under ``storage_key``; this record
    only mirrors the processing state and the derived stats.
    """

    id: str
    agent_id: str
    name: str = ""
    content_type: str
    size: int = 0
    storage_key: str
    status: DocumentStatus = DocumentStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    error: str | None = None
    rag_processed: bool = False
    vector_count: int = 0
    chunk_count: int = 0
    text_length: int = 0
    embedding_model: str | None = None
    stats: ProcessingStats | None = None
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProcessingJob(BaseModel):
    """Process-local progress snapshot for one (agent, document) pair."""

    agent_id: str
    document_id: str
    status: DocumentStatus = DocumentStatus.PROCESSING
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProcessingResult(BaseModel):
    """Outcome of one document run; failures are data, not exceptions."""

    success: bool
    document_id: str
    agent_id: str
    chunks_created: int = 0
    vectors_stored: int = 0
    text_length: int = 0
    total_tokens: int = 0
    processing_time_ms: int = 0
    error: str | None = None


class BatchResult(BaseModel):
    """Aggregate of a sequential batch over an agent's documents."""

    agent_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[ProcessingResult] = Field(default_factory=list)


class AgentStats(BaseModel):
    total_documents: int = 0
    processed_documents: int = 0
    total_vectors: int = 0
    total_text_length: int = 0
    processing_rate: int = 0


class ConsistencyReport(BaseModel):
    """Persisted ``vector_count`` compared with what the store actually holds."""

    agent_id: str
    document_id: str
    expected_vectors: int
    actual_vectors: int
    consistent: bool
    details: dict[str, Any] = Field(default_factory=dict)
