"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

import logging

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Native vector length of the embedding models this service is deployed with.
NATIVE_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
}


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding provider
    openai_api_key: str = Field(default="", description="OpenAI API key used for embeddings")
    openai_base_url: str = Field(
        default="",
        description="Optional OpenAI-compatible base URL. Leave empty to use OpenAI cloud.",
    )
    embedding_provider: str = Field(
        default="openai",
        description="Embedding backend: 'openai' or 'huggingface'",
    )
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = Field(
        default=1536,
        description=(
            "Vector length. When unset it follows the active model via NATIVE_DIMENSIONS; "
            "set it explicitly for any other model."
        ),
    )
    huggingface_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = 10
    embedding_batch_delay: float = Field(default=0.1, description="Pause between embedding batches (s)")
    max_tokens_per_chunk: int = 8000

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Vector store
    chroma_mode: str = Field(default="http", description="'http', 'persistent' or 'ephemeral'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_persist_path: str = "./chroma"
    chroma_collection: str = "product-documents"
    chroma_upsert_batch_size: int = 500

    # Orchestration
    completed_job_ttl: float = Field(default=30.0, description="Seconds a completed job stays pollable")
    failed_job_ttl: float = Field(default=300.0, description="Seconds a failed job stays pollable")
    batch_document_delay: float = Field(default=1.0, description="Pause between documents in a batch (s)")

    # Retrieval
    query_default_limit: int = 5
    query_default_threshold: float = 0.3

    # Blob store
    blob_store_path: str = "./uploads"

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def active_embedding_model(self) -> str:
        if self.embedding_provider == "huggingface":
            return self.huggingface_model
        return self.embedding_model

    @model_validator(mode="after")
    def _dimension_follows_model(self) -> Settings:
        if "embedding_dimension" not in self.model_fields_set:
            native = NATIVE_DIMENSIONS.get(self.active_embedding_model)
            if native is not None:
                self.embedding_dimension = native
        return self


# Module-level instance shared by every component.
settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler at the configured level."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
