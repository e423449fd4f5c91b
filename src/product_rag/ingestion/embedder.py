"""Embedding generation in concurrent batches, all-or-nothing per document.

Providers turn *one* string into one vector. Throughput comes from the
:class:`EmbeddingGenerator`, which fires one provider call per chunk
concurrently inside a fixed-size batch and pauses between batches to stay
under external rate limits.
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from typing import Any

from langchain_core.embeddings import Embeddings

from product_rag.config import Settings, settings
from product_rag.exceptions import EmbeddingFailedError
from product_rag.ingestion.models import Chunk, EmbeddedChunk, QueryEmbedding

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: ~4 characters per token."""
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """One text in, one fixed-dimension vector out."""

    model_name: str = ""

    @abstractmethod
    async def embed(self, text: str) -> QueryEmbedding:
        """Return the vector for *text* plus the tokens it consumed."""
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings endpoint through the async ``openai`` client.

    Token usage comes straight from the API response.
    """

    def __init__(
        self,
        model: str = settings.embedding_model,
        *,
        api_key: str = settings.openai_api_key,
        base_url: str = settings.openai_base_url,
        client: Any | None = None,
    ) -> None:
        self.model_name = model
        if client is None:
            from openai import AsyncOpenAI

            kwargs: dict[str, Any] = {"api_key": api_key or None}
            if base_url:
                kwargs["base_url"] = base_url
            client = AsyncOpenAI(**kwargs)
        self._client = client

    async def embed(self, text: str) -> QueryEmbedding:
        response = await self._client.embeddings.create(
            model=self.model_name,
            input=text,
            encoding_format="float",
        )
        return QueryEmbedding(
            embedding=list(response.data[0].embedding),
            tokens=response.usage.total_tokens,
        )


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Adapter for any LangChain ``Embeddings`` implementation.

    LangChain does not report usage, so tokens are estimated.
    """

    def __init__(self, embeddings: Embeddings, model_name: str = "") -> None:
        if not isinstance(embeddings, Embeddings):
            raise TypeError(f"Expected a LangChain Embeddings instance, got {type(embeddings).__name__}")
        self._embeddings = embeddings
        self.model_name = model_name or getattr(embeddings, "model_name", "") or type(embeddings).__name__

    async def embed(self, text: str) -> QueryEmbedding:
        vector = await self._embeddings.aembed_query(text)
        return QueryEmbedding(embedding=list(vector), tokens=estimate_tokens(text))


def get_embedding_provider(config: Settings = settings) -> EmbeddingProvider:
    """Build the provider selected by ``config.embedding_provider``."""
    if config.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            config.embedding_model,
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
        )
    if config.embedding_provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return LangChainEmbeddingProvider(
            HuggingFaceEmbeddings(model_name=config.huggingface_model),
            model_name=config.huggingface_model,
        )
    raise ValueError(f"Unsupported embedding_provider: {config.embedding_provider!r}")


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class EmbeddingGenerator:
    """Embed chunks in concurrent batches.

    Parameters
    ----------
    provider:
        Backend that embeds a single string.
    batch_size:
        Number of chunks embedded concurrently per batch.
    batch_delay:
        Seconds to sleep between two batches.
    max_tokens_per_chunk:
        Ceiling used by :meth:`is_within_token_limit`.
    dimension:
        Expected vector length; ``None`` skips the check.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        batch_size: int = settings.embedding_batch_size,
        batch_delay: float = settings.embedding_batch_delay,
        max_tokens_per_chunk: int = settings.max_tokens_per_chunk,
        dimension: int | None = settings.embedding_dimension,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._provider = provider
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.dimension = dimension

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    def iter_batches(self, chunks: Sequence[Chunk]) -> Iterator[Sequence[Chunk]]:
        """Yield consecutive slices of at most ``batch_size`` chunks."""
        for start in range(0, len(chunks), self.batch_size):
            yield chunks[start : start + self.batch_size]

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> list[EmbeddedChunk]:
        """Embed every chunk, preserving order.

        Raises
        ------
        EmbeddingFailedError
            As soon as any chunk fails; the remaining calls of that batch
            are cancelled and no partial list is returned.
        """
        if not chunks:
            return []

        total_batches = math.ceil(len(chunks) / self.batch_size)
        logger.info(
            "Generating embeddings for %d chunks in %d batches", len(chunks), total_batches
        )

        embedded: list[EmbeddedChunk] = []
        for number, batch in enumerate(self.iter_batches(chunks), start=1):
            tasks = [asyncio.ensure_future(self._embed_chunk(chunk)) for chunk in batch]
            try:
                embedded.extend(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            if number < total_batches and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        total_tokens = sum(item.tokens for item in embedded)
        logger.info("Generated %d embeddings using %d tokens", len(embedded), total_tokens)
        return embedded

    async def embed_query(self, text: str) -> QueryEmbedding:
        """Embed a single retrieval query."""
        result = await self._provider.embed(text)
        self._check_dimension(result.embedding, "query")
        return result

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def is_within_token_limit(self, text: str) -> bool:
        return estimate_tokens(text) <= self.max_tokens_per_chunk

    async def health_check(self) -> dict[str, Any]:
        """Embed a probe string and report the provider state."""
        try:
            probe = await self._provider.embed("Health check test")
        except Exception as exc:
            logger.warning("Embedding health-check failed", exc_info=True)
            return {"status": "unhealthy", "model": self.model_name, "error": str(exc)}
        return {
            "status": "healthy",
            "model": self.model_name,
            "dimension": len(probe.embedding),
            "tokens": probe.tokens,
        }

    # -- internals ------------------------------------------------------------

    async def _embed_chunk(self, chunk: Chunk) -> EmbeddedChunk:
        try:
            result = await self._provider.embed(chunk.text)
            self._check_dimension(result.embedding, f"chunk {chunk.index}")
        except EmbeddingFailedError:
            raise
        except Exception as exc:
            logger.error("Error generating embedding for chunk %d: %s", chunk.index, exc)
            raise EmbeddingFailedError(chunk.index, str(exc)) from exc
        return EmbeddedChunk(
            **chunk.model_dump(),
            embedding=result.embedding,
            tokens=result.tokens,
        )

    def _check_dimension(self, vector: list[float], label: str) -> None:
        if self.dimension is not None and len(vector) != self.dimension:
            raise ValueError(
                f"Embedding for {label} has dimension {len(vector)}, expected {self.dimension}"
            )
