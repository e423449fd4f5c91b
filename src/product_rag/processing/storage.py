"""Collaborators the orchestrator reads from and writes to.

* :class:`BlobStore` — raw document bytes keyed by a stable storage key.
* :class:`DocumentRepository` — durable :class:`Document` records with
  single-document read-modify-write updates.

In-memory implementations back tests and local runs; a filesystem blob
store is provided for the standalone server.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from product_rag.exceptions import BlobNotFoundError, DocumentNotFoundError
from product_rag.processing.models import Document, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Blob storage
# ---------------------------------------------------------------------------


class BlobStore(ABC):
    """Pure byte source keyed by storage key."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the bytes under *key*; raise :class:`BlobNotFoundError` if absent."""
        ...

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...


class InMemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes:
        try:
            return self._blobs[key]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self._blobs.pop(key, None)


class LocalFileBlobStore(BlobStore):
    """Blobs stored as files below *root*; keys may contain ``/``.

    Parameters
    ----------
    root:
        Base directory, created on first write.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Storage key escapes the blob root: {key!r}")
        return path

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored %d bytes under %s", len(data), key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)


# ---------------------------------------------------------------------------
# Durable document records
# ---------------------------------------------------------------------------


class DocumentRepository(ABC):
    """Durable store for :class:`Document` records, scoped by agent."""

    @abstractmethod
    async def get(self, agent_id: str, document_id: str) -> Document:
        """Return the document or raise :class:`DocumentNotFoundError`."""
        ...

    @abstractmethod
    async def save(self, document: Document) -> Document: ...

    @abstractmethod
    async def update(self, agent_id: str, document_id: str, **fields: Any) -> Document:
        """Apply *fields* to one document and bump ``updated_at``."""
        ...

    @abstractmethod
    async def list_by_agent(self, agent_id: str) -> list[Document]: ...

    async def list_unprocessed(self, agent_id: str) -> list[Document]:
        """Documents of *agent_id* that have not completed a RAG run."""
        return [doc for doc in await self.list_by_agent(agent_id) if not doc.rag_processed]


class InMemoryDocumentRepository(DocumentRepository):
    """Dict-backed repository; each update is atomic under one lock."""

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._documents: dict[tuple[str, str], Document] = {}
        self._lock = asyncio.Lock()
        for document in documents or []:
            self._documents[(document.agent_id, document.id)] = document

    async def get(self, agent_id: str, document_id: str) -> Document:
        try:
            return self._documents[(agent_id, document_id)].model_copy(deep=True)
        except KeyError:
            raise DocumentNotFoundError(agent_id, document_id) from None

    async def save(self, document: Document) -> Document:
        async with self._lock:
            self._documents[(document.agent_id, document.id)] = document.model_copy(deep=True)
        return document

    async def update(self, agent_id: str, document_id: str, **fields: Any) -> Document:
        async with self._lock:
            current = self._documents.get((agent_id, document_id))
            if current is None:
                raise DocumentNotFoundError(agent_id, document_id)
            updated = current.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
            self._documents[(agent_id, document_id)] = updated
        return updated.model_copy(deep=True)

    async def list_by_agent(self, agent_id: str) -> list[Document]:
        docs = [doc for (owner, _), doc in self._documents.items() if owner == agent_id]
        docs.sort(key=lambda doc: doc.created_at)
        return [doc.model_copy(deep=True) for doc in docs]
