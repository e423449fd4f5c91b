"""Processing orchestrator — drives documents through the RAG pipeline.

For one document the stages run strictly in sequence::

    blob bytes -> extract -> chunk -> embed -> delete old vectors + upsert -> finalize

Progress is tracked in the in-memory :class:`JobRegistry` and mirrored to
the durable :class:`Document` only at fixed milestones (20, 50, 80, 95,
100). Any stage error is caught here, logged, persisted as ``failed`` on
the document and returned as a ``ProcessingResult(success=False)``.

Background work is supervised: :meth:`ProcessingOrchestrator.submit`
returns an :class:`asyncio.Task` the orchestrator keeps track of, so runs
can be cancelled individually or all at once on :meth:`shutdown`.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from pathlib import PurePosixPath
from typing import Any

from product_rag.config import Settings, settings
from product_rag.exceptions import (
    DocumentNotFoundError,
    EmptyContentError,
    ProcessingConflictError,
    RagError,
    UnsupportedFormatError,
)
from product_rag.ingestion.chunker import TextChunker
from product_rag.ingestion.embedder import EmbeddingGenerator, get_embedding_provider
from product_rag.ingestion.extractor import SUPPORTED_CONTENT_TYPES, TextExtractor, normalise_content_type
from product_rag.processing.jobs import JobRegistry
from product_rag.processing.models import (
    AgentStats,
    BatchResult,
    ConsistencyReport,
    Document,
    DocumentStatus,
    ProcessingJob,
    ProcessingResult,
    ProcessingStats,
    utcnow,
)
from product_rag.processing.storage import BlobStore, DocumentRepository
from product_rag.retrieval.base import VectorStoreBase
from product_rag.retrieval.models import QueryResponse
from product_rag.retrieval.retriever import DocumentRetriever

logger = logging.getLogger(__name__)

PROGRESS_EXTRACTING = 20
PROGRESS_EMBEDDING = 50
PROGRESS_STORING = 80
PROGRESS_FINALIZING = 95
PROGRESS_DONE = 100

CANCELLED_MESSAGE = "Processing cancelled"


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, RagError):
        return exc.message
    return str(exc) or type(exc).__name__


class ProcessingOrchestrator:
    """Compose extractor, chunker, embedder and vector store per document.

    Parameters
    ----------
    documents:
        Durable document records.
    blobs:
        Source of raw document bytes.
    store:
        Vector-store backend shared by all agents.
    embedder:
        Batched embedding generator.
    extractor:
        Text extractor; a default :class:`TextExtractor` when omitted.
    chunker:
        Chunker; built from settings when omitted.
    jobs:
        Job registry owned by this orchestrator.
    batch_delay:
        Seconds to pause between documents of a batch.
    """

    def __init__(
        self,
        *,
        documents: DocumentRepository,
        blobs: BlobStore,
        store: VectorStoreBase,
        embedder: EmbeddingGenerator,
        extractor: TextExtractor | None = None,
        chunker: TextChunker | None = None,
        jobs: JobRegistry | None = None,
        retriever: DocumentRetriever | None = None,
        batch_delay: float = settings.batch_document_delay,
    ) -> None:
        self.documents = documents
        self.blobs = blobs
        self.store = store
        self.embedder = embedder
        self.extractor = extractor or TextExtractor()
        self.chunker = chunker or TextChunker(settings.chunk_size, settings.chunk_overlap)
        self.jobs = jobs or JobRegistry()
        self.retriever = retriever or DocumentRetriever(store, embedder)
        self.batch_delay = batch_delay
        self._tasks: dict[tuple[str, str], asyncio.Task[Any]] = {}
        self._started: set[tuple[str, str]] = set()
        self._cleanup: set[asyncio.Task[None]] = set()

    async def initialize(self) -> None:
        """Bootstrap the vector collection; safe to call repeatedly."""
        await self.store.initialize()

    # -- uploads ----------------------------------------------------------------

    async def register_document(
        self,
        agent_id: str,
        name: str,
        content_type: str,
        data: bytes,
        *,
        document_id: str | None = None,
        process: bool = True,
    ) -> Document:
        """Store an upload, record it as ``pending`` and schedule its processing.

        Parameters
        ----------
        agent_id:
            Owner of the document.
        name:
            Original file name; only its suffix ends up in the storage key.
        content_type:
            Declared MIME type, checked against the supported set up front.
        data:
            Raw file bytes.
        document_id:
            Explicit id; a random hex id is generated when omitted.
        process:
            Submit a background run right after the record is saved.

        Returns
        -------
        Document
            The saved ``pending`` record.

        Raises
        ------
        UnsupportedFormatError
            *content_type* cannot be extracted.
        EmptyContentError
            *data* is empty.
        """
        if normalise_content_type(content_type) not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedFormatError(content_type, name)
        if not data:
            raise EmptyContentError("Uploaded file is empty", {"filename": name})

        document_id = document_id or uuid.uuid4().hex
        storage_key = f"{agent_id}/{document_id}{PurePosixPath(name).suffix.lower()}"
        await self.blobs.put(storage_key, data)
        document = await self.documents.save(
            Document(
                id=document_id,
                agent_id=agent_id,
                name=name,
                content_type=content_type,
                size=len(data),
                storage_key=storage_key,
            )
        )
        logger.info(
            "Registered document %s (%d bytes) for agent %s",
            document_id,
            len(data),
            agent_id,
            extra={"agent_id": agent_id, "document_id": document_id},
        )
        if process:
            self.submit(agent_id, document_id)
        return document

    # -- single document --------------------------------------------------------

    async def process_document(self, agent_id: str, document_id: str) -> ProcessingResult:
        """Run the full pipeline for one document and return its outcome.

        Raises
        ------
        DocumentNotFoundError
            The document record does not exist (nothing is persisted).
        ProcessingConflictError
            The document is already being processed.
        """
        document = await self.documents.get(agent_id, document_id)

        with self.jobs.lease(agent_id, document_id):
            started = time.perf_counter()
            log_ctx = {"agent_id": agent_id, "document_id": document_id}
            logger.info("Starting RAG processing for document %s", document_id, extra=log_ctx)

            self.jobs.start(agent_id, document_id)
            try:
                await self.documents.update(
                    agent_id, document_id, status=DocumentStatus.PROCESSING, progress=0, error=None
                )
                await self._checkpoint(agent_id, document_id, PROGRESS_EXTRACTING, "Extracting text")
                data = await self.blobs.get(document.storage_key)
                extraction = await asyncio.to_thread(
                    self.extractor.extract, data, document.content_type, document.name
                )
                text = extraction.text

                chunks = self.chunker.split(
                    text,
                    document_id=document_id,
                    metadata={
                        "document_id": document_id,
                        "document_name": document.name,
                        "document_size": document.size,
                        "content_type": document.content_type,
                        "storage_key": document.storage_key,
                        "extracted_at": utcnow().isoformat(),
                        "original_length": len(text),
                    },
                )
                logger.info("Created %d chunks for document %s", len(chunks), document_id, extra=log_ctx)

                await self._checkpoint(agent_id, document_id, PROGRESS_EMBEDDING, "Generating embeddings")
                embedded = await self.embedder.embed_chunks(chunks)

                await self._checkpoint(agent_id, document_id, PROGRESS_STORING, "Storing vectors")
                await self.store.delete_by_document(document_id)
                vector_count = await self.store.upsert(document_id, agent_id, embedded)

                await self._checkpoint(agent_id, document_id, PROGRESS_FINALIZING, "Finalizing")
                total_tokens = sum(item.tokens for item in embedded)
                stats = ProcessingStats(
                    original_length=len(text),
                    chunks_created=len(chunks),
                    avg_chunk_size=round(sum(c.size for c in chunks) / len(chunks)) if chunks else 0,
                    page_count=extraction.page_count,
                    skipped_pages=extraction.skipped_pages,
                    total_tokens=total_tokens,
                )
                await self.documents.update(
                    agent_id,
                    document_id,
                    status=DocumentStatus.COMPLETED,
                    progress=PROGRESS_DONE,
                    error=None,
                    rag_processed=True,
                    vector_count=vector_count,
                    chunk_count=len(chunks),
                    text_length=len(text),
                    processed_at=utcnow(),
                    embedding_model=self.embedder.model_name,
                    stats=stats,
                )
                self.jobs.update(
                    agent_id,
                    document_id,
                    progress=PROGRESS_DONE,
                    message="Processing completed",
                    status=DocumentStatus.COMPLETED,
                )
            except asyncio.CancelledError:
                logger.warning("RAG processing cancelled for document %s", document_id, extra=log_ctx)
                await self._record_failure(agent_id, document_id, CANCELLED_MESSAGE)
                raise
            except Exception as exc:
                message = _error_message(exc)
                logger.exception("RAG processing failed for document %s", document_id, extra=log_ctx)
                await self._record_failure(agent_id, document_id, message)
                return ProcessingResult(
                    success=False,
                    document_id=document_id,
                    agent_id=agent_id,
                    processing_time_ms=_elapsed_ms(started),
                    error=message,
                )

            elapsed = _elapsed_ms(started)
            logger.info(
                "Completed RAG processing for document %s: %d vectors in %d ms",
                document_id,
                vector_count,
                elapsed,
                extra=log_ctx,
            )
            return ProcessingResult(
                success=True,
                document_id=document_id,
                agent_id=agent_id,
                chunks_created=len(chunks),
                vectors_stored=vector_count,
                text_length=len(text),
                total_tokens=total_tokens,
                processing_time_ms=elapsed,
            )

    # -- batch ------------------------------------------------------------------

    async def process_agent_documents(self, agent_id: str) -> BatchResult:
        """Process every unprocessed document of *agent_id*, one after another.

        A failing document does not stop the batch.
        """
        pending = await self.documents.list_unprocessed(agent_id)
        batch = BatchResult(agent_id=agent_id, total=len(pending))
        logger.info("Processing %d documents for agent %s", len(pending), agent_id)

        for position, document in enumerate(pending):
            if position and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            try:
                result = await self.process_document(agent_id, document.id)
            except (DocumentNotFoundError, ProcessingConflictError) as exc:
                logger.warning("Skipping document %s: %s", document.id, exc.message)
                result = ProcessingResult(
                    success=False, document_id=document.id, agent_id=agent_id, error=exc.message
                )
            batch.results.append(result)
            if result.success:
                batch.successful += 1
            else:
                batch.failed += 1

        logger.info(
            "Batch for agent %s finished: %d succeeded, %d failed",
            agent_id,
            batch.successful,
            batch.failed,
        )
        return batch

    # -- supervised background work ---------------------------------------------

    def submit(self, agent_id: str, document_id: str) -> asyncio.Task[ProcessingResult | None]:
        """Schedule :meth:`process_document` and return immediately.

        A run already in flight for the same document is returned instead
        of starting a second one. A run cancelled before its first step is
        still recorded as failed.
        """
        key = (agent_id, document_id)
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            return existing
        task = self._spawn(key, self._run_document(agent_id, document_id))
        task.add_done_callback(functools.partial(self._on_document_done, key))
        return task

    def submit_agent(self, agent_id: str) -> asyncio.Task[BatchResult]:
        """Schedule :meth:`process_agent_documents` for *agent_id*."""
        return self._spawn((agent_id, "*"), self.process_agent_documents(agent_id))

    def is_running(self, agent_id: str, document_id: str) -> bool:
        task = self._tasks.get((agent_id, document_id))
        return task is not None and not task.done()

    def cancel(self, agent_id: str, document_id: str) -> bool:
        """Request cancellation of a submitted run; ``False`` if none is in flight."""
        task = self._tasks.get((agent_id, document_id))
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for them to unwind."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling %d in-flight processing tasks", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._cleanup:
            await asyncio.gather(*self._cleanup, return_exceptions=True)
        self._tasks.clear()

    # -- retrieval & maintenance --------------------------------------------------

    async def query(
        self,
        text: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        agent_id: str | None = None,
        document_ids: list[str] | None = None,
    ) -> QueryResponse:
        """Best-effort similarity query; never raises."""
        return await self.retriever.query(
            text, limit=limit, threshold=threshold, agent_id=agent_id, document_ids=document_ids
        )

    async def delete_document_vectors(self, document_id: str) -> None:
        await self.store.delete_by_document(document_id)

    def get_processing_status(self, agent_id: str, document_id: str) -> ProcessingJob | None:
        return self.jobs.get(agent_id, document_id)

    def get_agent_processing_statuses(self, agent_id: str) -> list[ProcessingJob]:
        return self.jobs.list_for_agent(agent_id)

    async def get_agent_stats(self, agent_id: str) -> AgentStats:
        documents = await self.documents.list_by_agent(agent_id)
        processed = [doc for doc in documents if doc.rag_processed]
        return AgentStats(
            total_documents=len(documents),
            processed_documents=len(processed),
            total_vectors=sum(doc.vector_count for doc in processed),
            total_text_length=sum(doc.text_length for doc in processed),
            processing_rate=round(len(processed) / len(documents) * 100) if documents else 0,
        )

    async def verify_document(self, agent_id: str, document_id: str) -> ConsistencyReport:
        """Compare the persisted ``vector_count`` with the store's actual count."""
        document = await self.documents.get(agent_id, document_id)
        expected = document.vector_count if document.rag_processed else 0
        actual = await self.store.count_by_document(document_id)
        report = ConsistencyReport(
            agent_id=agent_id,
            document_id=document_id,
            expected_vectors=expected,
            actual_vectors=actual,
            consistent=expected == actual,
            details={"status": document.status.value, "rag_processed": document.rag_processed},
        )
        if not report.consistent:
            logger.warning(
                "Vector count mismatch for document %s: expected %d, found %d",
                document_id,
                expected,
                actual,
            )
        return report

    async def health_check(self) -> dict[str, Any]:
        vector_store = await self.store.health_check()
        embeddings = await self.embedder.health_check()
        healthy = vector_store.get("status") == "healthy" and embeddings.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "unhealthy",
            "vector_store": vector_store,
            "embeddings": embeddings,
            "active_jobs": len(self.jobs),
        }

    # -- internals ----------------------------------------------------------------

    async def _checkpoint(self, agent_id: str, document_id: str, progress: int, message: str) -> None:
        self.jobs.update(agent_id, document_id, progress=progress, message=message)
        await self.documents.update(agent_id, document_id, progress=progress)
        logger.debug(
            "Document %s at %d%%: %s",
            document_id,
            progress,
            message,
            extra={"agent_id": agent_id, "document_id": document_id, "progress": progress},
        )

    async def _record_failure(self, agent_id: str, document_id: str, message: str) -> None:
        self.jobs.update(
            agent_id, document_id, progress=0, message=message, status=DocumentStatus.FAILED
        )
        try:
            await self.documents.update(
                agent_id,
                document_id,
                status=DocumentStatus.FAILED,
                progress=0,
                error=message,
                rag_processed=False,
            )
        except Exception:
            logger.exception("Could not persist failed status for document %s", document_id)

    async def _run_document(self, agent_id: str, document_id: str) -> ProcessingResult | None:
        self._started.add((agent_id, document_id))
        try:
            return await self.process_document(agent_id, document_id)
        except (DocumentNotFoundError, ProcessingConflictError) as exc:
            logger.warning("Background processing of %s not started: %s", document_id, exc.message)
            return None

    def _on_document_done(self, key: tuple[str, str], done: asyncio.Task[Any]) -> None:
        started = key in self._started
        self._started.discard(key)
        if not done.cancelled() or started:
            return
        cleanup = asyncio.get_running_loop().create_task(self._record_unstarted_cancel(*key))
        self._cleanup.add(cleanup)
        cleanup.add_done_callback(self._cleanup.discard)

    async def _record_unstarted_cancel(self, agent_id: str, document_id: str) -> None:
        # A newer run may already hold the lease.
        if self.jobs.is_leased(agent_id, document_id):
            return
        try:
            await self.documents.get(agent_id, document_id)
        except DocumentNotFoundError:
            return
        logger.warning(
            "RAG processing cancelled before it started for document %s",
            document_id,
            extra={"agent_id": agent_id, "document_id": document_id},
        )
        self.jobs.start(agent_id, document_id, message=CANCELLED_MESSAGE)
        await self._record_failure(agent_id, document_id, CANCELLED_MESSAGE)

    def _spawn(self, key: tuple[str, str], coro: Any) -> asyncio.Task[Any]:
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            coro.close()
            return existing

        task = asyncio.create_task(coro, name=f"rag:{key[0]}:{key[1]}")
        self._tasks[key] = task

        def _forget(done: asyncio.Task[Any]) -> None:
            if self._tasks.get(key) is done:
                del self._tasks[key]
            if not done.cancelled() and done.exception() is not None:
                logger.error("Background task %s failed", done.get_name(), exc_info=done.exception())

        task.add_done_callback(_forget)
        return task


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def build_orchestrator(
    config: Settings = settings,
    *,
    documents: DocumentRepository | None = None,
    blobs: BlobStore | None = None,
) -> ProcessingOrchestrator:
    """Wire the production collaborators from *config*.

    *documents* and *blobs* replace the in-memory repository and the local
    file blob store, for deployments with a durable document service.
    """
    from product_rag.processing.storage import InMemoryDocumentRepository, LocalFileBlobStore
    from product_rag.retrieval.chroma_store import ChromaVectorStore, build_chroma_client

    store = ChromaVectorStore(
        config.chroma_collection,
        client=build_chroma_client(config),
        dimension=config.embedding_dimension,
        upsert_batch_size=config.chroma_upsert_batch_size,
    )
    embedder = EmbeddingGenerator(
        get_embedding_provider(config),
        batch_size=config.embedding_batch_size,
        batch_delay=config.embedding_batch_delay,
        max_tokens_per_chunk=config.max_tokens_per_chunk,
        dimension=config.embedding_dimension,
    )
    return ProcessingOrchestrator(
        documents=documents or InMemoryDocumentRepository(),
        blobs=blobs or LocalFileBlobStore(config.blob_store_path),
        store=store,
        embedder=embedder,
        chunker=TextChunker(config.chunk_size, config.chunk_overlap),
        jobs=JobRegistry(completed_ttl=config.completed_job_ttl, failed_ttl=config.failed_job_ttl),
        retriever=DocumentRetriever(
            store,
            embedder,
            default_limit=config.query_default_limit,
            default_threshold=config.query_default_threshold,
        ),
        batch_delay=config.batch_document_delay,
    )
