"""FastAPI application exposing document processing and RAG queries as a REST API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, File, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from product_rag import __version__
from product_rag.config import configure_logging
from product_rag.exceptions import DocumentNotFoundError, EmptyContentError, UnsupportedFormatError
from product_rag.processing.models import AgentStats, ConsistencyReport, ProcessingJob
from product_rag.processing.orchestrator import ProcessingOrchestrator, build_orchestrator
from product_rag.retrieval.models import QueryResponse

logger = logging.getLogger(__name__)


# ── Request / Response schemas ────────────────────────────────────────
class QueryRequest(BaseModel):
    """Similarity query scoped to an agent's documents."""

    query: str
    limit: int | None = Field(default=None, ge=1, le=50)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    agent_id: str | None = None


class AcceptedResponse(BaseModel):
    """Background work was scheduled."""

    success: bool = True
    message: str
    agent_id: str
    document_id: str | None = None


def create_app(orchestrator: ProcessingOrchestrator | None = None) -> FastAPI:
    """Build the API around *orchestrator*; a production one is wired when omitted."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        app.state.orchestrator = orchestrator or build_orchestrator()
        await app.state.orchestrator.initialize()
        logger.info("RAG service started")
        try:
            yield
        finally:
            await app.state.orchestrator.shutdown()
            logger.info("RAG service stopped")

    app = FastAPI(
        title="Product RAG API",
        version=__version__,
        description="Document ingestion and retrieval for product documentation.",
        lifespan=lifespan,
    )

    @app.exception_handler(DocumentNotFoundError)
    async def _document_not_found(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(UnsupportedFormatError)
    async def _unsupported_format(request: Request, exc: UnsupportedFormatError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(EmptyContentError)
    async def _empty_upload(request: Request, exc: EmptyContentError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": exc.message},
        )

    def _orchestrator(request: Request) -> ProcessingOrchestrator:
        return request.app.state.orchestrator

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    @app.get("/rag/health")
    async def rag_health(request: Request) -> JSONResponse:
        """Vector store and embedding provider health; 503 when degraded."""
        report = await _orchestrator(request).health_check()
        code = status.HTTP_200_OK if report["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=report)

    @app.get(
        "/rag/agents/{agent_id}/documents/{document_id}/rag-status",
        response_model=ProcessingJob | None,
    )
    async def document_status(agent_id: str, document_id: str, request: Request) -> ProcessingJob | None:
        return _orchestrator(request).get_processing_status(agent_id, document_id)

    @app.get("/rag/agents/{agent_id}/rag-status", response_model=list[ProcessingJob])
    async def agent_status(agent_id: str, request: Request) -> list[ProcessingJob]:
        return _orchestrator(request).get_agent_processing_statuses(agent_id)

    @app.post(
        "/rag/agents/{agent_id}/documents",
        response_model=AcceptedResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def upload_document(
        agent_id: str,
        request: Request,
        file: UploadFile = File(...),
    ) -> AcceptedResponse:
        """Store an uploaded file and start processing it in the background."""
        logger.info("Document upload received", extra={"agent_id": agent_id, "document_name": file.filename})
        data = await file.read()
        document = await _orchestrator(request).register_document(
            agent_id,
            file.filename or "upload",
            file.content_type or "",
            data,
        )
        return AcceptedResponse(
            message="Document uploaded, processing started",
            agent_id=agent_id,
            document_id=document.id,
        )

    @app.post(
        "/rag/agents/{agent_id}/documents/{document_id}/process",
        response_model=AcceptedResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def process_document(agent_id: str, document_id: str, request: Request) -> AcceptedResponse:
        """Start (or re-start) processing in the background."""
        orchestrator = _orchestrator(request)
        await orchestrator.documents.get(agent_id, document_id)
        orchestrator.submit(agent_id, document_id)
        return AcceptedResponse(
            message="Document processing started", agent_id=agent_id, document_id=document_id
        )

    @app.post(
        "/rag/agents/{agent_id}/process-documents",
        response_model=AcceptedResponse,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def process_agent_documents(agent_id: str, request: Request) -> AcceptedResponse:
        _orchestrator(request).submit_agent(agent_id)
        return AcceptedResponse(message="Batch document processing started", agent_id=agent_id)

    @app.get("/rag/agents/{agent_id}/rag-stats", response_model=AgentStats)
    async def agent_stats(agent_id: str, request: Request) -> AgentStats:
        return await _orchestrator(request).get_agent_stats(agent_id)

    @app.get(
        "/rag/agents/{agent_id}/documents/{document_id}/verify",
        response_model=ConsistencyReport,
    )
    async def verify_document(agent_id: str, document_id: str, request: Request) -> ConsistencyReport:
        return await _orchestrator(request).verify_document(agent_id, document_id)

    @app.delete("/rag/documents/{document_id}/vectors")
    async def delete_vectors(document_id: str, request: Request) -> dict[str, Any]:
        await _orchestrator(request).delete_document_vectors(document_id)
        return {"success": True, "document_id": document_id}

    @app.post("/rag/query", response_model=QueryResponse)
    async def query(body: QueryRequest, request: Request) -> QueryResponse:
        """Best-effort retrieval; failures come back as ``success: false``."""
        return await _orchestrator(request).query(
            body.query, limit=body.limit, threshold=body.threshold, agent_id=body.agent_id
        )

    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn (``product-rag-serve``)."""
    import uvicorn

    uvicorn.run("product_rag.serving.app:app", host="0.0.0.0", port=8080)


if __name__ == "__main__":
    main()
