"""Reference client-side poller for document processing.

The server never times a run out; a poller gives up on its own after a
bounded number of attempts and leaves the server job untouched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from product_rag.processing.models import DocumentStatus

if TYPE_CHECKING:
    from product_rag.processing.orchestrator import ProcessingOrchestrator

logger = logging.getLogger(__name__)


class PollResult(BaseModel):
    status: DocumentStatus | None = None
    progress: int = 0
    message: str = ""
    attempts: int = 0
    timed_out: bool = False


async def wait_for_processing(
    orchestrator: ProcessingOrchestrator,
    agent_id: str,
    document_id: str,
    *,
    interval: float = 2.0,
    max_attempts: int = 150,
) -> PollResult:
    """Poll until the document reaches a terminal state or attempts run out.

    The live job is preferred; once it has been evicted the durable
    document record is consulted instead.

    Parameters
    ----------
    orchestrator:
        Orchestrator whose job registry is polled.
    interval:
        Seconds between two polls.
    max_attempts:
        Polls before giving up with ``timed_out=True``.
    """
    last = PollResult()
    for attempt in range(1, max_attempts + 1):
        job = orchestrator.get_processing_status(agent_id, document_id)
        if job is not None:
            last = PollResult(
                status=job.status, progress=job.progress, message=job.message, attempts=attempt
            )
        else:
            document = await orchestrator.documents.get(agent_id, document_id)
            last = PollResult(
                status=document.status,
                progress=document.progress,
                message=document.error or "",
                attempts=attempt,
            )

        if last.status is not None and last.status.is_terminal:
            return last
        if attempt < max_attempts:
            await asyncio.sleep(interval)

    logger.warning(
        "Gave up waiting for document %s after %d attempts", document_id, max_attempts
    )
    return last.model_copy(update={"timed_out": True})
