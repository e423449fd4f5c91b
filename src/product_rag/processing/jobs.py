"""Process-local job registry with TTL eviction and per-document leases.

The registry is a progress cache, not a source of truth: it is owned by
one orchestrator instance, is lost on restart, and entries in a terminal
state disappear after their TTL. The durable :class:`Document` record is
what survives.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from product_rag.config import settings
from product_rag.exceptions import JobNotFoundError, ProcessingConflictError
from product_rag.processing.models import DocumentStatus, ProcessingJob, utcnow

logger = logging.getLogger(__name__)

JobKey = tuple[str, str]


@dataclass
class _Entry:
    job: ProcessingJob
    expires_at: float | None = None


class JobRegistry:
    """Instance-owned map of ``(agent_id, document_id)`` to :class:`ProcessingJob`.

    Parameters
    ----------
    completed_ttl:
        Seconds a completed job stays visible to pollers.
    failed_ttl:
        Seconds a failed job stays visible for diagnostics.
    clock:
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        completed_ttl: float = settings.completed_job_ttl,
        failed_ttl: float = settings.failed_job_ttl,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.completed_ttl = completed_ttl
        self.failed_ttl = failed_ttl
        self._clock = clock
        self._entries: dict[JobKey, _Entry] = {}
        self._leases: set[JobKey] = set()

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    # -- job state ------------------------------------------------------------

    def start(self, agent_id: str, document_id: str, message: str = "Starting processing") -> ProcessingJob:
        job = ProcessingJob(
            agent_id=agent_id,
            document_id=document_id,
            status=DocumentStatus.PROCESSING,
            progress=0,
            message=message,
        )
        self._entries[(agent_id, document_id)] = _Entry(job)
        return job.model_copy()

    def update(
        self,
        agent_id: str,
        document_id: str,
        *,
        progress: int | None = None,
        message: str | None = None,
        status: DocumentStatus | None = None,
    ) -> ProcessingJob:
        """Update a live job; a terminal *status* schedules its eviction.

        Raises
        ------
        JobNotFoundError
            No live job for the pair.
        """
        self._evict_expired()
        entry = self._entries.get((agent_id, document_id))
        if entry is None:
            raise JobNotFoundError(agent_id, document_id)

        job = entry.job
        if progress is not None:
            job.progress = progress
        if message is not None:
            job.message = message
        if status is not None:
            job.status = status
            if status == DocumentStatus.COMPLETED:
                entry.expires_at = self._clock() + self.completed_ttl
            elif status == DocumentStatus.FAILED:
                entry.expires_at = self._clock() + self.failed_ttl
        job.updated_at = utcnow()
        return job.model_copy()

    def get(self, agent_id: str, document_id: str) -> ProcessingJob | None:
        self._evict_expired()
        entry = self._entries.get((agent_id, document_id))
        return entry.job.model_copy() if entry else None

    def list_for_agent(self, agent_id: str) -> list[ProcessingJob]:
        self._evict_expired()
        return [
            entry.job.model_copy()
            for (owner, _), entry in self._entries.items()
            if owner == agent_id
        ]

    def remove(self, agent_id: str, document_id: str) -> None:
        self._entries.pop((agent_id, document_id), None)

    # -- mutual exclusion -----------------------------------------------------

    def is_leased(self, agent_id: str, document_id: str) -> bool:
        return (agent_id, document_id) in self._leases

    @contextmanager
    def lease(self, agent_id: str, document_id: str) -> Iterator[None]:
        """Hold the processing lease for one document for the ``with`` block.

        Raises
        ------
        ProcessingConflictError
            Another run already holds the lease.
        """
        key = (agent_id, document_id)
        if key in self._leases:
            raise ProcessingConflictError(agent_id, document_id)
        self._leases.add(key)
        try:
            yield
        finally:
            self._leases.discard(key)

    # -- internals ------------------------------------------------------------

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at is not None and entry.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired processing jobs", len(expired))
