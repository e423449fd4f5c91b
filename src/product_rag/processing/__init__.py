"""
Processing — per-document pipeline orchestration and job tracking.

The :class:`~product_rag.processing.orchestrator.ProcessingOrchestrator`
is the only component external callers talk to: it runs
extract -> chunk -> embed -> store for a document, mirrors progress into
the durable document record and answers retrieval queries.
"""
