"""
product_rag — ingestion and retrieval pipeline for product documentation.

Documents are extracted, chunked, embedded and stored in a vector
collection; the processing orchestrator drives that pipeline per
document and serves similarity queries scoped to an agent.
"""

__version__ = "0.1.0"
