"""
Ingestion — text extraction, chunking, and embedding.

This package turns raw document bytes (PDF, Word, plain text) into
embedded chunks ready to be written to the vector store.
"""
