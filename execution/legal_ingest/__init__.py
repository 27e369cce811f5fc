"""
Legal Ingest - Public Legal Document Ingestion for RAG

This module provides:
- Text extraction from PDF, DOCX and plain-text uploads
- Fixed-window overlapping chunking
- Embedding through an external webhook (or a deterministic mock)
- Durable storage of blobs, documents and embedded chunks
- An orchestrator that compensates partial failures
"""

from .chunker import TextChunker, chunk_text
from .document_parser import DocumentTextExtractor, extract_text
from .embeddings import EmbeddingClient, get_embedding_client
from .blob_store import BlobStore, get_blob_store
from .document_store import DocumentStore
from .ingestion import IngestionOrchestrator, IngestionRequest, IngestionResult, TextImportRequest

__all__ = [
    "TextChunker",
    "chunk_text",
    "DocumentTextExtractor",
    "extract_text",
    "EmbeddingClient",
    "get_embedding_client",
    "BlobStore",
    "get_blob_store",
    "DocumentStore",
    "IngestionOrchestrator",
    "IngestionRequest",
    "IngestionResult",
    "TextImportRequest",
]

__version__ = "0.1.0"
