"""
Pydantic models for the ingestion FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ImportResponse(BaseModel):
    """Response body for a successful import or resume."""
    success: bool = True
    docId: str
    title: str
    chunksInserted: int
    textLength: int
    model: str


class TextImportBody(BaseModel):
    """Request body for importing already-extracted text."""
    title: str
    docType: str
    rawText: str
    area: Optional[str] = None
    court: Optional[str] = None
    year: Optional[int] = None
    date: Optional[str] = None
    url: Optional[str] = None


class ErrorDetail(BaseModel):
    """Structured pipeline error."""
    code: str
    message: str
    details: Optional[str] = None
    stage: Optional[str] = None
    docId: Optional[str] = None
    compensations: list[str] = []
    retryable: bool = False
    cause: Optional[str] = None


class ErrorResponse(BaseModel):
    """Response body for any failed request."""
    success: bool = False
    error: ErrorDetail


class DocumentInfo(BaseModel):
    """Information about a recorded public document."""
    id: str
    title: str
    legal_area: str
    document_type: str
    court: Optional[str] = None
    year: Optional[int] = None
    storage_path: str
    text_length: int = 0
    visibility: str = "public"
    source_url: Optional[str] = None
    chunk_count: int = 0
    created_at: Optional[str] = None


class DocumentListResponse(BaseModel):
    """Paginated document listing."""
    documents: list[DocumentInfo]
    total: int
    limit: int
    offset: int


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str


class MockEmbeddingRequest(BaseModel):
    """Request body for the development embeddings endpoint."""
    docId: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    isPublic: bool = True


class MockEmbeddingChunk(BaseModel):
    content: str
    embedding: list[float]


class MockEmbeddingResponse(BaseModel):
    """Same shape the real embeddings webhook returns."""
    docId: str
    chunks: list[MockEmbeddingChunk]
    totalChunks: int
    model: str
    note: str
