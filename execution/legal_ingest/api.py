"""
FastAPI Backend for Public Legal Document Ingestion

Exposes the file and text import pipeline, the resume path for partially ingested
documents, an admin listing and the development embeddings endpoint.

Endpoints are plain ``def`` functions: the pipeline does blocking I/O, so
FastAPI runs each request in its threadpool.

Run with: uvicorn execution.legal_ingest.api:app --host 0.0.0.0 --port 8000
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, UploadFile, File, Form, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .api_models import (
    ImportResponse, TextImportBody, ErrorDetail, ErrorResponse,
    DocumentInfo, DocumentListResponse,
    HealthResponse,
    MockEmbeddingRequest, MockEmbeddingResponse,
)
from .auth import AdminEmailCapabilityChecker, Principal, verify_session_jwt
from .chunker import ChunkConfig
from .config import IngestionConfig, RAG_IMPORT_CAPABILITY
from .errors import AuthorizationError, DocumentNotFoundError, LegalIngestError, ValidationError
from .ingestion import IngestionOrchestrator, IngestionRequest, TextImportRequest
from .metrics import get_metrics_collector
from .models import LegalArea, is_document_id

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

app = FastAPI(
    title="Legal Ingest API",
    description="Public legal document ingestion for retrieval-augmented search",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=IngestionConfig.from_env().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container - builds collaborators lazily, tests replace them
# =============================================================================

class ServiceContainer:
    """Holds the configured pipeline collaborators for the process."""

    def __init__(self):
        self._config = None
        self._store = None
        self._blob_store = None
        self._embeddings = None
        self._authorizer = None
        self._orchestrator = None

    def get_config(self) -> IngestionConfig:
        if self._config is None:
            self._config = IngestionConfig.from_env()
        return self._config

    def get_store(self):
        if self._store is None:
            from .document_store import DocumentStore, DocumentStoreConfig
            config = self.get_config()
            store = DocumentStore(DocumentStoreConfig(
                connection_string=config.database_url,
                embedding_dimensions=config.embedding_dimensions,
            ))
            store.connect()
            store.initialize_schema()
            self._store = store
        return self._store

    def get_blob_store(self):
        if self._blob_store is None:
            from .blob_store import get_blob_store
            self._blob_store = get_blob_store(self.get_config())
        return self._blob_store

    def get_embedding_client(self):
        if self._embeddings is None:
            from .embeddings import get_embedding_client
            self._embeddings = get_embedding_client(self.get_config())
        return self._embeddings

    def get_authorizer(self):
        if self._authorizer is None:
            self._authorizer = AdminEmailCapabilityChecker(self.get_config().admin_emails)
        return self._authorizer

    def get_orchestrator(self) -> IngestionOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = IngestionOrchestrator(
                blob_store=self.get_blob_store(),
                document_store=self.get_store(),
                embedding_client=self.get_embedding_client(),
                authorizer=self.get_authorizer(),
                config=self.get_config(),
            )
        return self._orchestrator


_container = ServiceContainer()


# =============================================================================
# Authentication dependencies
# =============================================================================

def get_principal(authorization: Optional[str] = Header(None)) -> Principal:
    """Resolve the bearer session JWT to a Principal."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    principal = verify_session_jwt(authorization[7:].strip())
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Only principals holding the import capability may read admin views."""
    if not _container.get_authorizer().has_capability(principal, RAG_IMPORT_CAPABILITY):
        raise AuthorizationError("Admin access required.")
    return principal


# =============================================================================
# Error handling
# =============================================================================

@app.exception_handler(LegalIngestError)
async def handle_ingest_error(request: Request, exc: LegalIngestError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    body = ErrorResponse(
        error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
    )
    return JSONResponse(status_code=500, content=body.model_dump())


# OpenAPI documentation for the structured error body
PIPELINE_ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 403, 404, 422, 500, 502, 503, 504)
}


def _document_info(item: dict) -> DocumentInfo:
    return DocumentInfo(
        id=item["id"],
        title=item["title"],
        legal_area=item["legal_area"],
        document_type=item["document_type"],
        court=item.get("court"),
        year=item.get("year"),
        storage_path=item["storage_path"],
        text_length=item.get("text_length") or 0,
        visibility=item.get("visibility") or "public",
        source_url=item.get("source_url"),
        chunk_count=item.get("chunk_count") or 0,
        created_at=item.get("created_at"),
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    try:
        db_status = "connected" if _container.get_store().health_check() else "disconnected"
    except LegalIngestError as e:
        logger.warning(f"Health check: database disconnected: {e.details}")
        db_status = "disconnected"

    return HealthResponse(status="ok", version=API_VERSION, database=db_status)


@app.post("/api/v1/rag/import/public", response_model=ImportResponse, responses=PIPELINE_ERROR_RESPONSES)
def import_public_document(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    area: Optional[str] = Form(None),
    docType: Optional[str] = Form(None),
    court: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    principal: Principal = Depends(get_principal),
):
    """Upload a public legal document and run the full ingestion pipeline."""
    config = _container.get_config()
    data = None
    if file is not None:
        # One byte past the limit is enough to reject an oversized upload
        data = file.file.read(config.max_upload_bytes + 1)
        if len(data) > config.max_upload_bytes:
            require_admin(principal)
            raise ValidationError(
                f"File is too large (maximum {config.max_upload_bytes // (1024 * 1024)} MB).",
                details=f"read more than {config.max_upload_bytes} bytes",
            )

    request = IngestionRequest(
        filename=file.filename if file is not None else None,
        data=data,
        title=title,
        legal_area=area,
        document_type=docType,
        court=court,
        year=year,
    )
    result = _container.get_orchestrator().ingest(request, principal)
    return ImportResponse(**result.to_dict())


@app.post("/api/v1/rag/import/public/text", response_model=ImportResponse, responses=PIPELINE_ERROR_RESPONSES)
def import_public_text(
    body: TextImportBody,
    principal: Principal = Depends(get_principal),
):
    """Import already-extracted document text (no file upload)."""
    request = TextImportRequest(
        title=body.title,
        raw_text=body.rawText,
        document_type=body.docType,
        legal_area=body.area,
        court=body.court,
        year=body.year,
        date=body.date,
        source_url=body.url,
    )
    result = _container.get_orchestrator().ingest_text(request, principal)
    return ImportResponse(**result.to_dict())


@app.post(
    "/api/v1/rag/documents/{document_id}/embed",
    response_model=ImportResponse,
    responses=PIPELINE_ERROR_RESPONSES,
)
def resume_document_embedding(
    document_id: str,
    principal: Principal = Depends(get_principal),
):
    """Retry embedding and chunk persistence for a recorded document."""
    result = _container.get_orchestrator().resume_embedding(document_id, principal)
    return ImportResponse(**result.to_dict())


@app.get("/api/v1/rag/documents", response_model=DocumentListResponse)
def list_documents(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    area: Optional[str] = Query(None),
    principal: Principal = Depends(require_admin),
):
    """List recorded public documents, newest first."""
    legal_area = None
    if area:
        try:
            legal_area = LegalArea(area)
        except ValueError as e:
            raise ValidationError("Unknown legal area.", details=f"area={area!r}") from e

    docs, total = _container.get_store().list_documents(
        limit=limit, offset=offset, legal_area=legal_area
    )
    return DocumentListResponse(
        documents=[_document_info(d) for d in docs],
        total=total,
        limit=limit,
        offset=offset,
    )


@app.get("/api/v1/rag/documents/{document_id}", response_model=DocumentInfo)
def get_document(
    document_id: str,
    principal: Principal = Depends(require_admin),
):
    store = _container.get_store()
    document = store.get_document(document_id) if is_document_id(document_id) else None
    if document is None:
        raise DocumentNotFoundError("Document not found.", document_id=document_id)
    item = document.to_dict()
    item["chunk_count"] = store.count_chunks(document.id)
    return _document_info(item)


@app.get("/api/v1/metrics")
def get_metrics(principal: Principal = Depends(require_admin)):
    """Ingestion metrics since process start."""
    return get_metrics_collector().get_metrics_dict()


@app.post("/api/mock/embeddings", response_model=MockEmbeddingResponse)
def mock_embeddings(body: MockEmbeddingRequest):
    """Development stand-in for the embeddings webhook."""
    config = _container.get_config()
    if not config.enable_mock_embeddings_endpoint:
        raise HTTPException(status_code=404, detail="Not Found")

    from .embeddings import EmbeddingClientConfig, MockEmbeddingClient

    client = MockEmbeddingClient(EmbeddingClientConfig(
        dimensions=config.embedding_dimensions,
        chunk_config=ChunkConfig(chunk_size=config.chunk_size, overlap=config.chunk_overlap),
    ))
    logger.info(f"[mock embeddings] doc={body.docId} text={len(body.text)} chars public={body.isPublic}")
    return client.build_payload(body.docId, body.text)
