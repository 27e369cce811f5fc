"""
Ingestion Orchestrator

Runs one uploaded legal document (or already-extracted text) through the
pipeline:

    validated -> uploaded -> text_extracted -> document_recorded
              -> embedded -> chunks_persisted -> complete

Blob storage and the database share no transaction. Consistency comes from
ordering and one compensation:

- the blob is uploaded before the document row is created, so no row ever
  points at a missing file;
- if text extraction fails after the upload, the blob is deleted;
- once the document row exists nothing is rolled back. Embedding or chunk
  persistence failures return the document id so the caller can resume with
  ``resume_embedding`` instead of re-uploading.
"""

import time
import uuid
import logging
from enum import Enum
from typing import Optional, Union
from dataclasses import dataclass
from datetime import date

from .auth import CapabilityChecker, Principal
from .blob_store import BlobStore
from .config import IngestionConfig, RAG_IMPORT_CAPABILITY
from .document_parser import (
    DocumentTextExtractor,
    FileKind,
    content_type_for,
    get_file_extension,
    normalize_text,
    resolve_file_kind,
)
from .document_store import DocumentStore
from .embeddings import EmbeddingClient, EmbeddingResult
from .errors import (
    AuthorizationError,
    DocumentNotFoundError,
    EmbeddingError,
    ExtractionError,
    LegalIngestError,
    ParseFailureError,
    StorageWriteError,
    ValidationError,
)
from .metrics import MetricsCollector, get_metrics_collector
from .models import Chunk, Document, DocumentType, LegalArea, Visibility, is_document_id

logger = logging.getLogger(__name__)


class IngestionStage(str, Enum):
    """Pipeline states in strict forward order."""
    VALIDATED = "validated"
    UPLOADED = "uploaded"
    TEXT_EXTRACTED = "text_extracted"
    DOCUMENT_RECORDED = "document_recorded"
    EMBEDDED = "embedded"
    CHUNKS_PERSISTED = "chunks_persisted"
    COMPLETE = "complete"


COMPENSATION_DELETE_BLOB = "delete_blob"
COMPENSATION_DELETE_BLOB_FAILED = "delete_blob_failed"


@dataclass
class IngestionRequest:
    """An upload as received from the caller, not yet validated."""
    filename: Optional[str]
    data: Optional[bytes]
    title: Optional[str]
    legal_area: Union[str, LegalArea, None]
    document_type: Union[str, DocumentType, None]
    court: Optional[str] = None
    year: Union[int, str, None] = None
    visibility: Visibility = Visibility.PUBLIC


@dataclass
class TextImportRequest:
    """Already-extracted document text submitted without a file."""
    title: Optional[str]
    raw_text: Optional[str]
    document_type: Union[str, DocumentType, None]
    legal_area: Union[str, LegalArea, None] = LegalArea.GENERAL
    court: Optional[str] = None
    year: Union[int, str, None] = None
    date: Optional[str] = None  # ISO date; supplies the year when year is absent
    source_url: Optional[str] = None
    visibility: Visibility = Visibility.PUBLIC


@dataclass
class ValidatedUpload:
    """Output of the validation stage."""
    filename: str
    data: bytes
    kind: FileKind
    extension: str
    title: str
    legal_area: LegalArea
    document_type: DocumentType
    court: Optional[str]
    year: Optional[int]
    visibility: Visibility
    source_url: Optional[str] = None


TEXT_IMPORT_FILENAME = "text_import.txt"


@dataclass
class IngestionResult:
    """Outcome of a completed ingestion."""
    document_id: str
    title: str
    chunks_inserted: int
    text_length: int
    model: str
    storage_path: str = ""
    is_mock: bool = False
    stage: IngestionStage = IngestionStage.COMPLETE

    def to_dict(self) -> dict:
        return {
            "success": True,
            "docId": self.document_id,
            "title": self.title,
            "chunksInserted": self.chunks_inserted,
            "textLength": self.text_length,
            "model": self.model,
        }


def _fail(
    error: LegalIngestError,
    stage: Optional[IngestionStage],
    document_id: Optional[str] = None,
    compensations: Optional[list[str]] = None,
) -> LegalIngestError:
    """Attach pipeline context to an error before it leaves the orchestrator."""
    error.stage = stage.value if stage else None
    if document_id is not None:
        error.document_id = document_id
    if compensations:
        error.compensations = list(compensations)
    return error


class IngestionOrchestrator:
    """
    Drives the ingestion state machine for one document at a time.

    Collaborators are injected so tests can substitute in-memory fakes and the
    API, CLI and resume path share one implementation.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        document_store: DocumentStore,
        embedding_client: EmbeddingClient,
        authorizer: CapabilityChecker,
        config: Optional[IngestionConfig] = None,
        extractor: Optional[DocumentTextExtractor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.blob_store = blob_store
        self.document_store = document_store
        self.embedding_client = embedding_client
        self.authorizer = authorizer
        self.config = config or IngestionConfig()
        self.extractor = extractor or DocumentTextExtractor()
        self.metrics = metrics or get_metrics_collector()

    # =========================================================================
    # Public operations
    # =========================================================================

    def ingest(self, request: IngestionRequest, principal: Principal) -> IngestionResult:
        """
        Run the full pipeline for one upload.

        Raises:
            LegalIngestError subclass carrying stage, compensations and,
            once the document is recorded, its id.
        """
        with self.metrics.track_ingestion(request.filename or "") as tracker:
            self._authorize(principal)

            upload = self.validate(request)
            stage = IngestionStage.VALIDATED
            tracker.set_stage(stage.value)

            storage_path = self._upload(upload)
            stage = IngestionStage.UPLOADED
            tracker.set_stage(stage.value)

            text = self._extract_with_compensation(upload, storage_path)
            tracker.set_stage(IngestionStage.TEXT_EXTRACTED.value)

            document = self._record_document(upload, storage_path, text, tracker)
            result = self._embed_and_persist(document, text, tracker)
            tracker.set_result(result.document_id, result.chunks_inserted, result.text_length)
            return result

    def ingest_text(self, request: TextImportRequest, principal: Principal) -> IngestionResult:
        """
        Import already-extracted text without a file.

        The text is stored as a UTF-8 ``.txt`` blob so the recorded document
        has a source file and can be resumed like any upload. There is no
        extraction stage, so nothing is ever compensated.
        """
        with self.metrics.track_ingestion(request.title or "") as tracker:
            self._authorize(principal)

            upload, text = self.validate_text(request)
            tracker.set_stage(IngestionStage.VALIDATED.value)

            storage_path = self._upload(upload)
            tracker.set_stage(IngestionStage.TEXT_EXTRACTED.value)

            document = self._record_document(upload, storage_path, text, tracker)
            result = self._embed_and_persist(document, text, tracker)
            tracker.set_result(result.document_id, result.chunks_inserted, result.text_length)
            return result

    def resume_embedding(self, document_id: str, principal: Principal) -> IngestionResult:
        """
        Finish a document whose embedding or chunk persistence failed.

        The stored blob is re-read and re-extracted; the blob is never deleted
        on this path because it belongs to a recorded document.
        """
        with self.metrics.track_ingestion(document_id, resumed=True) as tracker:
            self._authorize(principal)

            document = None
            if is_document_id(document_id):
                document = self.document_store.get_document(document_id)
            if document is None:
                raise DocumentNotFoundError(
                    "Document not found.", details=f"id={document_id}", document_id=document_id
                )
            stage = IngestionStage.DOCUMENT_RECORDED
            tracker.set_stage(stage.value)

            existing = self.document_store.count_chunks(document.id)
            if existing:
                raise _fail(
                    ValidationError(
                        "Document already has chunks; nothing to resume.",
                        details=f"chunks={existing}",
                    ),
                    stage,
                    document.id,
                )

            try:
                data = self.blob_store.get(document.storage_path)
            except LegalIngestError as e:
                raise _fail(e, stage, document.id)

            try:
                text = self.extractor.extract(data, document.storage_path)
            except ParseFailureError as e:
                raise _fail(
                    ExtractionError(e.message, details=e.details), stage, document.id
                ) from e
            if len(text.strip()) < self.config.min_text_length:
                raise _fail(
                    ExtractionError(
                        "Not enough text could be extracted from the document.",
                        details=f"extracted {len(text.strip())} chars",
                    ),
                    stage,
                    document.id,
                )

            logger.info(f"[resume] doc={document.id} re-extracted {len(text)} chars")
            result = self._embed_and_persist(document, text, tracker)
            tracker.set_result(result.document_id, result.chunks_inserted, result.text_length)
            return result

    # =========================================================================
    # Stages
    # =========================================================================

    def _authorize(self, principal: Principal) -> None:
        if not self.authorizer.has_capability(principal, RAG_IMPORT_CAPABILITY):
            raise AuthorizationError("You are not allowed to import public documents.")

    def validate(self, request: IngestionRequest) -> ValidatedUpload:
        """Check every input field; no side effects."""
        if not request.filename or request.data is None:
            raise ValidationError("A file is required.")

        kind = resolve_file_kind(request.filename)

        size = len(request.data)
        if size == 0:
            raise ValidationError("The uploaded file is empty.")
        if size > self.config.max_upload_bytes:
            raise ValidationError(
                f"File is too large (maximum {self.config.max_upload_bytes // (1024 * 1024)} MB).",
                details=f"size={size}",
            )

        title = (request.title or "").strip()
        if not title:
            raise ValidationError("A title is required.")

        legal_area = self._parse_choice(LegalArea, request.legal_area, "legal area")
        document_type = self._parse_choice(DocumentType, request.document_type, "document type")
        year = self._parse_year(request.year)
        court = (request.court or "").strip() or None

        return ValidatedUpload(
            filename=request.filename,
            data=request.data,
            kind=kind,
            extension=get_file_extension(request.filename),
            title=title,
            legal_area=legal_area,
            document_type=document_type,
            court=court,
            year=year,
            visibility=request.visibility,
        )

    def validate_text(self, request: TextImportRequest) -> tuple[ValidatedUpload, str]:
        """Check a text import; returns the blob to store and the normalized text."""
        text = normalize_text(request.raw_text or "").strip()
        if not text:
            raise ValidationError("Document text is required.")
        if len(text) < self.config.min_text_length:
            raise ValidationError(
                "Document text is too short.",
                details=f"{len(text)} chars, minimum {self.config.min_text_length}",
            )
        data = text.encode("utf-8")
        if len(data) > self.config.max_upload_bytes:
            raise ValidationError(
                f"Document text is too large (maximum {self.config.max_upload_bytes // (1024 * 1024)} MB).",
                details=f"size={len(data)}",
            )

        title = (request.title or "").strip()
        if not title:
            raise ValidationError("A title is required.")

        legal_area = self._parse_choice(LegalArea, request.legal_area or LegalArea.GENERAL, "legal area")
        document_type = self._parse_choice(DocumentType, request.document_type, "document type")
        year = self._parse_year(request.year)
        if year is None:
            year = self._year_from_date(request.date)

        upload = ValidatedUpload(
            filename=TEXT_IMPORT_FILENAME,
            data=data,
            kind=FileKind.TEXT,
            extension=get_file_extension(TEXT_IMPORT_FILENAME),
            title=title,
            legal_area=legal_area,
            document_type=document_type,
            court=(request.court or "").strip() or None,
            year=year,
            visibility=request.visibility,
            source_url=(request.source_url or "").strip() or None,
        )
        return upload, text

    @staticmethod
    def _parse_choice(enum_cls, value, label: str):
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"A {label} is required.")
        try:
            return enum_cls(value)
        except ValueError as e:
            raise ValidationError(
                f"Unknown {label}.",
                details=f"{value!r} not in {enum_cls.choices()}",
            ) from e

    @staticmethod
    def _parse_year(value) -> Optional[int]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, bool):
            raise ValidationError("Year must be an integer.", details=f"year={value!r}")
        try:
            year = int(str(value).strip())
        except ValueError as e:
            raise ValidationError("Year must be an integer.", details=f"year={value!r}") from e
        if not 1000 <= year <= 9999:
            raise ValidationError("Year is out of range.", details=f"year={year}")
        return year

    @classmethod
    def _year_from_date(cls, value: Optional[str]) -> Optional[int]:
        if value is None or not value.strip():
            return None
        try:
            parsed = date.fromisoformat(value.strip()[:10])
        except ValueError as e:
            raise ValidationError("Date must be YYYY-MM-DD.", details=f"date={value!r}") from e
        return cls._parse_year(parsed.year)

    def _upload(self, upload: ValidatedUpload) -> str:
        prefix = self.config.storage_prefix.strip("/")
        path = f"{prefix}/{uuid.uuid4()}.{upload.extension}"
        try:
            stored = self.blob_store.put(path, upload.data, content_type_for(upload.filename))
        except LegalIngestError as e:
            logger.error(f"[{IngestionStage.VALIDATED.value}] Upload to {path} failed: {e.message}")
            raise _fail(e, IngestionStage.VALIDATED)
        logger.info(f"[{IngestionStage.UPLOADED.value}] {upload.filename} -> {stored} ({len(upload.data)} bytes)")
        return stored or path

    def _extract_with_compensation(self, upload: ValidatedUpload, storage_path: str) -> str:
        """Extract text; on failure delete the blob that was just uploaded."""
        stage = IngestionStage.UPLOADED
        try:
            text = self.extractor.extract(upload.data, upload.kind)
        except ParseFailureError as e:
            compensations = self._compensate_blob(storage_path)
            raise _fail(
                ExtractionError(e.message, details=e.details), stage, compensations=compensations
            ) from e

        trimmed = len(text.strip())
        if trimmed < self.config.min_text_length:
            compensations = self._compensate_blob(storage_path)
            raise _fail(
                ExtractionError(
                    "Not enough text could be extracted from the document.",
                    details=f"extracted {trimmed} chars, minimum {self.config.min_text_length}",
                ),
                stage,
                compensations=compensations,
            )

        logger.info(f"[{IngestionStage.TEXT_EXTRACTED.value}] {len(text)} chars from {upload.filename}")
        return text

    def _compensate_blob(self, storage_path: str) -> list[str]:
        try:
            self.blob_store.delete(storage_path)
        except StorageWriteError as e:
            logger.error(f"Compensation failed, orphaned blob at {storage_path}: {e.details}")
            return [COMPENSATION_DELETE_BLOB_FAILED]
        logger.info(f"Compensation: deleted blob {storage_path}")
        return [COMPENSATION_DELETE_BLOB]

    def _record_document(self, upload: ValidatedUpload, storage_path: str, text: str, tracker) -> Document:
        stage = IngestionStage.TEXT_EXTRACTED
        document = Document(
            title=upload.title,
            legal_area=upload.legal_area,
            document_type=upload.document_type,
            court=upload.court,
            year=upload.year,
            storage_path=storage_path,
            text_length=len(text),
            visibility=upload.visibility,
            source_url=upload.source_url,
        )
        try:
            document.id = self.document_store.insert_document(document)
        except LegalIngestError as e:
            logger.error(f"[{stage.value}] Document record failed, blob kept at {storage_path}")
            raise _fail(e, stage)
        stage = IngestionStage.DOCUMENT_RECORDED
        tracker.set_stage(stage.value)
        logger.info(f"[{stage.value}] doc={document.id} path={storage_path}")
        return document

    def _embed_and_persist(self, document: Document, text: str, tracker) -> IngestionResult:
        """Stages embedded -> chunks_persisted -> complete for a recorded document."""
        stage = IngestionStage.DOCUMENT_RECORDED
        started = time.time()
        try:
            embedding: EmbeddingResult = self.embedding_client.embed(
                document.id, text, document.visibility
            )
        except LegalIngestError as e:
            logger.error(
                f"[{stage.value}] Embedding failed for doc {document.id}: {e.code} {e.message}"
            )
            raise _fail(
                EmbeddingError(
                    "Embedding failed; the document was recorded and can be retried.",
                    cause_code=e.code,
                    details=e.details or e.message,
                ),
                stage,
                document.id,
            ) from e
        stage = IngestionStage.EMBEDDED
        tracker.set_stage(stage.value)
        logger.info(
            f"[{stage.value}] doc={document.id} {len(embedding.chunks)} chunks "
            f"model={embedding.model} in {(time.time() - started) * 1000:.0f}ms"
        )

        chunks = [
            Chunk(
                document_id=document.id,
                chunk_index=i,
                content=c.content,
                embedding=c.embedding,
            )
            for i, c in enumerate(embedding.chunks)
        ]
        try:
            inserted = self.document_store.insert_chunks(chunks)
        except LegalIngestError as e:
            logger.error(f"[{stage.value}] Chunk insert failed for doc {document.id}: {e.message}")
            raise _fail(e, stage, document.id)
        stage = IngestionStage.CHUNKS_PERSISTED
        tracker.set_stage(stage.value)

        tracker.set_stage(IngestionStage.COMPLETE.value)
        logger.info(f"[{IngestionStage.COMPLETE.value}] doc={document.id} chunks={inserted}")
        return IngestionResult(
            document_id=document.id,
            title=document.title,
            chunks_inserted=inserted,
            text_length=document.text_length if document.text_length else len(text),
            model=embedding.model,
            storage_path=document.storage_path,
            is_mock=embedding.is_mock,
        )
