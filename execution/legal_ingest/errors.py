"""
Error taxonomy for the ingestion pipeline.

Every failure that leaves a component is one of these classes. Each carries a
machine-readable ``code``, the HTTP status the API answers with, a safe
human-readable message and, for operator diagnosis only, a bounded
``details`` string. Low-level exceptions (parsers, HTTP, database, object
storage) are logged where they happen and chained, never returned.
"""

from typing import Optional

MAX_DETAILS_LENGTH = 500


def bounded_details(value) -> Optional[str]:
    """Render *value* as a details string no longer than MAX_DETAILS_LENGTH."""
    if value is None:
        return None
    text = str(value)
    if len(text) > MAX_DETAILS_LENGTH:
        return text[:MAX_DETAILS_LENGTH - 3] + "..."
    return text


class LegalIngestError(Exception):
    """Base class for all pipeline errors."""

    code = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        details=None,
        stage: Optional[str] = None,
        document_id: Optional[str] = None,
        compensations: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = bounded_details(details)
        self.stage = stage
        self.document_id = document_id
        self.compensations = list(compensations or [])

    @property
    def retryable(self) -> bool:
        """True when a recorded document can be resumed without re-uploading."""
        return False

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "stage": self.stage,
            "docId": self.document_id,
            "compensations": self.compensations,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(LegalIngestError):
    """Client-correctable input problem."""
    code = "validation_error"
    status_code = 400


class UnsupportedFormatError(ValidationError):
    """File extension outside the supported set."""
    code = "unsupported_format"


class AuthorizationError(LegalIngestError):
    """Principal lacks the required capability."""
    code = "forbidden"
    status_code = 403


class DocumentNotFoundError(LegalIngestError):
    code = "not_found"
    status_code = 404


class ParseFailureError(LegalIngestError):
    """A format parser could not read the file."""
    code = "parse_failure"
    status_code = 422


class ExtractionError(LegalIngestError):
    """No usable text could be obtained from the upload."""
    code = "extraction_error"
    status_code = 422


class StorageWriteError(LegalIngestError):
    code = "storage_write_error"
    status_code = 502


class StorageReadError(LegalIngestError):
    code = "storage_read_error"
    status_code = 502


class PersistenceError(LegalIngestError):
    """Document store write failed."""
    code = "persistence_error"
    status_code = 500

    @property
    def retryable(self) -> bool:
        return self.document_id is not None


class EmbeddingError(LegalIngestError):
    """Embedding stage failed; the recorded document is kept for a retry."""
    code = "embedding_error"
    status_code = 502

    def __init__(self, message: str, cause_code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.cause_code = cause_code

    @property
    def retryable(self) -> bool:
        return self.document_id is not None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause"] = self.cause_code
        return data


class ServiceUnavailableError(LegalIngestError):
    """Embedding service not configured or not reachable."""
    code = "service_unavailable"
    status_code = 503


class ServiceTimeoutError(LegalIngestError):
    """Embedding service exceeded its deadline."""
    code = "timeout"
    status_code = 504


class InvalidResponseError(LegalIngestError):
    """Embedding service answered with a payload that breaks the contract."""
    code = "invalid_response"
    status_code = 502


class InvalidConfigurationError(LegalIngestError, ValueError):
    """A component was configured with values it cannot work with."""
    code = "invalid_configuration"
    status_code = 500
