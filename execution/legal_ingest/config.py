"""
Runtime configuration for the ingestion service.

Values come from environment variables (a ``.env`` file is loaded by the API
and CLI entry points via python-dotenv). Every component also accepts an
explicit config object so tests never depend on the environment.
"""

import os
from typing import Optional
from dataclasses import dataclass, field

# Fixed pipeline limits
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB
MIN_TEXT_LENGTH = 50
DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_EMBEDDING_DIMENSIONS = 1536

RAG_IMPORT_CAPABILITY = "rag:import"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class IngestionConfig:
    """Configuration for the ingestion pipeline and its collaborators."""
    # Pipeline limits
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    min_text_length: int = MIN_TEXT_LENGTH
    storage_prefix: str = "public_docs"

    # Database
    database_url: str = "postgresql://localhost:5432/legal_ingest"

    # Blob storage
    blob_store_backend: str = "local"  # "local" or "s3"
    local_storage_dir: str = "document_files"
    s3_bucket: str = "rag_public"
    s3_region: str = "eu-central-1"

    # Embeddings
    embedding_backend: str = "webhook"  # "webhook" or "mock"
    embedding_webhook_url: Optional[str] = None
    embedding_webhook_token: Optional[str] = None
    embedding_timeout_seconds: float = 120.0
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP

    # Access
    admin_emails: list[str] = field(default_factory=list)

    # HTTP surface
    enable_mock_embeddings_endpoint: bool = False
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        """Build a config from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            min_text_length=_env_int("MIN_TEXT_LENGTH", defaults.min_text_length),
            storage_prefix=os.getenv("STORAGE_PREFIX", defaults.storage_prefix).strip("/"),
            database_url=(
                os.getenv("DATABASE_URL")
                or os.getenv("POSTGRES_URL")
                or defaults.database_url
            ),
            blob_store_backend=os.getenv("BLOB_STORE_BACKEND", defaults.blob_store_backend).lower(),
            local_storage_dir=os.getenv("DOCUMENT_STORAGE_DIR", defaults.local_storage_dir),
            s3_bucket=os.getenv("S3_BUCKET", defaults.s3_bucket),
            s3_region=os.getenv("S3_REGION", defaults.s3_region),
            embedding_backend=os.getenv("EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
            embedding_webhook_url=os.getenv("N8N_EMBEDDINGS_WEBHOOK_URL") or None,
            embedding_webhook_token=os.getenv("EMBEDDING_WEBHOOK_TOKEN") or None,
            embedding_timeout_seconds=float(
                os.getenv("EMBEDDING_TIMEOUT_SECONDS", str(defaults.embedding_timeout_seconds))
            ),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", defaults.embedding_dimensions),
            admin_emails=_env_list("ADMIN_EMAIL"),
            enable_mock_embeddings_endpoint=_env_bool("ENABLE_MOCK_EMBEDDINGS_ENDPOINT"),
            cors_origins=_env_list("CORS_ORIGINS") or defaults.cors_origins,
        )
