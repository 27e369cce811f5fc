"""
Blob Store for Original Document Files

Raw uploads are kept verbatim under a path chosen by the orchestrator
(``public_docs/<uuid>.<ext>``). Paths are write-once: putting to an existing
path is an error, never an overwrite.

Backends:
    LocalBlobStore  -- directory on disk (DOCUMENT_STORAGE_DIR)
    S3BlobStore     -- S3-compatible bucket via boto3
"""

import logging
from pathlib import Path
from typing import Optional

from .config import IngestionConfig
from .errors import InvalidConfigurationError, StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)


def _check_path(path: str) -> str:
    """Reject empty, absolute or parent-relative object paths."""
    cleaned = (path or "").strip()
    if not cleaned or cleaned.startswith("/") or ".." in cleaned.split("/"):
        raise StorageWriteError("Invalid storage path.", details=f"path={path!r}")
    return cleaned


class BlobStore:
    """Base class for blob storage backends."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store *data* at *path*; returns the path. Raises StorageWriteError."""
        raise NotImplementedError

    def get(self, path: str) -> bytes:
        """Read the object at *path*. Raises StorageReadError."""
        raise NotImplementedError

    def delete(self, path: str) -> None:
        """Remove the object at *path* (missing objects are not an error)."""
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores blobs as files under a root directory."""

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)

    def _resolve(self, path: str) -> Path:
        return self.root / _check_path(path)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        created = False
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                created = True
                f.write(data)
        except FileExistsError as e:
            logger.error(f"Blob already exists at {path}")
            raise StorageWriteError(
                "A file already exists at the storage path.",
                details=f"path={path}",
            ) from e
        except OSError as e:
            logger.error(f"Failed to write blob {path}: {e}")
            if created:
                # Partial writes must not occupy the write-once path
                try:
                    target.unlink(missing_ok=True)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove partial blob {path}: {cleanup_error}")
            raise StorageWriteError("The file could not be stored.", details=str(e)) from e

        logger.info(f"Stored blob {path} ({len(data)} bytes, {content_type})")
        return path

    def get(self, path: str) -> bytes:
        try:
            target = self._resolve(path)
        except StorageWriteError as e:
            raise StorageReadError("Invalid storage path.", details=e.details) from e
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            logger.error(f"Blob not found: {path}")
            raise StorageReadError("The stored file was not found.", details=f"path={path}") from e
        except OSError as e:
            logger.error(f"Failed to read blob {path}: {e}")
            raise StorageReadError("The stored file could not be read.", details=str(e)) from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
            logger.info(f"Deleted blob {path}")
        except FileNotFoundError:
            logger.warning(f"Blob {path} already absent")
        except OSError as e:
            logger.error(f"Failed to delete blob {path}: {e}")
            raise StorageWriteError("The stored file could not be deleted.", details=str(e)) from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class S3BlobStore(BlobStore):
    """Stores blobs in an S3 bucket."""

    def __init__(self, bucket: str, region: str = "eu-central-1", client=None):
        """
        Initialize the S3 backend.

        Args:
            bucket: Bucket name
            region: AWS region of the bucket
            client: Optional pre-built boto3 S3 client (tests inject a mock)
        """
        self._bucket = bucket
        self._region = region
        if client is None:
            import boto3
            client = boto3.client("s3", region_name=region)
        self._s3_client = client

    @staticmethod
    def _error_code(error) -> str:
        return str(error.response.get("Error", {}).get("Code", ""))

    def put(self, path: str, data: bytes, content_type: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = _check_path(path)
        try:
            self._s3_client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as e:
            code = self._error_code(e)
            logger.error(f"S3 put failed for {key}: {code} {e}")
            if code in ("PreconditionFailed", "412"):
                raise StorageWriteError(
                    "A file already exists at the storage path.",
                    details=f"path={key}",
                ) from e
            raise StorageWriteError("The file could not be stored.", details=str(e)) from e
        except BotoCoreError as e:
            logger.error(f"S3 put failed for {key}: {e}")
            raise StorageWriteError("The file could not be stored.", details=str(e)) from e

        logger.info(f"Stored blob s3://{self._bucket}/{key} ({len(data)} bytes)")
        return key

    def get(self, path: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._s3_client.get_object(Bucket=self._bucket, Key=path)
            return response["Body"].read()
        except ClientError as e:
            logger.error(f"S3 get failed for {path}: {self._error_code(e)} {e}")
            if self._error_code(e) in ("NoSuchKey", "404"):
                raise StorageReadError(
                    "The stored file was not found.", details=f"path={path}"
                ) from e
            raise StorageReadError("The stored file could not be read.", details=str(e)) from e
        except BotoCoreError as e:
            logger.error(f"S3 get failed for {path}: {e}")
            raise StorageReadError("The stored file could not be read.", details=str(e)) from e

    def delete(self, path: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._s3_client.delete_object(Bucket=self._bucket, Key=path)
            logger.info(f"Deleted blob s3://{self._bucket}/{path}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 delete failed for {path}: {e}")
            raise StorageWriteError("The stored file could not be deleted.", details=str(e)) from e

    def exists(self, path: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._s3_client.head_object(Bucket=self._bucket, Key=path)
            return True
        except ClientError as e:
            if self._error_code(e) in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageReadError("Could not check the stored file.", details=str(e)) from e


def get_blob_store(config: Optional[IngestionConfig] = None) -> BlobStore:
    """Factory selecting the blob backend from configuration."""
    config = config or IngestionConfig.from_env()

    if config.blob_store_backend == "local":
        logger.info(f"Blob store: local directory {config.local_storage_dir}")
        return LocalBlobStore(config.local_storage_dir)
    if config.blob_store_backend == "s3":
        logger.info(f"Blob store: s3://{config.s3_bucket} ({config.s3_region})")
        return S3BlobStore(config.s3_bucket, config.s3_region)

    raise InvalidConfigurationError(
        f"Unknown blob store backend: {config.blob_store_backend!r} (use 'local' or 's3')"
    )
