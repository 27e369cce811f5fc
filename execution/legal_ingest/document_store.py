"""
Document Store with PostgreSQL + pgvector

Durable record of ingested public legal documents and their embedded chunks.
Documents live in ``public_legal_docs``; chunks live in ``public_legal_chunks``
with a pgvector column and are removed only by ``ON DELETE CASCADE``.

Writes are single attempts inside one transaction: a failed chunk insert rolls
back every row of the batch. Reads get one retry on a stale connection.
"""

import json
import logging
from typing import Optional
from dataclasses import dataclass

from .config import DEFAULT_EMBEDDING_DIMENSIONS
from .errors import PersistenceError
from .models import Chunk, Document, LegalArea, is_document_id

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)

DOCUMENTS_TABLE = "public_legal_docs"

DOCUMENT_COLUMNS = [
    "id", "title", "legal_area", "doc_type", "court", "year",
    "storage_path", "text_length", "visibility", "source_url", "created_at",
]


@dataclass
class DocumentStoreConfig:
    """Configuration for the document store."""
    connection_string: Optional[str] = None
    chunks_table: str = "public_legal_chunks"
    embedding_dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    use_pooling: bool = True


def _parse_vector(value) -> list[float]:
    """pgvector returns ``'[0.1,0.2,...]'`` when no adapter is registered."""
    if value is None:
        return []
    if isinstance(value, str):
        return [float(v) for v in json.loads(value)]
    return [float(v) for v in value]


class DocumentStore:
    """
    PostgreSQL store for documents and embedded chunks.

    Features:
    - Write-once document rows (no update path)
    - All-or-nothing bulk chunk insert via execute_values
    - Paginated admin listing with chunk counts
    """

    def __init__(self, config: Optional[DocumentStoreConfig] = None):
        self.config = config or DocumentStoreConfig()
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string
            or "postgresql://localhost:5432/legal_ingest"
        )

    def connect(self) -> None:
        """Establish database connection (with optional pooling)."""
        if psycopg2 is None:
            raise ImportError("psycopg2 not installed. Run: pip install psycopg2-binary")
        from psycopg2.extras import RealDictCursor

        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(
                    self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                self._conn.autocommit = False
                logger.info("Connected to PostgreSQL (single connection)")
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise PersistenceError("Could not connect to the database.", details=str(e)) from e

    def _get_connection(self):
        """Get a database connection (from pool or single connection)."""
        if self._pool:
            return self._pool.getconn()

        if self._conn is None or self._conn.closed:
            if self._conn is not None:
                logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn):
        """Release a connection back to the pool (if pooling is enabled)."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        if not self._conn and not self._pool:
            self.connect()
        return self._get_connection()

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        if conn is None:
            return
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError) as e:
            logger.debug(f"Rollback on dead connection ignored: {e}")

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a read with one retry on a stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.
        """
        for attempt in range(2):
            conn = None
            try:
                conn = self._ensure_connection()
                result = operation(conn)
                conn.commit()
                return result
            except psycopg2.pool.PoolError as e:
                logger.error(f"{label}: no pooled connection available: {e}")
                raise PersistenceError("The database is busy.", details=str(e)) from e
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    if not self._pool:
                        self._conn = None
                    continue
                logger.error(f"{label} failed: {e}")
                raise PersistenceError("The database is unavailable.", details=str(e)) from e
            except psycopg2.Error as e:
                self._safe_rollback(conn)
                logger.error(f"{label} failed: {e}")
                raise PersistenceError("Database query failed.", details=str(e)) from e
            finally:
                self._release_connection(conn)

    def _execute_once(self, operation, label="db_write"):
        """Run a write exactly once in its own transaction."""
        conn = None
        try:
            conn = self._ensure_connection()
            result = operation(conn)
            conn.commit()
            return result
        except psycopg2.pool.PoolError as e:
            logger.error(f"{label}: no pooled connection available: {e}")
            raise PersistenceError("The database is busy.", details=str(e)) from e
        except psycopg2.Error as e:
            self._safe_rollback(conn)
            logger.error(f"{label} failed, transaction rolled back: {e}")
            raise PersistenceError("Database write failed.", details=str(e)) from e
        finally:
            self._release_connection(conn)

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create the pgvector extension, tables and indexes if missing."""
        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {DOCUMENTS_TABLE} (
            id UUID PRIMARY KEY,
            title TEXT NOT NULL,
            legal_area TEXT NOT NULL,
            doc_type TEXT NOT NULL,
            court TEXT,
            year INT,
            storage_path TEXT NOT NULL,
            text_length INT NOT NULL DEFAULT 0,
            visibility VARCHAR(10) NOT NULL DEFAULT 'public',
            source_url TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        ALTER TABLE {DOCUMENTS_TABLE} ADD COLUMN IF NOT EXISTS source_url TEXT;

        CREATE TABLE IF NOT EXISTS {self.config.chunks_table} (
            id BIGSERIAL PRIMARY KEY,
            doc_id UUID NOT NULL REFERENCES {DOCUMENTS_TABLE}(id) ON DELETE CASCADE,
            chunk_index INT NOT NULL,
            chunk_text TEXT NOT NULL,
            embedding VECTOR({self.config.embedding_dimensions}),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (doc_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_public_docs_area
            ON {DOCUMENTS_TABLE}(legal_area);
        CREATE INDEX IF NOT EXISTS idx_public_docs_created
            ON {DOCUMENTS_TABLE}(created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_public_chunks_doc
            ON {self.config.chunks_table}(doc_id);
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)

        self._execute_once(_op, "initialize_schema")
        logger.info("Schema initialized successfully")

    # =========================================================================
    # Writes
    # =========================================================================

    def insert_document(self, document: Document) -> str:
        """
        Insert a document row.

        Returns:
            The document id

        Raises:
            PersistenceError: on any database failure (nothing is written)
        """
        sql = f"""
        INSERT INTO {DOCUMENTS_TABLE}
            (id, title, legal_area, doc_type, court, year,
             storage_path, text_length, visibility, source_url, created_at)
        VALUES
            (%s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """
        params = (
            document.id,
            document.title,
            document.legal_area.value,
            document.document_type.value,
            document.court,
            document.year,
            document.storage_path,
            document.text_length,
            document.visibility.value,
            document.source_url,
            document.created_at,
        )

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            return str(row["id"]) if row else document.id

        doc_id = self._execute_once(_op, "insert_document")
        logger.info(f"Recorded document {doc_id} ({document.storage_path})")
        return doc_id

    def insert_chunks(self, chunks: list[Chunk]) -> int:
        """
        Bulk insert chunks with embeddings in a single transaction.

        Args:
            chunks: Chunks with ``chunk_index`` equal to their position

        Returns:
            Number of rows inserted (always ``len(chunks)`` on success)

        Raises:
            PersistenceError: if any row fails; no row of the batch is kept
        """
        if not chunks:
            return 0

        from psycopg2.extras import execute_values

        sql = f"""
        INSERT INTO {self.config.chunks_table}
            (doc_id, chunk_index, chunk_text, embedding, created_at)
        VALUES %s
        """

        values = [
            (c.document_id, c.chunk_index, c.content, c.embedding, c.created_at)
            for c in chunks
        ]

        def _op(conn):
            with conn.cursor() as cur:
                execute_values(
                    cur,
                    sql,
                    values,
                    template="(%s::uuid, %s, %s, %s::vector, %s)",
                    page_size=1000,
                )
            return len(values)

        inserted = self._execute_once(_op, "insert_chunks")
        logger.info(f"Batch inserted {inserted} chunks for document {chunks[0].document_id}")
        return inserted

    # =========================================================================
    # Reads
    # =========================================================================

    def get_document(self, document_id: str) -> Optional[Document]:
        """Load one document, or None when it does not exist."""
        if not is_document_id(document_id):
            return None
        sql = f"SELECT {', '.join(DOCUMENT_COLUMNS)} FROM {DOCUMENTS_TABLE} WHERE id = %s::uuid"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                return cur.fetchone()

        row = self._execute_with_retry(_op, "get_document")
        return Document.from_row(dict(row)) if row else None

    def count_chunks(self, document_id: str) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {self.config.chunks_table} WHERE doc_id = %s::uuid"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                return cur.fetchone()

        row = self._execute_with_retry(_op, "count_chunks")
        return int(row["n"]) if row else 0

    def get_document_chunks(self, document_id: str) -> list[Chunk]:
        """Get all chunks for a document ordered by chunk_index."""
        sql = f"""
        SELECT doc_id, chunk_index, chunk_text, embedding, created_at
        FROM {self.config.chunks_table}
        WHERE doc_id = %s::uuid
        ORDER BY chunk_index
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                return cur.fetchall()

        rows = self._execute_with_retry(_op, "get_document_chunks")
        return [
            Chunk(
                document_id=str(row["doc_id"]),
                chunk_index=row["chunk_index"],
                content=row["chunk_text"],
                embedding=_parse_vector(row["embedding"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def list_documents(
        self,
        limit: int = 50,
        offset: int = 0,
        legal_area: Optional[LegalArea] = None,
    ) -> tuple[list[dict], int]:
        """
        List recorded documents, newest first, with their chunk counts.

        Args:
            limit: Page size
            offset: Rows to skip
            legal_area: Optional filter

        Returns:
            (documents, total) where each document is ``Document.to_dict()``
            plus ``chunk_count``
        """
        where = ""
        params: list = []
        if legal_area is not None:
            where = "WHERE d.legal_area = %s"
            params.append(legal_area.value)

        columns = ", ".join(f"d.{c}" for c in DOCUMENT_COLUMNS)
        list_sql = f"""
        SELECT {columns},
               (SELECT COUNT(*) FROM {self.config.chunks_table} c WHERE c.doc_id = d.id) AS chunk_count
        FROM {DOCUMENTS_TABLE} d
        {where}
        ORDER BY d.created_at DESC
        LIMIT %s OFFSET %s
        """
        count_sql = f"SELECT COUNT(*) AS n FROM {DOCUMENTS_TABLE} d {where}"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(list_sql, params + [limit, offset])
                rows = cur.fetchall()
                cur.execute(count_sql, params or None)
                total = cur.fetchone()
            return rows, total

        rows, total = self._execute_with_retry(_op, "list_documents")
        documents = []
        for row in rows:
            row = dict(row)
            item = Document.from_row(row).to_dict()
            item["chunk_count"] = int(row.get("chunk_count") or 0)
            documents.append(item)
        return documents, int(total["n"]) if total else 0

    def health_check(self) -> bool:
        """True when a trivial query succeeds."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                return cur.fetchone() is not None

        try:
            return self._execute_with_retry(_op, "health_check")
        except PersistenceError as e:
            logger.warning(f"Database health check failed: {e.details}")
            return False
