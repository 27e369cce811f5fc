"""
Tests for execution/legal_ingest/document_store.py

Covers: schema DDL, single-attempt transactional writes, all-or-nothing chunk
        insert, read retry on stale connections, pool exhaustion and row mapping.

psycopg2 connections are replaced with MagicMock objects; no database needed.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest


DOC_ID = "6f1c1f5e-2d1b-4c8e-9a57-0d6c1f2b9a11"


def _row(**overrides):
    row = {
        "id": DOC_ID,
        "title": "Test Kararı",
        "legal_area": "genel",
        "doc_type": "içtihat",
        "court": "Yargıtay",
        "year": 2023,
        "storage_path": "public_docs/abc.txt",
        "text_length": 3000,
        "visibility": "public",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.closed = 0
    return connection


@pytest.fixture
def cursor(conn):
    cur = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    return cur


@pytest.fixture
def store(conn):
    from execution.legal_ingest.document_store import DocumentStore, DocumentStoreConfig

    s = DocumentStore(DocumentStoreConfig(use_pooling=False))
    s._conn = conn
    s.connect = MagicMock(side_effect=lambda: setattr(s, "_conn", conn))
    return s


def _document():
    from execution.legal_ingest.models import Document, DocumentType, LegalArea

    return Document(
        id=DOC_ID,
        title="Test Kararı",
        legal_area=LegalArea.GENERAL,
        document_type=DocumentType.CASE_LAW,
        storage_path="public_docs/abc.txt",
        text_length=3000,
    )


def _chunks(n=2):
    from execution.legal_ingest.models import Chunk

    return [Chunk(document_id=DOC_ID, chunk_index=i, content=f"parça {i}", embedding=[0.1, 0.2])
            for i in range(n)]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TestSchema:

    def test_schema_ddl(self, store, conn, cursor):
        store.initialize_schema()

        sql = cursor.execute.call_args[0][0]
        assert "CREATE EXTENSION IF NOT EXISTS vector" in sql
        assert "public_legal_docs" in sql
        assert "VECTOR(1536)" in sql
        assert "ON DELETE CASCADE" in sql
        assert "UNIQUE (doc_id, chunk_index)" in sql
        conn.commit.assert_called_once()

    def test_custom_dimensions(self, conn, cursor):
        from execution.legal_ingest.document_store import DocumentStore, DocumentStoreConfig

        s = DocumentStore(DocumentStoreConfig(use_pooling=False, embedding_dimensions=8))
        s._conn = conn
        s.initialize_schema()
        assert "VECTOR(8)" in cursor.execute.call_args[0][0]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestInsertDocument:

    def test_returns_id_and_commits(self, store, conn, cursor):
        cursor.fetchone.return_value = {"id": DOC_ID}

        assert store.insert_document(_document()) == DOC_ID

        params = cursor.execute.call_args[0][1]
        assert params[0] == DOC_ID
        assert params[2] == "genel"
        assert params[3] == "içtihat"
        conn.commit.assert_called_once()

    def test_failure_is_single_attempt(self, store, conn, cursor):
        from execution.legal_ingest.errors import PersistenceError

        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(PersistenceError):
            store.insert_document(_document())
        assert cursor.execute.call_count == 1
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()


class TestInsertChunks:

    def test_bulk_insert(self, store, conn, cursor):
        with patch("psycopg2.extras.execute_values") as mock_ev:
            assert store.insert_chunks(_chunks(3)) == 3

        args, kwargs = mock_ev.call_args
        values = args[2]
        assert [v[1] for v in values] == [0, 1, 2]
        assert values[0][0] == DOC_ID
        assert "::vector" in kwargs["template"]
        conn.commit.assert_called_once()

    def test_failure_rolls_back_whole_batch(self, store, conn, cursor):
        from execution.legal_ingest.errors import PersistenceError

        with patch("psycopg2.extras.execute_values",
                   side_effect=psycopg2.DataError("expected 1536 dimensions, not 2")):
            with pytest.raises(PersistenceError) as exc_info:
                store.insert_chunks(_chunks(2))

        assert "1536" in exc_info.value.details
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_empty_list_is_noop(self, store, conn):
        assert store.insert_chunks([]) == 0
        conn.cursor.assert_not_called()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:

    def test_get_document(self, store, cursor):
        from execution.legal_ingest.models import DocumentType, LegalArea

        cursor.fetchone.return_value = _row()
        doc = store.get_document(DOC_ID)

        assert doc.id == DOC_ID
        assert doc.legal_area is LegalArea.GENERAL
        assert doc.document_type is DocumentType.CASE_LAW
        assert doc.year == 2023

    def test_get_document_missing(self, store, cursor):
        cursor.fetchone.return_value = None
        assert store.get_document(DOC_ID) is None

    def test_read_retries_once_on_stale_connection(self, store, cursor):
        cursor.execute.side_effect = [psycopg2.OperationalError("stale"), None]
        cursor.fetchone.return_value = {"n": 4}

        assert store.count_chunks(DOC_ID) == 4
        assert cursor.execute.call_count == 2

    def test_get_document_chunks_parses_vectors(self, store, cursor):
        cursor.fetchall.return_value = [
            {"doc_id": DOC_ID, "chunk_index": 0, "chunk_text": "a",
             "embedding": "[0.5,-0.25]", "created_at": datetime.now(timezone.utc)},
        ]
        chunks = store.get_document_chunks(DOC_ID)

        assert chunks[0].embedding == [0.5, -0.25]
        assert "ORDER BY chunk_index" in cursor.execute.call_args[0][0]

    def test_list_documents(self, store, cursor):
        from execution.legal_ingest.models import LegalArea

        cursor.fetchall.return_value = [_row(chunk_count=2)]
        cursor.fetchone.return_value = {"n": 11}

        docs, total = store.list_documents(limit=1, offset=10, legal_area=LegalArea.GENERAL)

        assert total == 11
        assert docs[0]["id"] == DOC_ID
        assert docs[0]["chunk_count"] == 2
        list_params = cursor.execute.call_args_list[0][0][1]
        assert list_params == ["genel", 1, 10]

    def test_get_document_non_uuid_id_is_missing(self, store, cursor):
        assert store.get_document("abc") is None
        cursor.execute.assert_not_called()

    def test_source_url_round_trip(self, store, cursor):
        cursor.fetchone.return_value = _row(source_url="https://karararama.yargitay.gov.tr/1")
        doc = store.get_document(DOC_ID)
        assert doc.source_url == "https://karararama.yargitay.gov.tr/1"

    def test_health_check_false_when_database_down(self, store, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("down")
        assert store.health_check() is False


# ---------------------------------------------------------------------------
# Connection pool exhaustion
# ---------------------------------------------------------------------------

class TestPoolExhaustion:

    @pytest.fixture
    def pooled_store(self):
        import psycopg2.pool
        from execution.legal_ingest.document_store import DocumentStore, DocumentStoreConfig

        s = DocumentStore(DocumentStoreConfig())
        s._pool = MagicMock()
        s._pool.getconn.side_effect = psycopg2.pool.PoolError("connection pool exhausted")
        return s

    def test_write_maps_to_persistence_error(self, pooled_store):
        from execution.legal_ingest.errors import PersistenceError

        with pytest.raises(PersistenceError) as exc_info:
            pooled_store.insert_document(_document())
        assert "exhausted" in exc_info.value.details
        pooled_store._pool.putconn.assert_not_called()

    def test_read_maps_to_persistence_error(self, pooled_store):
        from execution.legal_ingest.errors import PersistenceError

        with pytest.raises(PersistenceError):
            pooled_store.count_chunks(DOC_ID)
        assert pooled_store._pool.getconn.call_count == 1

    def test_health_check_reports_down(self, pooled_store):
        assert pooled_store.health_check() is False
