"""
Shared fixtures and test utilities for the ingestion pipeline tests.

Provides in-memory stores, scripted embedding clients and sample uploads so
that all tests run without a database, object storage or network access.
"""

import os
import sys
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-unit-tests-only")

ADMIN_EMAIL = "admin@hukukburosu.test"

# ---------------------------------------------------------------------------
# Sample document text
# ---------------------------------------------------------------------------
SAMPLE_DECISION = (
    "YARGITAY 4. HUKUK DAİRESİ\n"
    "Esas No: 2023/1234 Karar No: 2023/5678\n\n"
    "Davacı, davalının haksız eylemi nedeniyle uğradığı zararın tazminini "
    "talep etmiştir. Mahkemece davanın kısmen kabulüne karar verilmiştir.\n"
    "Dosyadaki yazılara, kararın dayandığı delillerle gerektirici sebeplere "
    "göre yerinde görülmeyen temyiz itirazlarının reddiyle usul ve yasaya "
    "uygun bulunan hükmün ONANMASINA oybirliğiyle karar verildi.\n"
)


@pytest.fixture
def sample_decision_text():
    return SAMPLE_DECISION


@pytest.fixture
def long_text():
    """3,000 ASCII characters: two chunks with the default window."""
    base = "Madde 1 - Bu kanunun amaci kamu duzenini korumaktir. "
    return (base * 100)[:3000]


# ---------------------------------------------------------------------------
# In-memory blob store
# ---------------------------------------------------------------------------

class InMemoryBlobStore:
    """Write-once blob store backed by a dict, with failure switches."""

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.deleted = []
        self.fail_put = False
        self.fail_delete = False

    def put(self, path, data, content_type):
        from execution.legal_ingest.errors import StorageWriteError

        self.put_calls.append((path, content_type))
        if self.fail_put:
            raise StorageWriteError("The file could not be stored.", details="simulated outage")
        if path in self.objects:
            raise StorageWriteError("A file already exists at the storage path.")
        self.objects[path] = data
        return path

    def get(self, path):
        from execution.legal_ingest.errors import StorageReadError

        if path not in self.objects:
            raise StorageReadError("The stored file was not found.", details=f"path={path}")
        return self.objects[path]

    def delete(self, path):
        from execution.legal_ingest.errors import StorageWriteError

        if self.fail_delete:
            raise StorageWriteError("The stored file could not be deleted.", details="simulated")
        self.deleted.append(path)
        self.objects.pop(path, None)

    def exists(self, path):
        return path in self.objects


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


# ---------------------------------------------------------------------------
# In-memory document store
# ---------------------------------------------------------------------------

class InMemoryDocumentStore:
    """In-memory stand-in for DocumentStore (no PostgreSQL needed)."""

    def __init__(self):
        self.documents = {}
        self.chunks = {}
        self.fail_insert_document = False
        self.fail_insert_chunks = False

    def insert_document(self, document):
        from execution.legal_ingest.errors import PersistenceError

        if self.fail_insert_document:
            raise PersistenceError("Database write failed.", details="simulated")
        self.documents[document.id] = document
        return document.id

    def insert_chunks(self, chunks):
        from execution.legal_ingest.errors import PersistenceError

        if self.fail_insert_chunks:
            raise PersistenceError("Database write failed.", details="simulated")
        for chunk in chunks:
            self.chunks.setdefault(chunk.document_id, []).append(chunk)
        return len(chunks)

    def get_document(self, document_id):
        return self.documents.get(document_id)

    def count_chunks(self, document_id):
        return len(self.chunks.get(document_id, []))

    def get_document_chunks(self, document_id):
        return sorted(self.chunks.get(document_id, []), key=lambda c: c.chunk_index)

    def list_documents(self, limit=50, offset=0, legal_area=None):
        docs = [
            d for d in self.documents.values()
            if legal_area is None or d.legal_area == legal_area
        ]
        docs.sort(key=lambda d: d.created_at, reverse=True)
        page = []
        for d in docs[offset:offset + limit]:
            item = d.to_dict()
            item["chunk_count"] = self.count_chunks(d.id)
            page.append(item)
        return page, len(docs)

    def health_check(self):
        return True

    def close(self):
        pass


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


# ---------------------------------------------------------------------------
# Scripted embedding clients
# ---------------------------------------------------------------------------

class FailingEmbeddingClient:
    """Embedding client that always raises the given pipeline error."""

    is_mock = True

    def __init__(self, error):
        self.error = error
        self.calls = []

    def embed(self, document_id, text, visibility=None):
        self.calls.append((document_id, len(text), visibility))
        raise self.error


class AllowAll:
    """Capability checker that grants everything."""

    def has_capability(self, principal, capability):
        return True


class DenyAll:
    def has_capability(self, principal, capability):
        return False


@pytest.fixture
def mock_embedding_client():
    """Deterministic mock backend with small vectors to keep tests fast."""
    from execution.legal_ingest.embeddings import EmbeddingClientConfig, MockEmbeddingClient
    return MockEmbeddingClient(EmbeddingClientConfig(dimensions=8))


@pytest.fixture
def admin_principal():
    from execution.legal_ingest.auth import Principal
    return Principal(user_id="user-1", email=ADMIN_EMAIL, name="Admin")


@pytest.fixture
def metrics():
    from execution.legal_ingest.metrics import MetricsCollector
    collector = MetricsCollector()
    collector.reset()
    return collector


@pytest.fixture
def orchestrator(blob_store, document_store, mock_embedding_client, metrics):
    """Orchestrator wired to in-memory collaborators."""
    from execution.legal_ingest.auth import AdminEmailCapabilityChecker
    from execution.legal_ingest.config import IngestionConfig
    from execution.legal_ingest.ingestion import IngestionOrchestrator

    return IngestionOrchestrator(
        blob_store=blob_store,
        document_store=document_store,
        embedding_client=mock_embedding_client,
        authorizer=AdminEmailCapabilityChecker([ADMIN_EMAIL]),
        config=IngestionConfig(admin_emails=[ADMIN_EMAIL]),
        metrics=metrics,
    )


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics_singleton():
    """Reset the MetricsCollector singleton between tests."""
    import execution.legal_ingest.metrics as metrics_mod
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
    yield
    metrics_mod.MetricsCollector._instance = None
    metrics_mod._collector = None
