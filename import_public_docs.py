"""
Batch import of public legal documents into the knowledge base.

Runs every supported file (PDF, DOCX, TXT) in a directory through the same
ingestion pipeline as the HTTP import endpoint:
- Blob store: local directory or S3 (BLOB_STORE_BACKEND)
- Embeddings: embeddings webhook, or the deterministic mock
- Storage: PostgreSQL + pgvector

The document title is taken from the file name.

Usage:
    python import_public_docs.py --dir ~/kanunlar/ --area ceza --doc-type kanun
    python import_public_docs.py --dir ~/kararlar/ --area general --doc-type case-law \
        --court Yargıtay --year 2023 --mock-embeddings
"""

import sys
import time
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def title_from_path(filepath: Path) -> str:
    """Readable title from a file name (``anayasa_mahkemesi_karari.pdf`` -> ``anayasa mahkemesi karari``)."""
    return filepath.stem.replace("_", " ").replace("-", " ").strip() or filepath.name


def main():
    arg_parser = argparse.ArgumentParser(description="Import public legal documents")
    arg_parser.add_argument("--dir", type=str, required=True, help="Directory containing documents")
    arg_parser.add_argument("--area", type=str, required=True, help="Legal area (e.g. ceza, criminal)")
    arg_parser.add_argument("--doc-type", type=str, required=True, help="Document type (e.g. kanun, statute)")
    arg_parser.add_argument("--court", type=str, default=None, help="Court name applied to every file")
    arg_parser.add_argument("--year", type=str, default=None, help="Year applied to every file")
    arg_parser.add_argument(
        "--admin-email",
        type=str,
        default=None,
        help="Act as this admin (default: first ADMIN_EMAIL)",
    )
    arg_parser.add_argument(
        "--mock-embeddings",
        action="store_true",
        help="Use deterministic mock embeddings instead of the webhook",
    )
    args = arg_parser.parse_args()

    input_dir = Path(args.dir)
    if not input_dir.is_dir():
        logger.error(f"Directory not found: {input_dir}")
        sys.exit(1)

    from execution.legal_ingest.auth import AdminEmailCapabilityChecker, Principal
    from execution.legal_ingest.blob_store import get_blob_store
    from execution.legal_ingest.config import IngestionConfig
    from execution.legal_ingest.document_parser import is_valid_file_type
    from execution.legal_ingest.document_store import DocumentStore, DocumentStoreConfig
    from execution.legal_ingest.embeddings import get_embedding_client
    from execution.legal_ingest.errors import LegalIngestError
    from execution.legal_ingest.ingestion import IngestionOrchestrator, IngestionRequest

    config = IngestionConfig.from_env()
    if args.mock_embeddings:
        config.embedding_backend = "mock"

    admin_email = args.admin_email or (config.admin_emails[0] if config.admin_emails else None)
    if not admin_email:
        logger.error("No admin identity: pass --admin-email or set ADMIN_EMAIL")
        sys.exit(1)
    principal = Principal(user_id="cli", email=admin_email, name="bulk importer")

    files = sorted(p for p in input_dir.iterdir() if p.is_file())
    if not files:
        logger.error(f"No files found in {input_dir}")
        sys.exit(1)
    logger.info(f"Found {len(files)} files in {input_dir}")

    store = DocumentStore(DocumentStoreConfig(
        connection_string=config.database_url,
        embedding_dimensions=config.embedding_dimensions,
        use_pooling=False,
    ))
    store.connect()
    store.initialize_schema()

    orchestrator = IngestionOrchestrator(
        blob_store=get_blob_store(config),
        document_store=store,
        embedding_client=get_embedding_client(config),
        authorizer=AdminEmailCapabilityChecker(config.admin_emails or [admin_email]),
        config=config,
    )

    logger.info("Import pipeline initialized:")
    logger.info(f"  Blob store:  {config.blob_store_backend}")
    logger.info(f"  Embeddings:  {config.embedding_backend}")
    logger.info(f"  Area / type: {args.area} / {args.doc_type}")

    start_time = time.time()
    total_chunks = 0
    success_count = 0
    fail_count = 0
    skip_count = 0
    retryable_ids = []

    for i, filepath in enumerate(files):
        if not is_valid_file_type(filepath.name):
            skip_count += 1
            logger.info(f"[{i+1}/{len(files)}] Skipping unsupported file: {filepath.name}")
            continue

        logger.info(f"[{i+1}/{len(files)}] Processing: {filepath.name}")
        request = IngestionRequest(
            filename=filepath.name,
            data=filepath.read_bytes(),
            title=title_from_path(filepath),
            legal_area=args.area,
            document_type=args.doc_type,
            court=args.court,
            year=args.year,
        )
        try:
            result = orchestrator.ingest(request, principal)
            total_chunks += result.chunks_inserted
            success_count += 1
            logger.info(f"  -> doc {result.document_id}: {result.chunks_inserted} chunks")
        except LegalIngestError as e:
            fail_count += 1
            logger.error(f"  FAILED [{e.code}] at {e.stage}: {e.message}")
            if e.retryable:
                retryable_ids.append(e.document_id)
        except Exception as e:
            fail_count += 1
            logger.exception(f"  FAILED unexpectedly: {e}")

    elapsed = time.time() - start_time
    store.close()

    # Summary
    print("\n" + "=" * 60)
    print("IMPORT COMPLETE")
    print("=" * 60)
    print(f"Files processed: {success_count}/{len(files)} ({fail_count} failed, {skip_count} skipped)")
    print(f"Total chunks:    {total_chunks}")
    print(f"Time elapsed:    {elapsed:.1f}s")
    if retryable_ids:
        print(f"Resumable docs:  {', '.join(retryable_ids)}")
    print("=" * 60)

    if fail_count:
        sys.exit(1)


if __name__ == "__main__":
    main()
