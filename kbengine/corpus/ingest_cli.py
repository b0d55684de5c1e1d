# kbengine/corpus/ingest_cli.py
"""
Command-line interface for document import.

Imports one PDF/DOCX/TXT/MD file through the background import worker and
reports progress as batches are persisted.
"""

import argparse
import logging
import os
import sys

from kbengine.config import get_settings
from kbengine.corpus.files import SUPPORTED_EXTENSIONS, ext_for
from kbengine.corpus.ingest import new_doc_id
from kbengine.corpus.schema import SqliteStore
from kbengine.worker.pipeline import DoneMessage, ImportTask, ImportWorker, ProgressMessage

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """
    Main CLI function for document import.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Import a PDF/DOCX/TXT/MD file into the knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m kbengine.corpus.ingest_cli handbook.pdf
  python -m kbengine.corpus.ingest_cli notes.txt --db kb.db --chunk-size 1200 --overlap 150
        """,
    )

    parser.add_argument("path", help="File to import")
    parser.add_argument("--db", default=settings.sqlite_path, help="SQLite database file path")
    parser.add_argument("--name", help="Document name (default: file name)")
    parser.add_argument("--chunk-size", type=int, default=None, help="Characters per chunk (200-4000)")
    parser.add_argument("--overlap", type=int, default=None, help="Character overlap between chunks")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    if not os.path.isfile(args.path):
        logger.error(f"File does not exist: {args.path}")
        return 1

    ext = ext_for(args.path)
    if ext not in SUPPORTED_EXTENSIONS:
        logger.warning(f"Unsupported extension '{ext}', importing as plain text")

    with open(args.path, "rb") as f:
        data = f.read()

    store = SqliteStore(args.db)
    worker = ImportWorker(store)
    task = ImportTask(
        doc_id=new_doc_id(),
        name=args.name or os.path.basename(args.path),
        ext=ext,
        data=data,
        chunk_size=args.chunk_size,
        overlap=args.overlap,
    )

    try:
        worker.submit(task)
        for msg in worker.messages():
            if isinstance(msg, ProgressMessage):
                print(f"\rPersisted {msg.done}/{msg.total} chunks", end="", flush=True)
            elif isinstance(msg, DoneMessage):
                print(f"\nImported {msg.meta.name} as {msg.meta.id} ({msg.meta.size} chars)")
                return 0
            else:
                print()
                logger.error(f"Import failed ({msg.kind}): {msg.message}")
                return 1
    except KeyboardInterrupt:
        logger.warning("Import interrupted by user, cancelling")
        worker.cancel()
        worker.join()
        return 1
    finally:
        store.close()
    return 1


if __name__ == "__main__":
    sys.exit(main())
