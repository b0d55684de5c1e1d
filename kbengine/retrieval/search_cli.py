# kbengine/retrieval/search_cli.py
"""
Command-line interface for searching within one document (BM25).
"""

import argparse
import json
import logging
import sys

from kbengine.config import get_settings
from kbengine.corpus.schema import SqliteStore
from kbengine.retrieval.bm25 import BM25Searcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Rank one document's chunks against a query with BM25",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m kbengine.retrieval.search_cli doc-1700000000000-a1b2c3 "refund policy"
  python -m kbengine.retrieval.search_cli doc-1700000000000-a1b2c3 "fox" --k 2 --db kb.db
        """,
    )
    parser.add_argument("doc_id", help="Document id to search within")
    parser.add_argument("query", help="Search query string")
    parser.add_argument("--db", default=settings.sqlite_path, help="Path to SQLite database")
    parser.add_argument("--k", type=int, default=settings.top_k, help="Number of results to return")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    store = SqliteStore(args.db)
    try:
        searcher = BM25Searcher(store, k1=settings.bm25_k1, b=settings.bm25_b)
        hits = searcher.search(args.doc_id, args.query, top_k=args.k)
        print(json.dumps([h.to_dict() for h in hits], ensure_ascii=False, indent=2))
        if not hits:
            logger.warning("No results found for the given query")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
