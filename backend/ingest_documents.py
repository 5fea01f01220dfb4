"""
Document ingestion script for the Lodestar retrieval service.

Loads every supported file from a directory, segments the documents in a
thread pool, embeds the segments in batches and replaces each document's
segments in Supabase.

Usage:
    python ingest_documents.py --docs ../docs [--clear] [--workers 4]
"""
import argparse
import asyncio
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from config import LOG_LEVEL, LOG_FORMAT, EMBEDDING_BATCH_SIZE
from logger import setup_logging
from models.chunk import Segment
from models.document import Document
from services.cache_service import CacheService
from services.chunking_engine import ChunkingEngine
from services.document_loader import DocumentLoader
from services.embedding_model import EmbeddingModel
from services.errors import RetrievalError
from services.retrieval_engine import RetrievalEngine
from services.vector_store import SegmentStore, SupabaseSegmentStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest documents into the segment store")
    parser.add_argument(
        "--docs",
        default=str(Path(__file__).parent.parent / "docs"),
        help="Directory containing .pdf, .txt and .md files"
    )
    parser.add_argument("--clear", action="store_true", help="Delete all stored segments first")
    parser.add_argument("--workers", type=int, default=4, help="Threads used for segmentation")
    parser.add_argument("--batch-size", type=int, default=EMBEDDING_BATCH_SIZE, help="Segments per embedding request")
    return parser.parse_args(argv)


def clear_existing_data(store: SegmentStore) -> None:
    logger.info("Clearing existing data from the segment store...")
    count_before = store.count()
    logger.info(f"Found {count_before} existing segments")

    if count_before > 0:
        store.clear()
        logger.info(f"Cleared {count_before - store.count()} segments")
    else:
        logger.info("No existing data to clear")


def segment_documents(
    chunker: ChunkingEngine,
    documents: List[Document],
    workers: int
) -> List[List[Segment]]:
    """Segment documents concurrently. Results are in input order."""
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        return list(executor.map(
            lambda document: chunker.chunk_document(document.content, document.document_id),
            documents
        ))


async def ingest(
    engine: RetrievalEngine,
    documents: List[Document],
    segment_sets: List[List[Segment]]
) -> int:
    """
    Embed and store every document's segments.

    Returns:
        Number of documents stored
    """
    stored = 0
    for document, segments in zip(documents, segment_sets):
        if not segments:
            logger.warning(f"Skipping {document.name}: produced no segments")
            continue

        try:
            await engine.store_segments(document, segments)
        except RetrievalError as e:
            logger.error(f"Failed to ingest {document.name}: [{e.error.code}] {e.error.message}")
            continue

        stored += 1
        logger.info(f"  ✓ {document.name}: {len(segments)} segments")

    return stored


def main(argv: Optional[List[str]] = None) -> int:
    """Main ingestion process."""
    args = parse_args(argv)
    setup_logging(LOG_LEVEL, LOG_FORMAT)

    try:
        logger.info("Starting document ingestion")

        cache = CacheService()
        embedding_model = EmbeddingModel(cache=cache)
        store = SupabaseSegmentStore()
        chunker = ChunkingEngine()
        engine = RetrievalEngine(
            store,
            embedding_model,
            cache=cache,
            chunker=chunker,
            embed_batch_size=args.batch_size
        )

        if args.clear:
            clear_existing_data(store)

        documents = DocumentLoader(docs_directory=args.docs).load_documents()
        if not documents:
            logger.error(f"No documents found in {args.docs}")
            return 1

        segment_sets = segment_documents(chunker, documents, args.workers)
        logger.info(f"Created {sum(len(s) for s in segment_sets)} segments from {len(documents)} documents")

        asyncio.run(embedding_model.warmup())
        stored = asyncio.run(ingest(engine, documents, segment_sets))

        logger.info(f"Ingestion complete: {stored}/{len(documents)} documents, {store.count()} segments stored")
        return 0 if stored else 1

    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        return 1
    except (RetrievalError, ValueError) as e:
        logger.error(f"Ingestion failed: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
