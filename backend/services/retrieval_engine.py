"""Retrieval engine orchestrating search, deduplication, reranking and assembly."""
import asyncio
import logging
import re
import time
from typing import Dict, List, Optional

from config import EMBEDDING_BATCH_SIZE, QUERY_EMBEDDING_MAX_RETRIES, RETRIEVAL_CACHE_TTL
from models.chunk import Segment, StoredSegment
from models.document import Document
from models.retrieval import RetrievalCandidate, RetrievalConfig, RetrievalResult
from services.cache_service import CacheService
from services.chunking_engine import ChunkingEngine
from services.confidence import apply_fallback, estimate_confidence
from services.context_assembler import ContextAssembler
from services.deduplicator import deduplicate
from services.embedding_model import EmbeddingModel
from services.errors import EmbeddingError, InvalidInputError, RetrievalUnavailableError, StoreError
from services.reranker import Reranker, extract_query_terms
from services.similarity import score_segments
from services.vector_store import SegmentStore

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "retrieval"

# Issue codes reported alongside a result
ISSUE_NO_CANDIDATES = "no_candidates"
ISSUE_LOW_CONFIDENCE_FALLBACK = "low_confidence_fallback"
ISSUE_RERANK_FILTERED_ALL = "rerank_filtered_all"


def normalize_query(query: str) -> str:
    return re.sub(r'\s+', ' ', query.strip().lower())


def build_query_variants(query: str) -> List[str]:
    """
    Query variants searched concurrently: the query itself plus a
    keyword-only rewrite when that differs from the normalized query.
    """
    variants = [query.strip()]
    keywords = " ".join(extract_query_terms(query))
    if keywords and keywords != normalize_query(query):
        variants.append(keywords)
    return variants


def merge_candidates(groups: List[List[RetrievalCandidate]]) -> List[RetrievalCandidate]:
    """Merge candidate lists by segment id, keeping the higher score. Sorted by score."""
    best: Dict[str, RetrievalCandidate] = {}
    for group in groups:
        for candidate in group:
            existing = best.get(candidate.segment_id)
            if existing is None or candidate.score > existing.score:
                best[candidate.segment_id] = candidate
    return sorted(best.values(), key=lambda candidate: candidate.score, reverse=True)


class RetrievalEngine:
    """Turns a query into an assembled context with a confidence estimate."""

    def __init__(
        self,
        store: SegmentStore,
        embedding_model: EmbeddingModel,
        reranker: Optional[Reranker] = None,
        cache: Optional[CacheService] = None,
        assembler: Optional[ContextAssembler] = None,
        chunker: Optional[ChunkingEngine] = None,
        embed_batch_size: int = EMBEDDING_BATCH_SIZE,
        cache_ttl: float = RETRIEVAL_CACHE_TTL,
        query_max_retries: int = QUERY_EMBEDDING_MAX_RETRIES
    ):
        """
        Initialize the retrieval engine.

        Args:
            store: Segment persistence
            embedding_model: Query and segment embedder
            reranker: Reranker; defaults to the full tier chain sharing ``cache``
            cache: Cache for retrieval responses (namespace "retrieval")
            assembler: Context assembler
            chunker: Segmenter used by ingest_document
            embed_batch_size: Segments embedded per provider request
            cache_ttl: Seconds a cached retrieval response stays valid
            query_max_retries: Embedding attempts allowed for a query
        """
        self.store = store
        self.embedding_model = embedding_model
        self.cache = cache if cache is not None else CacheService()
        self.reranker = reranker or Reranker(cache=self.cache)
        self.assembler = assembler or ContextAssembler()
        self.chunker = chunker or ChunkingEngine()
        self.embed_batch_size = embed_batch_size
        self.cache_ttl = cache_ttl
        self.query_max_retries = query_max_retries
        logger.info("Initialized RetrievalEngine")

    async def retrieve(self, query: str, config: Optional[RetrievalConfig] = None) -> RetrievalResult:
        """
        Retrieve an assembled context for a query.

        Stages: embed query variants, score every stored segment per variant
        concurrently, merge, apply the similarity threshold (or the
        low-confidence fallback), deduplicate, rerank, assemble and estimate
        confidence. A fallback set skips deduplication and reranking and is
        returned whole in descending similarity.

        Args:
            query: User question
            config: Per-request knobs; defaults to RetrievalConfig()

        Returns:
            RetrievalResult

        Raises:
            InvalidInputError: If the query is empty
            RetrievalUnavailableError: If the query cannot be embedded, the
                store cannot be read, or every rerank tier failed
        """
        if not query or not query.strip():
            raise InvalidInputError("Query cannot be empty")

        config = config or RetrievalConfig()
        cache_id = f"{normalize_query(query)}|{config.fingerprint()}"
        cached = self.cache.get(CACHE_NAMESPACE, cache_id)
        if cached is not None:
            logger.debug("Retrieval cache hit")
            return cached

        start_time = time.time()
        timings: Dict[str, int] = {}

        variants = build_query_variants(query)
        try:
            embeddings = await self.embedding_model.embed_batch(variants, max_retries=self.query_max_retries)
        except EmbeddingError as e:
            logger.error(f"Query could not be embedded: {e.error.message}")
            raise RetrievalUnavailableError(
                "Query could not be embedded",
                details={"cause": e.error.code}
            ) from e
        timings["embed_ms"] = self._elapsed_ms(start_time)

        stage_start = time.time()
        try:
            stored = await asyncio.to_thread(self.store.fetch_all)
        except StoreError as e:
            raise RetrievalUnavailableError("Segment store unavailable", details={"cause": e.error.code}) from e

        groups = await asyncio.gather(*(
            self._score_variant(embedding, stored) for embedding in embeddings
        ))
        all_candidates = merge_candidates(list(groups))[:config.search_limit]
        timings["search_ms"] = self._elapsed_ms(stage_start)

        issues: List[str] = []
        filtered = [candidate for candidate in all_candidates if candidate.score >= config.min_confidence]
        candidates = apply_fallback(filtered, all_candidates)
        low_confidence = not filtered and bool(candidates)

        if not candidates:
            issues.append(ISSUE_NO_CANDIDATES)
        if low_confidence:
            issues.append(ISSUE_LOW_CONFIDENCE_FALLBACK)

        if low_confidence:
            # Fallback set is returned whole, flagged, in descending similarity
            context = self.assembler.assemble(candidates, max_chunks=len(candidates), order_by_position=False)
        else:
            if config.enable_deduplication:
                candidates = deduplicate(candidates, config.max_chunks_per_document)

            if config.enable_reranking and candidates:
                stage_start = time.time()
                reranked = await self.reranker.rerank(
                    query,
                    candidates,
                    top_k=max(config.rerank_top_k, config.max_sources)
                )
                timings["rerank_ms"] = self._elapsed_ms(stage_start)
                if reranked:
                    candidates = reranked
                else:
                    issues.append(ISSUE_RERANK_FILTERED_ALL)

            context = self.assembler.assemble(candidates, max_chunks=config.max_sources)
        confidence = estimate_confidence(context.ordered_candidates)
        timings["total_ms"] = self._elapsed_ms(start_time)

        logger.info(
            f"Retrieved {context.total_count} sources from {len(all_candidates)} candidates "
            f"(confidence {confidence}%) in {timings['total_ms']}ms",
            extra={"extra": {"timings": timings, "variants": len(variants), "issues": issues}}
        )

        result = RetrievalResult(
            context=context,
            confidence=confidence,
            issues=issues,
            low_confidence=low_confidence
        )
        self.cache.set(CACHE_NAMESPACE, cache_id, result, ttl=self.cache_ttl)
        return result

    async def ingest_document(self, document: Document, config: Optional[RetrievalConfig] = None) -> List[Segment]:
        """
        Segment, embed and store one document, replacing its previous segments.

        Args:
            document: Document with extracted text
            config: When given, its ``target_chunk_size`` and ``overlap_size``
                override the chunker's; min/max sizes widen to admit the target

        Raises:
            InvalidInputError: If the document has no text
        """
        if not document.content or not document.content.strip():
            raise InvalidInputError(f"Document {document.name} is empty")

        chunker = self._chunker_for(config) if config is not None else self.chunker
        segments = await asyncio.to_thread(chunker.chunk_document, document.content, document.document_id)
        await self.store_segments(document, segments)
        return segments

    async def store_segments(self, document: Document, segments: List[Segment]) -> None:
        """Embed already computed segments in batches and replace the document's stored set."""
        if not segments:
            raise InvalidInputError(f"Document {document.name} produced no segments")

        embeddings: List[List[float]] = []
        for batch_start in range(0, len(segments), self.embed_batch_size):
            batch = segments[batch_start:batch_start + self.embed_batch_size]
            embeddings.extend(await self.embedding_model.embed_batch([segment.content for segment in batch]))

        await asyncio.to_thread(
            self.store.replace_document,
            document.document_id,
            segments,
            embeddings,
            document.name
        )
        self.cache.invalidate(CACHE_NAMESPACE)

    async def delete_document(self, document_id: str) -> int:
        removed = await asyncio.to_thread(self.store.delete_document, document_id)
        self.cache.invalidate(CACHE_NAMESPACE)
        return removed

    def _chunker_for(self, config: RetrievalConfig) -> ChunkingEngine:
        current = self.chunker.get_config()
        target = config.target_chunk_size
        try:
            return self.chunker.with_config(
                target_size=target,
                min_size=min(current.min_size, target),
                max_size=max(current.max_size, target),
                overlap_size=config.overlap_size
            )
        except ValueError as e:
            raise InvalidInputError(f"Invalid chunk settings: {e}") from e

    @staticmethod
    async def _score_variant(embedding: List[float], stored: List[StoredSegment]) -> List[RetrievalCandidate]:
        return await asyncio.to_thread(score_segments, embedding, stored)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.time() - start) * 1000)
