"""Per-query retrieval data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import (
    MAX_SOURCES,
    MIN_SIMILARITY,
    MAX_CHUNKS_PER_DOCUMENT,
    CHUNK_OVERLAP,
    CHUNK_TARGET_SIZE,
    SEARCH_LIMIT,
    RERANK_TOP_K,
)


@dataclass(frozen=True)
class RetrievalCandidate:
    """A segment paired with a query-relevance score for one request.

    Stages never mutate a candidate; they return copies with updated
    score fields (score -> reranked_score -> boosted reranked_score).
    """
    segment_id: str
    source_document_id: str
    source_document_name: str
    content: str
    score: float  # 0.0 to 1.0, similarity from vector search
    reranked_score: float
    relevance_score: float
    index: Optional[int] = None  # Position of the segment in its document
    start_offset: Optional[int] = None
    low_confidence: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_score(cls, segment_id: str, source_document_id: str, source_document_name: str,
                   content: str, score: float, **kwargs) -> "RetrievalCandidate":
        return cls(
            segment_id=segment_id,
            source_document_id=source_document_id,
            source_document_name=source_document_name,
            content=content,
            score=score,
            reranked_score=score,
            relevance_score=score,
            **kwargs
        )


@dataclass
class RetrievalConfig:
    """Caller-facing knobs for retrieve()."""
    max_sources: int = MAX_SOURCES
    min_confidence: float = MIN_SIMILARITY  # Minimum similarity a candidate must clear
    enable_reranking: bool = True
    enable_deduplication: bool = True
    max_chunks_per_document: int = MAX_CHUNKS_PER_DOCUMENT
    # Segmentation knobs, read by RetrievalEngine.ingest_document only
    overlap_size: int = CHUNK_OVERLAP
    target_chunk_size: int = CHUNK_TARGET_SIZE
    search_limit: int = SEARCH_LIMIT
    rerank_top_k: int = RERANK_TOP_K

    def fingerprint(self) -> str:
        return (
            f"{self.max_sources}:{self.min_confidence}:{int(self.enable_reranking)}:"
            f"{int(self.enable_deduplication)}:{self.max_chunks_per_document}:"
            f"{self.search_limit}:{self.rerank_top_k}"
        )


@dataclass
class AssembledContext:
    """Bounded, ordered context handed to the generation step."""
    ordered_candidates: List[RetrievalCandidate]
    total_count: int
    formatted_context: str = ""
    total_tokens: int = 0
    document_order: Dict[str, List[int]] = field(default_factory=dict)


@dataclass
class RetrievalResult:
    """Output of retrieve()."""
    context: AssembledContext
    confidence: int
    issues: List[str] = field(default_factory=list)
    low_confidence: bool = False


@dataclass
class ValidationResult:
    """Confidence and citation checks for a generated answer."""
    confidence_value: int
    issues: List[str]
    citations_valid: bool
    invalid_citations: List[int]
    is_complete: bool = True
    needs_more_context: bool = False
