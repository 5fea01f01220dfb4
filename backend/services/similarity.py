"""Similarity scoring: cosine over embeddings, Jaccard over token sets."""
import logging
import math
from typing import Iterable, List, Optional, Sequence, Set

import numpy as np

from models.chunk import StoredSegment
from models.retrieval import RetrievalCandidate
from services.errors import DimensionMismatchError

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity between two equal-length vectors.

    Returns 0.0 when either vector has zero norm, never NaN.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)

    if vec_a.ndim != 1 or vec_a.shape != vec_b.shape:
        raise DimensionMismatchError(
            f"Vectors must have the same length ({vec_a.size} vs {vec_b.size})",
            details={"left": int(vec_a.size), "right": int(vec_b.size)}
        )

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    value = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return value if math.isfinite(value) else 0.0


def tokenize(text: str) -> Set[str]:
    """Lowercased whitespace tokens longer than two characters."""
    return {token for token in text.lower().split() if len(token) > 2}


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """|intersection| / |union| of the two token sets; 0.0 for an empty union."""
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def score_segments(
    query_embedding: Sequence[float],
    stored_segments: Iterable[StoredSegment],
    min_similarity: float = 0.0,
    limit: Optional[int] = None
) -> List[RetrievalCandidate]:
    """
    Score stored segments against a query embedding.

    Segments whose embedding dimensionality differs from the query are
    logged and skipped.

    Args:
        query_embedding: Embedding of the query
        stored_segments: Segments with embeddings
        min_similarity: Drop candidates scoring below this
        limit: Keep at most this many candidates

    Returns:
        Candidates sorted by descending score, scores clamped to [0, 1]
    """
    candidates = []
    skipped = 0

    for stored in stored_segments:
        try:
            similarity = cosine_similarity(query_embedding, stored.embedding)
        except DimensionMismatchError as e:
            skipped += 1
            logger.warning(f"Skipping segment {stored.segment.id}: {e}")
            continue

        score = max(0.0, min(1.0, similarity))
        if score < min_similarity:
            continue

        segment = stored.segment
        candidates.append(RetrievalCandidate.from_score(
            segment_id=segment.id,
            source_document_id=segment.source_document_id,
            source_document_name=stored.source_document_name,
            content=segment.content,
            score=score,
            index=segment.index,
            start_offset=segment.start_offset,
            metadata={"section_title": segment.section_title} if segment.section_title else {}
        ))

    if skipped:
        logger.warning(f"Skipped {skipped} segments with mismatched embedding dimensions")

    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    return candidates[:limit] if limit is not None else candidates
