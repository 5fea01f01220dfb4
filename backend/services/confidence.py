"""Retrieval confidence estimate and the low-similarity fallback policy."""
import logging
from dataclasses import replace
from typing import List

from config import FALLBACK_RESULT_COUNT, HIGH_RELEVANCE_THRESHOLD
from models.retrieval import RetrievalCandidate

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 99

# (top score must exceed, confidence floor)
CONFIDENCE_FLOORS = [(0.8, 75), (0.7, 65), (0.6, 55)]


def estimate_confidence(
    candidates: List[RetrievalCandidate],
    high_relevance_threshold: float = HIGH_RELEVANCE_THRESHOLD
) -> int:
    """
    Estimate retrieval confidence on a 0-99 scale.

    Weighted sum of the top similarity (0.4), the average of the top three
    (0.3), the density of highly relevant candidates (0.2) and source
    diversity (0.1). Strong top scores lift the result to a floor.

    Args:
        candidates: Candidates of one retrieval, in any order
        high_relevance_threshold: Similarity above which a candidate counts
            as highly relevant

    Returns:
        Confidence percentage, 0 when there are no candidates
    """
    if not candidates:
        return 0

    scores = sorted((candidate.score for candidate in candidates), reverse=True)
    top = scores[0]
    top3 = scores[:3]
    top3_avg = sum(top3) / len(top3)

    high_relevance = sum(1 for score in scores if score > high_relevance_threshold)
    density = min(high_relevance / 3, 1.0)
    unique_documents = len({candidate.source_document_id for candidate in candidates})
    diversity = min(unique_documents / 3, 1.0)

    confidence = round(100 * (top * 0.4 + top3_avg * 0.3 + density * 0.2 + diversity * 0.1))

    for threshold, floor in CONFIDENCE_FLOORS:
        if top > threshold:
            confidence = max(confidence, floor)
            break

    return min(confidence, MAX_CONFIDENCE)


def apply_fallback(
    filtered: List[RetrievalCandidate],
    all_candidates: List[RetrievalCandidate],
    count: int = FALLBACK_RESULT_COUNT
) -> List[RetrievalCandidate]:
    """
    Return the best few candidates when nothing cleared the threshold.

    Args:
        filtered: Candidates that cleared the minimum similarity
        all_candidates: Every scored candidate
        count: Number of fallback candidates to return

    Returns:
        ``filtered`` unchanged if non-empty; otherwise the top
        ``min(count, len(all_candidates))`` candidates by descending score,
        each flagged ``low_confidence``
    """
    if filtered or not all_candidates:
        return filtered

    best = sorted(all_candidates, key=lambda candidate: candidate.score, reverse=True)[:count]
    logger.info(
        f"No candidates above threshold, falling back to top {len(best)} "
        f"(best score {best[0].score:.3f})"
    )
    return [replace(candidate, low_confidence=True) for candidate in best]
