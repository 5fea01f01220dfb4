"""Near-duplicate removal and per-document capping."""
import logging
import re
from typing import Dict, List, Set

from config import MAX_CHUNKS_PER_DOCUMENT
from models.retrieval import RetrievalCandidate
from services.similarity import jaccard_similarity

logger = logging.getLogger(__name__)

JACCARD_DUPLICATE_THRESHOLD = 0.5
FINGERPRINT_EDGE = 100

_WHITESPACE = re.compile(r'\s+')


def content_fingerprint(content: str) -> str:
    """First and last 100 characters of the normalized content."""
    normalized = _WHITESPACE.sub(' ', content.lower()).strip()
    return normalized[:FINGERPRINT_EDGE] + '|' + normalized[-FINGERPRINT_EDGE:]


def deduplicate(
    candidates: List[RetrievalCandidate],
    max_per_document: int = MAX_CHUNKS_PER_DOCUMENT
) -> List[RetrievalCandidate]:
    """
    Drop near-duplicates and cap candidates per source document.

    Input must be sorted by descending score. A skipped candidate never
    replaces one that was already accepted, so the higher-scoring copy of a
    duplicate pair is the one kept.

    Args:
        candidates: Score-sorted candidates
        max_per_document: Maximum candidates kept per document

    Returns:
        Accepted candidates in input order
    """
    per_document: Dict[str, int] = {}
    accepted_by_document: Dict[str, List[RetrievalCandidate]] = {}
    seen_fingerprints: Set[str] = set()
    accepted: List[RetrievalCandidate] = []

    for candidate in candidates:
        document_id = candidate.source_document_id
        count = per_document.get(document_id, 0)

        if count >= max_per_document:
            continue

        fingerprint = content_fingerprint(candidate.content)
        if fingerprint in seen_fingerprints:
            continue

        siblings = accepted_by_document.get(document_id, [])
        if any(
            jaccard_similarity(existing.content, candidate.content) > JACCARD_DUPLICATE_THRESHOLD
            for existing in siblings
        ):
            continue

        accepted.append(candidate)
        accepted_by_document.setdefault(document_id, []).append(candidate)
        per_document[document_id] = count + 1
        seen_fingerprints.add(fingerprint)

    if len(accepted) < len(candidates):
        logger.debug(f"Deduplication kept {len(accepted)} of {len(candidates)} candidates")

    return accepted
