"""Multi-stage reranking with an explicit fallback chain and exact-term boost.

Tiers, tried in order until one succeeds:

1. ``CohereRerankStrategy``  - external neural reranker over HTTP
2. ``LocalScoringStrategy``  - local term-based scoring model
3. ``OriginalOrderStrategy`` - original similarity order, filtered

Every tier returns a ``RerankOutcome`` instead of raising. Term boost runs
after whichever tier produced the ranking, and after cache lookup, so the
boost factor can change without invalidating cached rankings.
"""
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import List, Optional

import httpx

from config import (
    COHERE_API_KEY,
    RERANK_MODEL,
    RERANK_API_URL,
    RERANK_TIMEOUT,
    RERANK_TOP_K,
    RERANK_MIN_SCORE,
    RERANK_CACHE_TTL,
    TERM_BOOST_FACTOR,
)
from models.retrieval import RetrievalCandidate
from services.cache_service import CacheService
from services.errors import RerankError, RetrievalUnavailableError

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "rerank"
MAX_DOCUMENT_CHARS = 4096  # Provider limit per document

STOP_WORDS = frozenset([
    'the', 'a', 'an', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'shall', 'can', 'need', 'to', 'of',
    'in', 'for', 'on', 'with', 'at', 'by', 'from', 'as', 'into', 'through',
    'during', 'before', 'after', 'above', 'below', 'between', 'under',
    'and', 'but', 'or', 'nor', 'so', 'yet', 'both', 'either', 'neither',
    'not', 'only', 'own', 'same', 'than', 'too', 'very', 'just', 'also',
    'now', 'here', 'there', 'when', 'where', 'why', 'how', 'all', 'each',
    'every', 'few', 'more', 'most', 'other', 'some', 'such', 'no', 'any',
    'this', 'that', 'these', 'those', 'what', 'which', 'who', 'whom',
    'whose', 'i', 'me', 'my', 'myself', 'we', 'our', 'ours', 'ourselves',
    'you', 'your', 'yours', 'yourself', 'yourselves', 'he', 'him', 'his',
    'himself', 'she', 'her', 'hers', 'herself', 'it', 'its', 'itself',
    'they', 'them', 'their', 'theirs', 'themselves'
])

_PUNCTUATION = re.compile(r'[^\w\s]')


def extract_query_terms(query: str) -> List[str]:
    """
    Significant terms of a query.

    Lowercases, replaces punctuation with spaces, splits on whitespace and
    drops stop words and tokens of two characters or fewer.

    Returns:
        Unique terms in order of first appearance
    """
    terms = []
    for token in _PUNCTUATION.sub(' ', query.lower()).split():
        if len(token) > 2 and token not in STOP_WORDS and token not in terms:
            terms.append(token)
    return terms


def apply_term_boost(
    query: str,
    candidates: List[RetrievalCandidate],
    boost_factor: float = TERM_BOOST_FACTOR
) -> List[RetrievalCandidate]:
    """
    Boost candidates containing an exact whole-word query term.

    Matching is case-insensitive and word-bounded: "test" does not match
    "testing". Boosted scores are capped at 1.0.

    Returns:
        New candidate list sorted by descending reranked score
    """
    terms = extract_query_terms(query)
    if terms:
        pattern = re.compile(r'\b(?:' + '|'.join(re.escape(term) for term in terms) + r')\b', re.IGNORECASE)
        boosted = [
            replace(
                candidate,
                reranked_score=min(1.0, candidate.reranked_score * boost_factor),
                relevance_score=min(1.0, candidate.relevance_score * boost_factor)
            ) if pattern.search(candidate.content) else candidate
            for candidate in candidates
        ]
    else:
        boosted = list(candidates)

    boosted.sort(key=lambda candidate: candidate.reranked_score, reverse=True)
    return boosted


@dataclass
class RerankOutcome:
    """Result of one rerank tier: a ranking or an error, never both."""
    strategy: str
    ranked: Optional[List[RetrievalCandidate]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.ranked is not None


class RerankStrategy:
    """One tier of the rerank chain."""

    name = "base"

    async def rank(
        self,
        query: str,
        candidates: List[RetrievalCandidate],
        top_k: int,
        min_score: float
    ) -> RerankOutcome:
        raise NotImplementedError


class CohereRerankStrategy(RerankStrategy):
    """Neural reranking through the Cohere rerank endpoint."""

    name = "cohere"

    def __init__(
        self,
        api_key: Optional[str] = COHERE_API_KEY,
        model_name: str = RERANK_MODEL,
        api_url: str = RERANK_API_URL,
        timeout: float = RERANK_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the Cohere tier.

        Args:
            api_key: Cohere API key; the tier reports itself unavailable without one
            model_name: Rerank model identifier
            api_url: Rerank endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.model_name = model_name
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

        if self.api_key:
            logger.info(f"Cohere reranker enabled with model: {model_name}")
        else:
            logger.info("Cohere API key not found - rerank chain starts at local scoring")

    async def rank(self, query, candidates, top_k, min_score) -> RerankOutcome:
        try:
            ranked = await self._request_ranking(query, candidates, top_k)
        except RerankError as e:
            return RerankOutcome(self.name, error=f"[{e.error.code}] {e.error.message}")

        ranked = [candidate for candidate in ranked if candidate.reranked_score >= min_score]
        return RerankOutcome(self.name, ranked=ranked[:top_k])

    async def _request_ranking(self, query, candidates, top_k) -> List[RetrievalCandidate]:
        """
        Call the rerank endpoint.

        Returns:
            Candidates with provider scores, sorted descending

        Raises:
            RerankError: Missing key, network error, timeout, non-200 status
                or malformed response
        """
        if not self.api_key:
            raise RerankError("COHERE_API_KEY not configured", code="NOT_CONFIGURED")

        payload = {
            "model": self.model_name,
            "query": query,
            "documents": [candidate.content[:MAX_DOCUMENT_CHARS] for candidate in candidates],
            "top_n": min(top_k * 2, len(candidates)),
            "return_documents": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
        except httpx.TimeoutException:
            raise RerankError(f"Request timeout after {self.timeout}s", code="TIMEOUT")
        except httpx.HTTPError as e:
            raise RerankError(f"Network error: {str(e)}", code="NETWORK_ERROR")

        if response.status_code == 429:
            raise RerankError("Rate limit exceeded", code="RATE_LIMITED")
        if response.status_code != 200:
            raise RerankError(
                f"API request failed with status {response.status_code}: {response.text[:200]}",
                details={"status": response.status_code}
            )

        try:
            ranked = []
            for result in response.json()["results"]:
                score = float(result["relevance_score"])
                ranked.append(replace(
                    candidates[int(result["index"])],
                    reranked_score=score,
                    relevance_score=score
                ))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RerankError(f"Malformed rerank response: {e}", code="MALFORMED_RESPONSE")

        ranked.sort(key=lambda candidate: candidate.reranked_score, reverse=True)
        return ranked


class LocalScoringStrategy(RerankStrategy):
    """
    Local term-based relevance model.

    Scores each candidate on term overlap (0.3), term position (0.25),
    term coverage (0.25) and query-term density (0.2), then blends with the
    similarity score: reranked = 0.3 * score + 0.7 * local.
    """

    name = "local"

    async def rank(self, query, candidates, top_k, min_score) -> RerankOutcome:
        query_terms = set(extract_query_terms(query))
        raw_terms = [term for term in query.lower().split() if len(term) > 2]

        ranked = []
        for candidate in candidates:
            local = self.score(query_terms, raw_terms, candidate.content)
            ranked.append(replace(
                candidate,
                reranked_score=candidate.score * 0.3 + local * 0.7,
                relevance_score=local
            ))

        ranked.sort(key=lambda candidate: candidate.reranked_score, reverse=True)
        ranked = [candidate for candidate in ranked if candidate.reranked_score >= min_score]
        return RerankOutcome(self.name, ranked=ranked[:top_k])

    def score(self, query_terms, raw_terms: List[str], content: str) -> float:
        content_lower = content.lower()
        doc_terms = set(extract_query_terms(content))

        overlap = self._overlap(query_terms, doc_terms)
        position = self._position(raw_terms, content_lower)
        coverage = len(query_terms & doc_terms) / len(query_terms) if query_terms else 0.0
        density = self._density(raw_terms, content_lower)

        return overlap * 0.3 + position * 0.25 + coverage * 0.25 + density * 0.2

    @staticmethod
    def _overlap(query_terms, doc_terms) -> float:
        if not query_terms:
            return 0.0
        matches = 0.0
        for term in query_terms:
            if term in doc_terms:
                matches += 1
            elif any(term in doc_term or doc_term in term for doc_term in doc_terms):
                # Partial credit for stem-like matches
                matches += 0.5
        return min(1.0, matches / len(query_terms))

    @staticmethod
    def _position(raw_terms: List[str], content_lower: str) -> float:
        """Earlier first occurrences score higher."""
        if not content_lower:
            return 0.0
        total = 0.0
        found = 0
        for term in raw_terms:
            position = content_lower.find(term)
            if position != -1:
                total += 1 - position / len(content_lower)
                found += 1
        return total / found if found else 0.0

    @staticmethod
    def _density(raw_terms: List[str], content_lower: str) -> float:
        words = content_lower.split()
        if not words or not raw_terms:
            return 0.0
        matches = sum(
            1 for word in words
            if any(term in word or word in term for term in raw_terms)
        )
        return min(1.0, matches / len(words) * 10)


class OriginalOrderStrategy(RerankStrategy):
    """Last resort: similarity order, filtered by the minimum score."""

    name = "original"

    async def rank(self, query, candidates, top_k, min_score) -> RerankOutcome:
        ranked = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
        ranked = [
            replace(candidate, reranked_score=candidate.score, relevance_score=candidate.score)
            for candidate in ranked
            if candidate.score >= min_score
        ]
        return RerankOutcome(self.name, ranked=ranked[:top_k])


class Reranker:
    """Reorders retrieval candidates through the tier chain, then boosts exact term matches."""

    def __init__(
        self,
        strategies: Optional[List[RerankStrategy]] = None,
        cache: Optional[CacheService] = None,
        boost_factor: float = TERM_BOOST_FACTOR,
        cache_ttl: float = RERANK_CACHE_TTL
    ):
        """
        Initialize the reranker.

        Args:
            strategies: Tiers in the order they are tried; defaults to
                Cohere -> local scoring -> original order
            cache: Optional cache for tier results
            boost_factor: Multiplier applied on exact term matches
            cache_ttl: Seconds a cached ranking stays valid
        """
        if strategies is None:
            strategies = [CohereRerankStrategy(), LocalScoringStrategy(), OriginalOrderStrategy()]
        self.strategies = strategies
        self.cache = cache
        self.boost_factor = boost_factor
        self.cache_ttl = cache_ttl

    async def rerank(
        self,
        query: str,
        candidates: List[RetrievalCandidate],
        top_k: int = RERANK_TOP_K,
        min_score: float = RERANK_MIN_SCORE
    ) -> List[RetrievalCandidate]:
        """
        Rerank candidates.

        With ``top_k`` or fewer candidates the tier chain is skipped and only
        term boost is applied.

        Args:
            query: User query
            candidates: Candidates to reorder
            top_k: Maximum candidates returned by a tier
            min_score: Minimum reranked score kept by a tier

        Returns:
            Boosted candidates sorted by descending reranked score

        Raises:
            RetrievalUnavailableError: If every tier failed
        """
        if not candidates:
            return []

        if len(candidates) <= top_k:
            return apply_term_boost(query, candidates, self.boost_factor)

        cache_id = self._cache_identifier(query, candidates, top_k, min_score)
        ranked = self.cache.get(CACHE_NAMESPACE, cache_id) if self.cache is not None else None

        if ranked is None:
            ranked = await self._run_chain(query, candidates, top_k, min_score)
            if self.cache is not None:
                self.cache.set(CACHE_NAMESPACE, cache_id, ranked, ttl=self.cache_ttl)
        else:
            logger.debug("Rerank cache hit")

        return apply_term_boost(query, ranked, self.boost_factor)

    async def _run_chain(self, query, candidates, top_k, min_score) -> List[RetrievalCandidate]:
        failures = {}

        for strategy in self.strategies:
            start_time = time.time()
            try:
                outcome = await strategy.rank(query, candidates, top_k, min_score)
            except Exception as e:
                outcome = RerankOutcome(strategy.name, error=f"{type(e).__name__}: {e}")

            if outcome.ok:
                elapsed_ms = int((time.time() - start_time) * 1000)
                logger.info(
                    f"Reranked {len(candidates)} -> {len(outcome.ranked)} candidates "
                    f"with '{outcome.strategy}' in {elapsed_ms}ms"
                )
                return outcome.ranked

            failures[outcome.strategy] = outcome.error
            logger.warning(f"Rerank tier '{outcome.strategy}' failed: {outcome.error}")

        raise RetrievalUnavailableError(
            "All rerank tiers failed",
            details={"failures": failures}
        )

    @staticmethod
    def _cache_identifier(query, candidates, top_k, min_score) -> str:
        segment_ids = ",".join(sorted(candidate.segment_id for candidate in candidates))
        return f"{query}:{segment_ids}:{top_k}:{min_score}"
