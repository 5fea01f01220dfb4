"""Unit tests for the rerank chain and term boost."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import json
import httpx
import pytest
from models.retrieval import RetrievalCandidate
from services.cache_service import CacheService
from services.errors import RetrievalUnavailableError
from services.reranker import (
    CohereRerankStrategy,
    LocalScoringStrategy,
    OriginalOrderStrategy,
    RerankOutcome,
    RerankStrategy,
    Reranker,
    apply_term_boost,
    extract_query_terms,
)


def make_candidate(segment_id: str, content: str, score: float, document_id: str = "doc") -> RetrievalCandidate:
    return RetrievalCandidate.from_score(
        segment_id=segment_id,
        source_document_id=document_id,
        source_document_name=f"{document_id}.pdf",
        content=content,
        score=score,
    )


def make_pool(count: int = 7):
    return [make_candidate(f"c{i}", f"passage number {i}", 0.9 - i * 0.05) for i in range(count)]


class CountingStrategy(RerankStrategy):
    """Keeps the original order and counts invocations."""

    name = "counting"

    def __init__(self):
        self.calls = 0

    async def rank(self, query, candidates, top_k, min_score):
        self.calls += 1
        return RerankOutcome(self.name, ranked=list(candidates[:top_k]))


class FailingStrategy(RerankStrategy):
    name = "failing"

    async def rank(self, query, candidates, top_k, min_score):
        return RerankOutcome(self.name, error="unavailable")


class RaisingStrategy(RerankStrategy):
    name = "raising"

    async def rank(self, query, candidates, top_k, min_score):
        raise RuntimeError("boom")


class TestQueryTerms:
    """Test suite for extract_query_terms."""

    def test_stop_words_and_short_tokens_dropped(self):
        assert extract_query_terms("What is the pricing for the Enterprise plan?") == [
            "pricing", "enterprise", "plan"
        ]

    def test_punctuation_stripped_and_deduplicated(self):
        assert extract_query_terms("API-key, api key!") == ["api", "key"]

    def test_only_stop_words(self):
        assert extract_query_terms("what is the") == []


class TestTermBoost:
    """Test suite for apply_term_boost."""

    def test_whole_word_match_boosted(self):
        matching = make_candidate("m", "This is a test case.", 0.5)

        boosted = apply_term_boost("test", [matching])

        assert boosted[0].reranked_score == pytest.approx(0.6)
        assert boosted[0].relevance_score == pytest.approx(0.6)
        assert boosted[0].score == 0.5

    def test_substring_match_not_boosted(self):
        substring = make_candidate("s", "testing things", 0.5)

        boosted = apply_term_boost("test", [substring])

        assert boosted[0].reranked_score == 0.5

    def test_match_is_case_insensitive(self):
        upper = make_candidate("u", "Run the TEST suite", 0.5)

        assert apply_term_boost("test", [upper])[0].reranked_score == pytest.approx(0.6)

    def test_boost_capped_at_one(self):
        strong = make_candidate("s", "test", 0.9)

        assert apply_term_boost("test", [strong])[0].reranked_score == 1.0

    def test_resorted_after_boost(self):
        plain = make_candidate("plain", "unrelated content", 0.55)
        matching = make_candidate("match", "the invoice arrives monthly", 0.5)

        boosted = apply_term_boost("invoice", [plain, matching])

        assert [candidate.segment_id for candidate in boosted] == ["match", "plain"]

    def test_input_candidates_unchanged(self):
        matching = make_candidate("m", "test", 0.5)

        apply_term_boost("test", [matching])

        assert matching.reranked_score == 0.5


class TestCohereStrategy:
    """Test suite for CohereRerankStrategy over a mock transport."""

    @pytest.mark.asyncio
    async def test_successful_ranking(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"results": [
                {"index": 2, "relevance_score": 0.95},
                {"index": 0, "relevance_score": 0.4},
                {"index": 1, "relevance_score": 0.1},
            ]})

        candidates = make_pool(6)
        candidates[3] = make_candidate("long", "y" * 5000, 0.5)
        strategy = CohereRerankStrategy(api_key="test_key", transport=httpx.MockTransport(handler))

        outcome = await strategy.rank("query", candidates, top_k=2, min_score=0.3)

        assert outcome.ok
        assert [candidate.segment_id for candidate in outcome.ranked] == ["c2", "c0"]
        assert outcome.ranked[0].reranked_score == 0.95
        assert captured["body"]["model"] == "rerank-english-v3.0"
        assert captured["body"]["top_n"] == 4
        assert len(captured["body"]["documents"][3]) == 4096
        assert captured["auth"] == "Bearer test_key"

    @pytest.mark.asyncio
    async def test_missing_key_fails(self):
        outcome = await CohereRerankStrategy(api_key=None).rank("query", make_pool(), 5, 0.3)

        assert not outcome.ok
        assert "NOT_CONFIGURED" in outcome.error

    @pytest.mark.asyncio
    async def test_server_error_fails(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
        strategy = CohereRerankStrategy(api_key="test_key", transport=transport)

        outcome = await strategy.rank("query", make_pool(), 5, 0.3)

        assert not outcome.ok
        assert "500" in outcome.error

    @pytest.mark.asyncio
    async def test_timeout_fails(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        strategy = CohereRerankStrategy(api_key="test_key", transport=httpx.MockTransport(handler))

        outcome = await strategy.rank("query", make_pool(), 5, 0.3)

        assert not outcome.ok
        assert "TIMEOUT" in outcome.error

    @pytest.mark.asyncio
    async def test_malformed_response_fails(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": []}))
        strategy = CohereRerankStrategy(api_key="test_key", transport=transport)

        outcome = await strategy.rank("query", make_pool(), 5, 0.3)

        assert not outcome.ok
        assert "MALFORMED_RESPONSE" in outcome.error


class TestLocalStrategies:
    """Local scoring and original order tiers."""

    @pytest.mark.asyncio
    async def test_local_scoring_prefers_term_matches(self):
        candidates = [
            make_candidate("none", "Weather report for tomorrow", 0.6),
            make_candidate("match", "Database migration steps include a rollback plan", 0.5),
        ]

        outcome = await LocalScoringStrategy().rank("database migration rollback", candidates, top_k=5, min_score=0.0)

        assert outcome.ok
        assert outcome.ranked[0].segment_id == "match"
        assert outcome.ranked[1].reranked_score == pytest.approx(0.6 * 0.3)

    @pytest.mark.asyncio
    async def test_local_scoring_filters_by_min_score(self):
        candidates = [make_candidate("none", "Weather report for tomorrow", 0.6)]

        outcome = await LocalScoringStrategy().rank("database migration", candidates, top_k=5, min_score=0.3)

        assert outcome.ok
        assert outcome.ranked == []

    @pytest.mark.asyncio
    async def test_original_order(self):
        candidates = [
            make_candidate("low", "a", 0.2),
            make_candidate("high", "b", 0.8),
            make_candidate("mid", "c", 0.5),
        ]

        outcome = await OriginalOrderStrategy().rank("query", candidates, top_k=5, min_score=0.3)

        assert [candidate.segment_id for candidate in outcome.ranked] == ["high", "mid"]


class TestReranker:
    """Test suite for the Reranker chain."""

    @pytest.mark.asyncio
    async def test_small_input_skips_tiers(self):
        strategy = CountingStrategy()
        reranker = Reranker(strategies=[strategy])
        candidates = [make_candidate("a", "the test passes", 0.5), make_candidate("b", "nothing", 0.7)]

        result = await reranker.rerank("test", candidates, top_k=5)

        assert strategy.calls == 0
        assert [candidate.segment_id for candidate in result] == ["b", "a"]
        assert result[1].reranked_score == pytest.approx(min(1.0, 0.5 * 1.2))

    @pytest.mark.asyncio
    async def test_falls_through_failed_tiers(self):
        reranker = Reranker(strategies=[
            CohereRerankStrategy(api_key=None),
            FailingStrategy(),
            OriginalOrderStrategy(),
        ])

        result = await reranker.rerank("query", make_pool(7), top_k=3, min_score=0.0)

        assert [candidate.segment_id for candidate in result] == ["c0", "c1", "c2"]

    @pytest.mark.asyncio
    async def test_raising_tier_treated_as_failure(self):
        reranker = Reranker(strategies=[RaisingStrategy(), OriginalOrderStrategy()])

        result = await reranker.rerank("query", make_pool(7), top_k=2, min_score=0.0)

        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_all_tiers_failed(self):
        reranker = Reranker(strategies=[FailingStrategy(), RaisingStrategy()])

        with pytest.raises(RetrievalUnavailableError) as exc_info:
            await reranker.rerank("query", make_pool(7), top_k=3)

        assert set(exc_info.value.error.details["failures"]) == {"failing", "raising"}

    @pytest.mark.asyncio
    async def test_tier_results_cached(self):
        strategy = CountingStrategy()
        cache = CacheService()
        reranker = Reranker(strategies=[strategy], cache=cache)
        candidates = make_pool(7)

        first = await reranker.rerank("query", candidates, top_k=3)
        second = await reranker.rerank("query", list(reversed(candidates)), top_k=3)

        assert strategy.calls == 1
        assert [c.segment_id for c in first] == [c.segment_id for c in second]

    @pytest.mark.asyncio
    async def test_boost_applied_after_cache(self):
        strategy = CountingStrategy()
        reranker = Reranker(strategies=[strategy], cache=CacheService())
        candidates = make_pool(7)

        await reranker.rerank("passage", candidates, top_k=3)
        cached = await reranker.rerank("passage", candidates, top_k=3)

        assert cached[0].reranked_score == pytest.approx(min(1.0, 0.9 * 1.2))
