"""Unit tests for deduplication and per-document capping."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from models.retrieval import RetrievalCandidate
from services.deduplicator import content_fingerprint, deduplicate
from services.similarity import jaccard_similarity

SIMILAR_BASE = "alpha bravo charlie delta echo foxtrot golf"


def make_candidate(segment_id: str, content: str, score: float, document_id: str = "doc") -> RetrievalCandidate:
    return RetrievalCandidate.from_score(
        segment_id=segment_id,
        source_document_id=document_id,
        source_document_name=f"{document_id}.pdf",
        content=content,
        score=score,
    )


class TestFingerprint:
    """Test suite for content_fingerprint."""

    def test_whitespace_and_case_normalized(self):
        assert content_fingerprint("Hello   World\n") == content_fingerprint("hello world")

    def test_long_content_uses_both_ends(self):
        content = "a" * 100 + "middle" + "z" * 100

        assert content_fingerprint(content) == "a" * 100 + "|" + "z" * 100


class TestDeduplicate:
    """Test suite for deduplicate."""

    def test_similar_candidates_collapse_to_highest_scored(self):
        candidates = [
            make_candidate("a1", SIMILAR_BASE + " hotel", 0.90),
            make_candidate("a2", SIMILAR_BASE + " india", 0.85),
            make_candidate("b1", "the weather today is sunny and warm outside", 0.80),
            make_candidate("a3", SIMILAR_BASE + " juliet", 0.75),
            make_candidate("b2", "quarterly revenue grew faster than analysts expected overall", 0.70),
            make_candidate("a4", SIMILAR_BASE + " kilo", 0.65),
        ]

        kept = deduplicate(candidates, max_per_document=4)

        assert [candidate.segment_id for candidate in kept] == ["a1", "b1", "b2"]

    def test_cap_per_document(self):
        passages = [
            "apples ripen slowly during autumn",
            "bridges span rivers connecting cities",
            "comets orbit distant stars periodically",
            "dragons guard treasure inside caves",
            "engines convert fuel into motion",
            "forests shelter countless animal species",
        ]
        candidates = [
            make_candidate(f"c{i}", passage, 0.9 - i * 0.05)
            for i, passage in enumerate(passages)
        ]

        kept = deduplicate(candidates, max_per_document=4)

        assert [candidate.segment_id for candidate in kept] == ["c0", "c1", "c2", "c3"]

    def test_cap_is_per_document(self):
        candidates = [
            make_candidate("x1", "first unique passage about mountains", 0.9, "x"),
            make_candidate("x2", "second unique passage about oceans", 0.8, "x"),
            make_candidate("y1", "third unique passage about deserts", 0.7, "y"),
        ]

        kept = deduplicate(candidates, max_per_document=1)

        assert [candidate.segment_id for candidate in kept] == ["x1", "y1"]

    def test_identical_content_across_documents(self):
        candidates = [
            make_candidate("x1", "Shared boilerplate paragraph text.", 0.9, "x"),
            make_candidate("y1", "shared   boilerplate paragraph text.", 0.8, "y"),
        ]

        kept = deduplicate(candidates)

        assert [candidate.segment_id for candidate in kept] == ["x1"]

    def test_similar_content_across_documents_kept(self):
        candidates = [
            make_candidate("x1", SIMILAR_BASE + " hotel", 0.9, "x"),
            make_candidate("y1", SIMILAR_BASE + " india", 0.8, "y"),
        ]

        kept = deduplicate(candidates)

        assert len(kept) == 2

    def test_retained_same_document_pairs_are_dissimilar(self):
        candidates = [
            make_candidate(f"s{i}", SIMILAR_BASE + f" word{i} extra{i % 2}", 0.9 - i * 0.01)
            for i in range(8)
        ] + [make_candidate("other", "completely different subject matter entirely", 0.5)]

        kept = deduplicate(candidates, max_per_document=4)

        for i, left in enumerate(kept):
            for right in kept[i + 1:]:
                if left.source_document_id == right.source_document_id:
                    assert jaccard_similarity(left.content, right.content) <= 0.5

    def test_empty_input(self):
        assert deduplicate([]) == []

    def test_input_not_mutated(self):
        candidates = [
            make_candidate("a1", SIMILAR_BASE + " hotel", 0.9),
            make_candidate("a2", SIMILAR_BASE + " india", 0.8),
        ]

        deduplicate(candidates)

        assert len(candidates) == 2
