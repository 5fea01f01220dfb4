"""Unit tests for ChunkingEngine."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from models.chunk import ChunkConfig
from models.document import Document
from services.chunking_engine import ChunkingEngine, detect_section_title

# 57 characters, 10 words
SENTENCE = "Alpha beta gamma delta epsilon zeta eta theta iota kappa."


def make_paragraph(sentences: int = 13) -> str:
    return " ".join([SENTENCE] * sentences)


def make_document(paragraphs: int = 5, sentences: int = 15) -> str:
    return "\n\n".join(make_paragraph(sentences) for _ in range(paragraphs))


@pytest.fixture
def engine():
    return ChunkingEngine()


@pytest.fixture
def document_text():
    """Five paragraphs of 150 words each, 4353 characters."""
    return make_document()


class TestChunkConfig:
    """Configuration validation and accessors."""

    def test_defaults(self, engine):
        config = engine.get_config()
        assert (config.target_size, config.min_size, config.max_size, config.overlap_size) == (500, 400, 600, 125)
        assert config.preserve_sentences and config.preserve_paragraphs

    def test_min_above_target_rejected(self):
        with pytest.raises(ValueError):
            ChunkConfig(min_size=700)

    def test_target_above_max_rejected(self):
        with pytest.raises(ValueError):
            ChunkConfig(target_size=650)

    def test_overlap_not_below_min_rejected(self):
        with pytest.raises(ValueError):
            ChunkConfig(overlap_size=400)

    def test_non_positive_size_rejected(self):
        with pytest.raises(ValueError):
            ChunkConfig(target_size=0, min_size=0)

    def test_with_config_returns_new_engine(self, engine):
        smaller = engine.with_config(overlap_size=50)

        assert smaller.get_config().overlap_size == 50
        assert engine.get_config().overlap_size == 125


class TestSegmentation:
    """Segmentation scenarios and size, coverage and overlap properties."""

    def test_five_paragraph_document(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")

        assert len(document_text) == 4353
        # Each span starts 125 characters before the previous end, so spans advance ~375
        assert len(segments) == 12
        for segment in segments[:-1]:
            assert 400 <= len(segment.content) <= 600
        for segment in segments[1:]:
            assert segment.overlap_with_previous
        for segment in segments[:-1]:
            assert segment.overlap_with_next

    def test_split_offsets_of_five_paragraph_document(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")

        # Paragraph breaks at 869 and 2611 are taken as landmarks, the rest are sentence ends
        ends = [segment.end_offset for segment in segments]
        assert ends[:3] == [521, 869, 1218]
        assert 2611 in ends
        assert ends[-1] == len(document_text)

    def test_indices_contiguous_and_ids(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")

        assert [segment.index for segment in segments] == list(range(len(segments)))
        assert all(segment.total_segments == len(segments) for segment in segments)
        assert segments[0].id == "guide_chunk_0"
        assert all(segment.source_document_id == "guide" for segment in segments)

    def test_offsets_match_content(self, engine, document_text):
        for segment in engine.chunk_document(document_text, "guide"):
            assert 0 <= segment.start_offset < segment.end_offset <= len(document_text)
            assert document_text[segment.start_offset:segment.end_offset] == segment.content

    def test_segments_cover_every_character(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")

        covered = set()
        for segment in segments:
            covered.update(range(segment.start_offset, segment.end_offset))

        uncovered = [
            position for position, char in enumerate(document_text)
            if not char.isspace() and position not in covered
        ]
        assert uncovered == []

    def test_overlap_prefix_suffix_relations(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")
        overlap = engine.get_config().overlap_size

        for previous, current in zip(segments, segments[1:]):
            assert previous.content.endswith(current.overlap_with_previous)
            assert current.content.startswith(previous.overlap_with_next)
            assert len(current.overlap_with_previous) <= overlap
            assert len(previous.overlap_with_next) <= overlap

        assert segments[0].overlap_with_previous == ""
        assert segments[-1].overlap_with_next == ""

    def test_word_count(self, engine, document_text):
        for segment in engine.chunk_document(document_text, "guide"):
            assert segment.word_count == len(segment.content.split())

    def test_splits_end_on_sentence_or_paragraph(self, engine, document_text):
        segments = engine.chunk_document(document_text, "guide")

        for segment in segments[:-1]:
            assert segment.content.endswith(".")

    def test_empty_and_whitespace_input(self, engine):
        assert engine.chunk_document("", "doc") == []
        assert engine.chunk_document("   \n\n  \t", "doc") == []

    def test_short_text_single_segment(self, engine):
        segments = engine.chunk_document("Hello world.", "doc")

        assert len(segments) == 1
        segment = segments[0]
        assert segment.content == "Hello world."
        assert segment.total_segments == 1
        assert segment.overlap_with_previous == ""
        assert segment.overlap_with_next == ""

    def test_unbroken_text_respects_max_size(self, engine):
        text = "x" * 2000

        segments = engine.chunk_document(text, "blob")

        assert len(segments) > 1
        assert all(len(segment.content) <= 600 for segment in segments)
        assert segments[-1].end_offset == len(text)

    def test_split_lands_on_header(self, engine):
        body = make_paragraph(8)  # 463 characters
        text = body + "\n# Configuration\n" + make_paragraph(8)

        segments = engine.chunk_document(text, "doc")

        assert segments[0].content == body
        assert "# Configuration" not in segments[0].content
        assert "# Configuration" in segments[1].content

    def test_sentences_not_preserved_uses_target(self):
        engine = ChunkingEngine(ChunkConfig(preserve_sentences=False, preserve_paragraphs=False))
        text = make_paragraph(20)

        spans = engine.calculate_spans(text, [])

        assert spans[0] == (0, 500)

    def test_chunk_documents_keeps_document_order(self, engine):
        documents = [
            Document(document_id="a", name="a.md", content=make_paragraph(3)),
            Document(document_id="b", name="b.md", content=make_paragraph(3)),
        ]

        segments = engine.chunk_documents(documents)

        assert [segment.source_document_id for segment in segments] == ["a", "b"]


class TestWordBoundaryFallback:
    """Preceding-space fallback and the opt-in forward search."""

    def test_preceding_space_used(self, engine):
        text = ("word " * 200).strip()  # no sentence boundaries

        split = engine.find_split_point(text, 502, lower=1)

        assert split == 500
        assert text[split - 1] == " "

    def test_target_used_when_space_too_far_back(self, engine):
        text = "a" * 400 + " " + "b" * 300

        assert engine.find_split_point(text, 500, lower=1) == 500

    def test_search_forward_finds_following_space(self):
        engine = ChunkingEngine(ChunkConfig(search_forward=True))
        text = "a" * 400 + " " + "b" * 110 + " " + "c" * 100

        assert engine.find_split_point(text, 500, lower=1) == 512


class TestSectionTitle:
    """Section title detection within the first three lines."""

    def test_markdown_title(self):
        assert detect_section_title("# Getting Started\nInstall the package.") == "Getting Started"

    def test_all_caps_title(self):
        assert detect_section_title("\nOVERVIEW\ntext") == "OVERVIEW"

    def test_colon_title(self):
        assert detect_section_title("Requirements:\n- python") == "Requirements"

    def test_no_title(self):
        assert detect_section_title("just a sentence that goes on.\nanother one.") is None

    def test_segment_flags_header(self, engine):
        segments = engine.chunk_document("# Setup\nRun the installer.", "doc")

        assert segments[0].section_title == "Setup"
        assert segments[0].has_header is True
