"""Structure-aware chunking engine with overlap tracking."""
import logging
import re
from dataclasses import replace
from typing import List, Optional, Tuple

from models.chunk import ChunkConfig, Landmark, Segment, HEADER, PARAGRAPH_BREAK
from models.document import Document
from services.boundary_detector import (
    ALL_CAPS_HEADER_REGEX,
    detect_landmarks,
    find_paragraph_breaks,
    find_sentence_boundaries,
)

logger = logging.getLogger(__name__)

# Landmarks may pull a split this far past the target end
LANDMARK_LOOKAHEAD = 50
# Sentence boundaries are searched within +/- this many characters of the target
SENTENCE_SEARCH_WINDOW = 100
# A word-boundary fallback may not shrink a segment by more than this
WORD_FALLBACK_TOLERANCE = 50

TITLE_MARKDOWN_REGEX = re.compile(r'^#{1,6}\s+(.+)$')
TITLE_NUMBERED_REGEX = re.compile(r'^(?:\d+\.|\d+\)|Section\s+\d+[:.)]?)\s*(.+)$', re.IGNORECASE)

Span = Tuple[int, int]


def detect_section_title(content: str) -> Optional[str]:
    """
    Detect a section title within the first three lines of a segment.

    Checks, per line: markdown header, all-caps line, short line ending with
    a colon, numbered section line.

    Returns:
        The title text, or None if no title-like line was found
    """
    for line in content.split('\n')[:3]:
        trimmed = line.strip()
        if not trimmed:
            continue

        markdown = TITLE_MARKDOWN_REGEX.match(trimmed)
        if markdown:
            return markdown.group(1).strip()

        if 3 <= len(trimmed) < 100 and ALL_CAPS_HEADER_REGEX.match(trimmed):
            return trimmed

        if trimmed.endswith(':') and len(trimmed) < 80:
            return trimmed[:-1]

        if TITLE_NUMBERED_REGEX.match(trimmed) and len(trimmed) < 80:
            return trimmed

    return None


class ChunkingEngine:
    """Segments documents into bounded, overlap-tracked segments."""

    def __init__(self, config: Optional[ChunkConfig] = None):
        """
        Initialize ChunkingEngine.

        Args:
            config: Size constraints; defaults to target 500 / min 400 /
                max 600 / overlap 125 characters
        """
        self.config = config or ChunkConfig()

    def get_config(self) -> ChunkConfig:
        """Get the current configuration."""
        return self.config

    def with_config(self, **overrides) -> "ChunkingEngine":
        """Return a new engine with some configuration values replaced."""
        return ChunkingEngine(replace(self.config, **overrides))

    def chunk_documents(self, documents: List[Document]) -> List[Segment]:
        """
        Chunk several documents.

        Args:
            documents: Documents with extracted text

        Returns:
            Segments of all documents, grouped by document in input order
        """
        all_segments = []

        for document in documents:
            logger.info(f"Chunking document: {document.name}")
            all_segments.extend(self.chunk_document(document.content, document.document_id))

        logger.info(f"Created {len(all_segments)} segments from {len(documents)} documents")
        return all_segments

    def chunk_document(self, content: str, document_id: str) -> List[Segment]:
        """
        Split one document into segments.

        Phase 1 computes raw (start, end) spans from landmarks and size
        constraints. Phase 2 trims them, drops empties and assigns final
        indices and overlap snippets.

        Args:
            content: Raw document text
            document_id: Id of the source document

        Returns:
            Ordered segments; empty for empty or whitespace-only input
        """
        if not content or not content.strip():
            return []

        landmarks = detect_landmarks(content)
        spans = self.calculate_spans(content, landmarks)
        segments = self._assemble_segments(content, spans, document_id)

        logger.debug(
            f"Segmented {document_id}: {len(content)} chars, "
            f"{len(landmarks)} landmarks, {len(segments)} segments"
        )
        return segments

    def calculate_spans(self, text: str, landmarks: List[Landmark]) -> List[Span]:
        """
        Calculate raw segment spans.

        Consecutive spans overlap: each span after the first starts
        ``overlap_size`` characters before the previous one ended.

        Args:
            text: Document text
            landmarks: Structural landmarks of the text

        Returns:
            List of (start, end) offsets covering the whole text
        """
        cfg = self.config
        length = len(text)
        split_points = [
            landmark.position for landmark in landmarks
            if landmark.kind == HEADER
            or (cfg.preserve_paragraphs and landmark.kind == PARAGRAPH_BREAK)
        ]

        spans: List[Span] = []
        current = 0

        while current + cfg.target_size < length:
            target_end = current + cfg.target_size

            # Split right before a landmark if the segment is already big enough
            landmark_end = next(
                (
                    position for position in split_points
                    if current + cfg.min_size < position <= target_end + LANDMARK_LOOKAHEAD
                ),
                None
            )
            if landmark_end is not None:
                end = landmark_end
            else:
                end = self.find_split_point(text, target_end, lower=current + 1)

            if end - current > cfg.max_size:
                end = self.find_split_point(
                    text,
                    current + cfg.max_size,
                    lower=current + 1,
                    upper=current + cfg.max_size
                )

            if end - current < cfg.min_size and end < length:
                end = self.find_split_point(
                    text,
                    current + cfg.min_size,
                    lower=current + cfg.min_size,
                    upper=current + cfg.max_size
                )

            # Always make progress
            if end <= current:
                end = current + cfg.target_size

            spans.append((current, end))
            current = max(current + 1, end - cfg.overlap_size)

        spans.append((current, length))
        return spans

    def find_split_point(
        self,
        text: str,
        target: int,
        lower: Optional[int] = None,
        upper: Optional[int] = None
    ) -> int:
        """
        Find the best split position near ``target``.

        Picks the sentence boundary or paragraph break closest to the target
        within +/- SENTENCE_SEARCH_WINDOW characters, restricted to
        [lower, upper]. Without one, falls back to a word boundary.

        Args:
            text: Document text
            target: Preferred split offset
            lower: Smallest acceptable offset
            upper: Largest acceptable offset

        Returns:
            Split offset
        """
        if not self.config.preserve_sentences:
            return target

        lower = 0 if lower is None else lower
        upper = len(text) if upper is None else min(upper, len(text))

        window_start = max(0, target - SENTENCE_SEARCH_WINDOW)
        window_end = min(len(text), target + SENTENCE_SEARCH_WINDOW)

        candidates = find_sentence_boundaries(text, window_start, window_end)
        candidates += find_paragraph_breaks(text, window_start, window_end)
        candidates = [position for position in candidates if lower <= position <= upper]

        if candidates:
            return min(candidates, key=lambda position: abs(position - target))

        return self._word_boundary(text, target, lower, upper)

    def _word_boundary(self, text: str, target: int, lower: int, upper: int) -> int:
        """Nearest preceding space, or the target itself if that shrinks too much."""
        space = text.rfind(' ', max(lower, 0), target + 1)
        if space != -1 and space > target - WORD_FALLBACK_TOLERANCE and space + 1 <= upper:
            return space + 1

        if self.config.search_forward or lower >= target:
            space = text.find(' ', target, min(upper, target + WORD_FALLBACK_TOLERANCE))
            if space != -1:
                return space + 1

        return target

    def _assemble_segments(self, text: str, spans: List[Span], document_id: str) -> List[Segment]:
        """Trim spans, drop empties, then index and link neighbours."""
        overlap = self.config.overlap_size

        trimmed: List[Tuple[int, int, str]] = []
        for start, end in spans:
            piece = text[start:end]
            content = piece.strip()
            if not content:
                continue
            leading = len(piece) - len(piece.lstrip())
            trimmed.append((start + leading, start + leading + len(content), content))

        total = len(trimmed)
        segments = []
        for idx, (start, end, content) in enumerate(trimmed):
            previous = trimmed[idx - 1][2] if idx > 0 else ""
            following = trimmed[idx + 1][2] if idx < total - 1 else ""
            section_title = detect_section_title(content)

            segments.append(Segment(
                id=f"{document_id}_chunk_{idx}",
                source_document_id=document_id,
                content=content,
                index=idx,
                total_segments=total,
                start_offset=start,
                end_offset=end,
                word_count=len(content.split()),
                section_title=section_title,
                has_header=section_title is not None,
                overlap_with_previous=previous[-overlap:] if previous and overlap else "",
                overlap_with_next=following[:overlap] if following else "",
            ))

        return segments
