"""Segment (chunk) data models."""
from dataclasses import dataclass, field
from typing import Optional, List

from config import CHUNK_TARGET_SIZE, CHUNK_MIN_SIZE, CHUNK_MAX_SIZE, CHUNK_OVERLAP

HEADER = "header"
PARAGRAPH_BREAK = "paragraph_break"
LIST_ITEM = "list_item"


@dataclass(frozen=True)
class Landmark:
    """Structural feature detected in raw text. Never persisted."""
    position: int
    text: str
    level: int
    kind: str  # HEADER, PARAGRAPH_BREAK or LIST_ITEM


@dataclass(frozen=True)
class ChunkConfig:
    """Size constraints for segmentation, in characters."""
    target_size: int = CHUNK_TARGET_SIZE
    min_size: int = CHUNK_MIN_SIZE
    max_size: int = CHUNK_MAX_SIZE
    overlap_size: int = CHUNK_OVERLAP
    preserve_sentences: bool = True
    preserve_paragraphs: bool = True
    # Also consider the nearest following space when no sentence boundary exists
    search_forward: bool = False

    def __post_init__(self):
        if min(self.target_size, self.min_size, self.max_size) <= 0:
            raise ValueError("Chunk sizes must be positive")
        if self.overlap_size < 0:
            raise ValueError("overlap_size cannot be negative")
        if not self.min_size <= self.target_size <= self.max_size:
            raise ValueError("Chunk sizes must satisfy min_size <= target_size <= max_size")
        if self.overlap_size >= self.min_size:
            raise ValueError("overlap_size must be smaller than min_size")


@dataclass(frozen=True)
class Segment:
    """A bounded span of a source document, the atomic unit of retrieval."""
    id: str  # Format: "{document_id}_chunk_{index}"
    source_document_id: str
    content: str
    index: int
    total_segments: int
    start_offset: int
    end_offset: int
    word_count: int
    section_title: Optional[str] = None
    has_header: bool = False
    overlap_with_previous: str = ""
    overlap_with_next: str = ""


@dataclass(frozen=True)
class StoredSegment:
    """Segment as read back from persistence, with its embedding."""
    segment: Segment
    source_document_name: str
    embedding: List[float] = field(default_factory=list)
