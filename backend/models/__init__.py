"""Data models for the Lodestar retrieval service."""
from .document import Document, ExtractedText
from .chunk import Segment, StoredSegment, Landmark, ChunkConfig
from .retrieval import (
    RetrievalCandidate,
    RetrievalConfig,
    AssembledContext,
    RetrievalResult,
    ValidationResult,
)
from .api import RetrieveRequest, RetrieveResponse, Source

__all__ = [
    "Document",
    "ExtractedText",
    "Segment",
    "StoredSegment",
    "Landmark",
    "ChunkConfig",
    "RetrievalCandidate",
    "RetrievalConfig",
    "AssembledContext",
    "RetrievalResult",
    "ValidationResult",
    "RetrieveRequest",
    "RetrieveResponse",
    "Source",
]
