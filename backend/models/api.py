"""API request/response models."""
from typing import List, Optional
from pydantic import BaseModel, Field


class RetrieveRequest(BaseModel):
    """Body of POST /retrieve."""
    query: str
    max_sources: int = Field(default=6, ge=1, le=50)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    enable_reranking: bool = True
    enable_deduplication: bool = True
    max_chunks_per_document: int = Field(default=4, ge=1)


class Source(BaseModel):
    """One assembled candidate."""
    segment_id: str
    document_id: str
    document_name: str
    content: str
    index: Optional[int] = None
    score: float
    reranked_score: float
    low_confidence: bool = False


class RetrieveResponse(BaseModel):
    """Body returned by POST /retrieve."""
    sources: List[Source]
    total_count: int
    confidence: int
    issues: List[str]
    low_confidence: bool
    formatted_context: str
    total_tokens: int
