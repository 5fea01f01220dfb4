"""Services for the Lodestar retrieval service."""
from .errors import (
    ErrorDetail,
    RetrievalError,
    InvalidInputError,
    RetrievalUnavailableError,
    EmbeddingError,
    RerankError,
    DimensionMismatchError,
    UnsupportedFileError,
    StoreError,
)
from .cache_service import CacheService, CacheStats
from .document_loader import DocumentLoader
from .chunking_engine import ChunkingEngine
from .embedding_model import EmbeddingModel
from .vector_store import SegmentStore, InMemorySegmentStore, SupabaseSegmentStore
from .reranker import Reranker, RerankOutcome, CohereRerankStrategy, LocalScoringStrategy, OriginalOrderStrategy
from .context_assembler import ContextAssembler
from .answer_validator import AnswerValidator
from .retrieval_engine import RetrievalEngine

__all__ = [
    'ErrorDetail', 'RetrievalError', 'InvalidInputError', 'RetrievalUnavailableError', 'EmbeddingError',
    'RerankError', 'DimensionMismatchError', 'UnsupportedFileError', 'StoreError',
    'CacheService', 'CacheStats', 'DocumentLoader', 'ChunkingEngine', 'EmbeddingModel',
    'SegmentStore', 'InMemorySegmentStore', 'SupabaseSegmentStore',
    'Reranker', 'RerankOutcome', 'CohereRerankStrategy', 'LocalScoringStrategy', 'OriginalOrderStrategy',
    'ContextAssembler', 'AnswerValidator', 'RetrievalEngine',
]
