"""Error taxonomy for ingestion and retrieval."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ErrorDetail:
    """Structured description of a failure."""
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class RetrievalError(Exception):
    """Base exception carrying structured error information."""

    default_code = "RETRIEVAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.error = ErrorDetail(
            code=code or self.default_code,
            message=message,
            details=details or {}
        )
        super().__init__(message)


class InvalidInputError(RetrievalError, ValueError):
    """Empty query or empty document. Raised before any work is done."""
    default_code = "INVALID_INPUT"


class RetrievalUnavailableError(RetrievalError):
    """Every fallback tier failed; no result can be produced."""
    default_code = "RETRIEVAL_UNAVAILABLE"


class EmbeddingError(RetrievalError):
    """Embedding provider failure (rate limit, auth, quota, network)."""
    default_code = "EMBEDDING_ERROR"


class RerankError(RetrievalError):
    """A single rerank tier failed."""
    default_code = "RERANK_ERROR"


class DimensionMismatchError(RetrievalError, ValueError):
    """Two vectors of different dimensionality were compared."""
    default_code = "DIMENSION_MISMATCH"


class UnsupportedFileError(RetrievalError):
    """The file type is not supported or the file is corrupt."""
    default_code = "UNSUPPORTED_FILE"


class StoreError(RetrievalError):
    """Persistence layer failure."""
    default_code = "STORE_ERROR"
