"""Main entry point for the Lodestar retrieval API."""
import logging
import time

import tiktoken
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import PORT, CORS_ORIGINS, LOG_LEVEL, LOG_FORMAT, SUPABASE_URL, SUPABASE_KEY
from logger import setup_logging
from models.api import RetrieveRequest, RetrieveResponse, Source
from models.retrieval import RetrievalConfig
from services.cache_service import CacheService
from services.context_assembler import ContextAssembler
from services.embedding_model import EmbeddingModel
from services.errors import InvalidInputError, RetrievalError, RetrievalUnavailableError
from services.retrieval_engine import RetrievalEngine
from services.vector_store import InMemorySegmentStore, SupabaseSegmentStore

setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Lodestar Retrieval API",
    description="Segment retrieval, reranking and context assembly for answer generation",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
retrieval_engine: RetrievalEngine = None
cache_service: CacheService = None
tiktoken_encoder = None


def count_tokens(text: str) -> int:
    return len(tiktoken_encoder.encode(text))


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global retrieval_engine, cache_service, tiktoken_encoder

    logger.info("Initializing Lodestar retrieval services...")

    try:
        tiktoken_encoder = tiktoken.get_encoding("o200k_base")
        logger.info("Initialized tiktoken encoder (o200k_base)")

        cache_service = CacheService()

        if SUPABASE_URL and SUPABASE_KEY:
            store = SupabaseSegmentStore()
        else:
            logger.warning("Supabase credentials not set, using in-memory segment store")
            store = InMemorySegmentStore()

        embedding_model = EmbeddingModel(cache=cache_service)
        await embedding_model.warmup()

        retrieval_engine = RetrievalEngine(
            store,
            embedding_model,
            cache=cache_service,
            assembler=ContextAssembler(token_counter=count_tokens)
        )

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.get("/")
async def root():
    return {"status": "ok", "message": "Lodestar Retrieval API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    body = {
        "status": "healthy",
        "service": "lodestar-retrieval",
        "version": "1.0.0"
    }
    if cache_service is not None:
        stats = cache_service.get_stats()
        body["cache"] = {"hits": stats.hits, "misses": stats.misses, "hit_rate": round(stats.hit_rate, 3)}
    return body


def _error_detail(error: RetrievalError) -> dict:
    return {
        "error": {
            "code": error.error.code,
            "message": error.error.message,
            "details": error.error.details
        }
    }


@app.post("/retrieve", response_model=RetrieveResponse)
async def retrieve_endpoint(request: RetrieveRequest) -> RetrieveResponse:
    """
    Retrieve the assembled context for a query.

    Args:
        request: RetrieveRequest with the query and retrieval knobs

    Returns:
        RetrieveResponse with ordered sources, formatted context and confidence

    Raises:
        HTTPException: 400 for invalid input, 503 when retrieval is unavailable
    """
    start_time = time.time()

    config = RetrievalConfig(
        max_sources=request.max_sources,
        min_confidence=request.min_confidence,
        enable_reranking=request.enable_reranking,
        enable_deduplication=request.enable_deduplication,
        max_chunks_per_document=request.max_chunks_per_document
    )

    try:
        logger.info(f"Processing retrieval: {request.query[:100]}...")
        result = await retrieval_engine.retrieve(request.query, config)

    except InvalidInputError as e:
        logger.warning(f"Rejected retrieval request: {e.error.message}")
        raise HTTPException(status_code=400, detail=_error_detail(e))
    except RetrievalUnavailableError as e:
        logger.error(f"Retrieval unavailable: {e.error.message}")
        raise HTTPException(status_code=503, detail=_error_detail(e))
    except Exception as e:
        logger.error(f"Unexpected error processing retrieval: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Internal server error: {str(e)}"
        )

    context = result.context
    sources = [
        Source(
            segment_id=candidate.segment_id,
            document_id=candidate.source_document_id,
            document_name=candidate.source_document_name,
            content=candidate.content,
            index=candidate.index,
            score=candidate.score,
            reranked_score=candidate.reranked_score,
            low_confidence=candidate.low_confidence
        )
        for candidate in context.ordered_candidates
    ]

    total_latency_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Retrieval processed successfully in {total_latency_ms}ms")

    return RetrieveResponse(
        sources=sources,
        total_count=context.total_count,
        confidence=result.confidence,
        issues=result.issues,
        low_confidence=result.low_confidence,
        formatted_context=context.formatted_context,
        total_tokens=context.total_tokens
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Lodestar Retrieval API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
