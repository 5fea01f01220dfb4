"""Configuration management for the Lodestar retrieval service."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
COHERE_API_KEY = os.getenv("COHERE_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "text"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
RERANK_MODEL = os.getenv("RERANK_MODEL", "rerank-english-v3.0")
RERANK_API_URL = "https://api.cohere.ai/v1/rerank"

# Chunking Configuration (characters)
CHUNK_TARGET_SIZE = 500
CHUNK_MIN_SIZE = 400
CHUNK_MAX_SIZE = 600
CHUNK_OVERLAP = 125

# Retrieval Configuration
MIN_SIMILARITY = float(os.getenv("MIN_SIMILARITY", "0.5"))
SEARCH_LIMIT = 20
MAX_SOURCES = 6
MAX_CHUNKS_PER_DOCUMENT = 4
RERANK_TOP_K = 5
RERANK_MIN_SCORE = 0.3
TERM_BOOST_FACTOR = 1.2
HIGH_RELEVANCE_THRESHOLD = 0.65  # Counts toward confidence density
LOW_CONFIDENCE_THRESHOLD = 0.6  # 60% confidence
FALLBACK_RESULT_COUNT = 3

# Cache Configuration (seconds)
EMBEDDING_CACHE_TTL = 86400 * 7
RERANK_CACHE_TTL = 3600
RETRIEVAL_CACHE_TTL = 300

# Ingestion
EMBEDDING_BATCH_SIZE = 32

# Query-time embedding attempts (ingestion uses the client default of 5)
QUERY_EMBEDDING_MAX_RETRIES = int(os.getenv("QUERY_EMBEDDING_MAX_RETRIES", "2"))

# HTTP timeouts (seconds)
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
RERANK_TIMEOUT = float(os.getenv("RERANK_TIMEOUT", "10"))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
