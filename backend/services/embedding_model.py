"""Embedding model integration with Hugging Face Inference API."""
import asyncio
import time
import logging
from typing import List, Optional

import httpx

from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL, EMBEDDING_TIMEOUT, EMBEDDING_CACHE_TTL
from services.cache_service import CacheService
from services.errors import EmbeddingError, InvalidInputError

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "embedding"
MAX_BACKOFF = 60.0

# Status codes that are not worth retrying
FATAL_STATUS_CODES = {
    401: ("AUTH_FAILED", "Invalid API key"),
    402: ("QUOTA_EXCEEDED", "Inference quota exceeded"),
    403: ("AUTH_FAILED", "API key lacks access to the model"),
    429: ("RATE_LIMITED", "Rate limit exceeded. Please try again later."),
}


class EmbeddingModel:
    """Async client for the Hugging Face feature-extraction endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        cache: Optional[CacheService] = None,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = EMBEDDING_TIMEOUT,
        cache_ttl: float = EMBEDDING_CACHE_TTL,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: sentence-transformers/all-mpnet-base-v2)
            cache: Optional cache; embeddings are stored under the "embedding" namespace
            max_retries: Maximum attempts for 503 errors, timeouts and network errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
            cache_ttl: Seconds a cached embedding stays valid
            transport: Optional httpx transport (used by tests)
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.cache = cache
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.transport = transport
        self.api_url = f"https://api-inference.huggingface.co/models/{model_name}"

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Raises:
            InvalidInputError: If text is empty
            EmbeddingError: If the provider fails after all retries
        """
        if not text or not text.strip():
            raise InvalidInputError("Text cannot be empty")

        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str], max_retries: Optional[int] = None) -> List[List[float]]:
        """
        Generate embeddings for multiple texts, preserving input order.

        Cached texts are served from the cache; the rest go to the provider
        in a single request.

        Args:
            texts: Texts to embed
            max_retries: Attempt budget for this call; defaults to the client's

        Returns:
            One embedding per input text

        Raises:
            InvalidInputError: If the list is empty or contains an empty text
            EmbeddingError: If the provider fails after all retries
        """
        if not texts:
            raise InvalidInputError("Texts list cannot be empty")
        if any(not text or not text.strip() for text in texts):
            raise InvalidInputError("Texts in a batch cannot be empty")

        embeddings: List[Optional[List[float]]] = [None] * len(texts)
        missing: List[int] = []

        for position, text in enumerate(texts):
            cached = self.cache.get(CACHE_NAMESPACE, self._cache_identifier(text)) if self.cache is not None else None
            if cached is not None:
                embeddings[position] = cached
            else:
                missing.append(position)

        if missing:
            fresh = await self._embed_with_retry([texts[position] for position in missing], max_retries)
            for position, embedding in zip(missing, fresh):
                embeddings[position] = embedding
                if self.cache is not None:
                    self.cache.set(CACHE_NAMESPACE, self._cache_identifier(texts[position]), embedding, ttl=self.cache_ttl)

        if len(missing) < len(texts):
            logger.debug(f"Served {len(texts) - len(missing)} of {len(texts)} embeddings from cache")

        return embeddings

    async def _embed_with_retry(self, texts: List[str], max_retries: Optional[int] = None) -> List[List[float]]:
        """
        Call the HF API with exponential backoff.

        HF free tier models "sleep" and take 15-20s to load on first query, so
        503 responses, timeouts and network errors are retried.

        Raises:
            EmbeddingError: On fatal status codes, malformed responses or
                when all retries are exhausted
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True  # Wait for model to load if sleeping
            }
        }

        attempts = max_retries or self.max_retries
        delay = self.initial_delay
        last_error = None

        for attempt in range(attempts):
            try:
                start_time = time.time()

                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.post(self.api_url, headers=headers, json=payload)

                elapsed = time.time() - start_time

            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                logger.error(f"{last_error} on attempt {attempt + 1}/{attempts}")

            except httpx.RequestError as e:
                last_error = f"Network error: {str(e)}"
                logger.error(f"{last_error} on attempt {attempt + 1}/{attempts}")

            else:
                # Model loading
                if response.status_code == 503:
                    last_error = "Model loading (503)"
                    logger.warning(
                        f"Model loading (503) on attempt {attempt + 1}/{attempts}. "
                        f"Retrying in {delay}s..."
                    )

                elif response.status_code in FATAL_STATUS_CODES:
                    code, message = FATAL_STATUS_CODES[response.status_code]
                    logger.error(f"Hugging Face API error {response.status_code}: {message}")
                    raise EmbeddingError(message, code=code, details={"status": response.status_code})

                elif response.status_code != 200:
                    error_msg = f"API request failed with status {response.status_code}: {response.text}"
                    logger.error(error_msg)
                    raise EmbeddingError(error_msg, details={"status": response.status_code})

                else:
                    embeddings = self._parse_embeddings(response, len(texts))

                    if elapsed > 10.0:
                        logger.info(
                            f"Model loading delay detected: {elapsed:.1f}s for {len(texts)} texts "
                            f"(attempt {attempt + 1})"
                        )
                    else:
                        logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")

                    return embeddings

            if attempt < attempts - 1:
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_BACKOFF)

        error_msg = f"Failed to generate embeddings after {attempts} attempts. Last error: {last_error}"
        logger.error(error_msg)
        raise EmbeddingError(error_msg, code="UNAVAILABLE")

    @staticmethod
    def _parse_embeddings(response: httpx.Response, expected: int) -> List[List[float]]:
        try:
            data = response.json()
            embeddings = [[float(value) for value in vector] for vector in data]
        except (ValueError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}", code="MALFORMED_RESPONSE")

        if len(embeddings) != expected:
            raise EmbeddingError(
                f"Expected {expected} embeddings, got {len(embeddings)}",
                code="MALFORMED_RESPONSE"
            )
        return embeddings

    def _cache_identifier(self, text: str) -> str:
        return f"{self.model_name}:{text}"

    async def warmup(self) -> bool:
        """
        Warm up the model with a dummy query to avoid cold start delays.

        Returns:
            True if warmup successful, False otherwise
        """
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()

            await self.embed_text("warmup query")

            elapsed = time.time() - start_time
            logger.info(f"Model warmup completed in {elapsed:.1f}s")
            return True

        except EmbeddingError as e:
            logger.error(f"Model warmup failed: {str(e)}")
            return False
