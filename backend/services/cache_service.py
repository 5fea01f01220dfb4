"""In-process TTL cache shared by the embedding, rerank and retrieval stages."""
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600  # 1 hour


@dataclass
class CacheStats:
    """Hit/miss counters."""
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CacheService:
    """
    Namespaced, time-expiring key/value cache.

    Keys are ``"{namespace}:{md5(identifier)[:16]}"``. Writes are
    last-writer-wins; a lock guards the underlying dict so concurrent
    requests can share one instance.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: Seconds an entry lives when set() gets no ttl
            max_entries: Oldest entries are evicted beyond this size
            clock: Time source, injectable for tests
        """
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @staticmethod
    def make_key(namespace: str, identifier: str) -> str:
        digest = hashlib.md5(identifier.encode("utf-8")).hexdigest()[:16]
        return f"{namespace}:{digest}"

    def get(self, namespace: str, identifier: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        key = self.make_key(namespace, identifier)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[1] > now:
                self._stats.hits += 1
                return entry[0]
            if entry is not None:
                del self._entries[key]
            self._stats.misses += 1
            return None

    def set(self, namespace: str, identifier: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value for ``ttl`` seconds (default_ttl if omitted)."""
        key = self.make_key(namespace, identifier)
        expiry = self._clock() + (ttl if ttl is not None else self.default_ttl)

        with self._lock:
            self._entries[key] = (value, expiry)
            if len(self._entries) > self.max_entries:
                self._evict()

    def invalidate(self, namespace: str) -> int:
        """
        Drop every entry of a namespace.

        Returns:
            Number of entries removed
        """
        prefix = f"{namespace}:"
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]

        if keys:
            logger.info(f"Invalidated {len(keys)} cache entries in namespace '{namespace}'")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._stats.hits, misses=self._stats.misses)

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        # Caller holds the lock
        now = self._clock()
        expired = [key for key, (_, expiry) in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1][1])[:overflow]
            for key, _ in oldest:
                del self._entries[key]
