"""
Bounded TTL Cache

Process-local LRU cache with per-entry expiry. Used for:
- variant -> seller mappings (VARIANT_CACHE_TTL_SECONDS)
- seller -> origin resolutions (SELLER_CACHE_TTL_SECONDS)
- computed checkout rate lists (RATE_CACHE_TTL_SECONDS)

Both get() and set() count as a touch. Expired entries are dropped lazily
when read. Safe for single-threaded async usage without locks.

Usage:
    cache = TTLCache(ttl_seconds=840, max_entries=3000)
    rates = cache.get(key)
    if rates is None:
        rates = await compute()
        cache.set(key, rates)
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    LRU cache with TTL.

    Attributes:
        name: Label used in log lines
        ttl_seconds: Default time-to-live for entries
        max_entries: Entry cap; the least recently touched entry goes first
    """

    def __init__(self, ttl_seconds: int = 3600, max_entries: int = 3000, name: str = "cache"):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        # key -> (expires_at, value)
        self._cache: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _now(self) -> float:
        return time.monotonic()

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        expires_at, value = entry
        if self._now() >= expires_at:
            del self._cache[key]
            self._misses += 1
            logger.debug(f"[CACHE] {self.name}: expired {key!r}")
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        return value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if key in self._cache:
            self._cache.move_to_end(key)
        self._cache[key] = (self._now() + max(0.0, float(ttl)), value)

        while len(self._cache) > self.max_entries:
            evicted_key, _ = self._cache.popitem(last=False)
            self._evictions += 1
            logger.debug(f"[CACHE] {self.name}: evicted {evicted_key!r} (capacity)")

    def delete(self, key: Hashable) -> bool:
        return self._cache.pop(key, None) is not None

    def size(self) -> int:
        return len(self._cache)

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        """Clear all cached entries."""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"[CACHE] {self.name}: cleared {count} entries")

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "name": self.name,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
            "size": len(self._cache),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "evictions": self._evictions,
        }
