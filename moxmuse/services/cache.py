"""
FallbackCache - Bounded store of the last good result per key.

Features:
- TTL expiry, enforced on read (stale entries are evicted, never returned)
- Max-size eviction by insertion order (oldest-inserted goes first)
- Every entry is tagged with the quality of the result that produced it
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Generic, Literal, TypeVar

from loguru import logger

T = TypeVar("T")

CacheQuality = Literal["primary", "fallback"]


@dataclass
class CacheRecord(Generic[T]):
    """A single cache entry with metadata."""

    key: str
    data: T
    quality: CacheQuality
    timestamp: datetime

    def is_expired(self, ttl: timedelta) -> bool:
        return datetime.now() - self.timestamp > ttl


class FallbackCache:
    """
    Async-compatible TTL + insertion-order LRU cache.

    Keys are fully materialized strings built by the caller.

    Usage:
        cache = FallbackCache(max_size=1000, ttl=timedelta(minutes=5))
        await cache.set("deck_atraxa", cards, "primary")
        record = await cache.get("deck_atraxa")
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: timedelta = timedelta(minutes=5),
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        # dict preserves insertion order; first key is always the oldest
        self._memory: dict[str, CacheRecord[Any]] = {}
        self._max_size = max_size
        self._ttl = ttl
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get(self, key: str) -> CacheRecord[Any] | None:
        """Return the live record for `key`, or None if absent or expired."""
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self._ttl):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:50]} ({entry.quality})")
            return entry

    async def set(self, key: str, data: Any, quality: CacheQuality) -> None:
        """Store `data` under `key`, evicting the oldest entry when full."""
        async with self._lock:
            if key in self._memory:
                # Re-insert so order tracks the refreshed timestamp
                del self._memory[key]
            elif len(self._memory) >= self._max_size:
                self._evict_oldest()

            self._memory[key] = CacheRecord(
                key=key,
                data=data,
                quality=quality,
                timestamp=datetime.now(),
            )
            self._log(f"SET: {key[:50]} ({quality})")

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    def reconfigure(
        self, max_size: int | None = None, ttl: timedelta | None = None
    ) -> None:
        """Change limits in place; shrinking evicts oldest entries immediately."""
        if max_size is not None:
            if max_size < 1:
                raise ValueError("max_size must be at least 1")
            self._max_size = max_size
            while len(self._memory) > self._max_size:
                self._evict_oldest()
        if ttl is not None:
            self._ttl = ttl

    def _evict_oldest(self) -> None:
        oldest_key = next(iter(self._memory), None)
        if oldest_key is None:
            return
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def keys(self) -> list[str]:
        return list(self._memory)

    def size(self) -> int:
        return len(self._memory)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[FallbackCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
