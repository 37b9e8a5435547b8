"""Concrete implementation of the in-memory TTL Caching Service.

Entries carry their own TTL, chosen per resource kind by the fetchers.
Expiry is lazy: a stale entry reads as absent but stays stored until it is
overwritten, invalidated or swept, which also keeps it available as an ETag
source for conditional revalidation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

# Domain Layer Imports
from ghstats.domain.interfaces.cache import CacheService
from ghstats.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class CacheEntry:
    """Internal representation of a cache entry. Replaced wholesale, never mutated."""
    value: Any
    fetched_at: float
    ttl: float
    etag: Optional[str] = None

    def is_fresh(self, now: float) -> bool:
        return now < self.fetched_at + self.ttl


class CachingServiceImpl(CacheService):
    """In-memory TTL cache guarded by an asyncio lock."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the caching service.

        Args:
            max_entries: Upper bound on stored entries; the oldest by
                ``fetched_at`` are evicted first.
            clock: Time source, injectable for tests.
        """
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._lock = asyncio.Lock()
        self.max_entries = max_entries
        self._clock = clock
        logger.info(f"CachingService initialized. max_entries={max_entries}")

    def _evict_overflow(self) -> None:
        """Drops the oldest entries while over the size limit. Caller holds the lock."""
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].fetched_at)[:overflow]
        for key, _ in oldest:
            del self._entries[key]
            logger.debug(f"Evicted cache entry over size limit: key={key}")

    # --- CacheService Interface Implementation ---

    async def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves a fresh item, or None when missing or expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(self._clock()):
                logger.debug(f"Cache hit for key: {key}")
                return entry.value
        logger.debug(f"Cache miss for key: {key}")
        return None

    async def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """Returns the stored entry even when it has expired."""
        async with self._lock:
            return self._entries.get(key)

    async def set(
        self,
        key: CacheKey,
        value: Any,
        ttl: float,
        etag: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Stores an item, dropping writes that predate the last invalidation."""
        async with self._lock:
            current = self._generations.get(key, 0)
            if generation is not None and generation < current:
                logger.debug(f"Dropped stale write for key={key} (generation {generation} < {current})")
                return False
            self._generations.setdefault(key, current)
            self._entries[key] = CacheEntry(value=value, fetched_at=self._clock(), ttl=ttl, etag=etag)
            self._evict_overflow()
        logger.debug(f"Stored item in cache: key={key}, ttl={ttl}s")
        return True

    async def invalidate(self, key: CacheKey) -> None:
        """Deletes the entry and bumps the key's generation."""
        async with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug(f"Invalidated cache key: {key}")

    async def invalidate_all(self) -> None:
        """Invalidates every key seen so far."""
        async with self._lock:
            for key in set(self._generations) | set(self._entries):
                self._generations[key] = self._generations.get(key, 0) + 1
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Invalidated all cache entries ({count} removed).")

    async def is_fresh(self, key: CacheKey) -> bool:
        async with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_fresh(self._clock())

    async def generation(self, key: CacheKey) -> int:
        """Current generation of a key; 0 until it is first invalidated.

        Asking starts tracking the key, so invalidate_all also covers keys
        whose first fetch is still in flight.
        """
        async with self._lock:
            return self._generations.setdefault(key, 0)

    async def sweep(self) -> int:
        """Deletes expired entries. Returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, v in self._entries.items() if not v.is_fresh(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries.")
        return len(expired)

    async def occupancy(self) -> Tuple[int, int]:
        async with self._lock:
            now = self._clock()
            expired = sum(1 for entry in self._entries.values() if not entry.is_fresh(now))
            return len(self._entries), expired

    def __len__(self) -> int:
        return len(self._entries)
