"""Interface for caching mechanisms.

Defines the contract for storing, retrieving, and invalidating fetched
resources, each stored with its own TTL.
"""

import abc
from typing import Any, Optional, Tuple

# Import relevant domain models
from ..models.common import CacheKey


class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @abc.abstractmethod
    async def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves a fresh item from the cache asynchronously.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached item if present and not expired, otherwise None.
            Expired entries are reported as absent but stay stored.
        """
        pass

    @abc.abstractmethod
    async def set(
        self,
        key: CacheKey,
        value: Any,
        ttl: float,
        etag: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Stores an item, replacing any previous entry for the key.

        Args:
            key: The cache key to store the item under.
            value: The item to store. Treated as immutable from now on.
            ttl: Time-to-live in seconds.
            etag: Optional validator returned by the server.
            generation: Generation observed when the fetch started. Writes from
                an older generation than the key's current one are dropped.

        Returns:
            True if the value was stored.
        """
        pass

    @abc.abstractmethod
    async def invalidate(self, key: CacheKey) -> None:
        """Removes the entry for the key and starts a new generation for it."""
        pass

    @abc.abstractmethod
    async def invalidate_all(self) -> None:
        """Invalidates every key the cache has seen."""
        pass

    @abc.abstractmethod
    async def is_fresh(self, key: CacheKey) -> bool:
        """Returns True if the key holds an unexpired entry."""
        pass

    @abc.abstractmethod
    async def get_entry(self, key: CacheKey) -> Optional[Any]:
        """Returns the stored entry (value, fetched_at, ttl, etag), fresh or not."""
        pass

    @abc.abstractmethod
    async def generation(self, key: CacheKey) -> int:
        """Returns the key's current generation, bumped on each invalidation."""
        pass

    @abc.abstractmethod
    async def sweep(self) -> int:
        """Deletes expired entries and returns how many were removed."""
        pass

    @abc.abstractmethod
    async def occupancy(self) -> Tuple[int, int]:
        """Returns (stored entries, of which expired)."""
        pass
