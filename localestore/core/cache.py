"""
Short-TTL cache for derived and aggregated reads.
Authoritative records never live here; they always go through the persistence adapter.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..utils.object_utils import deep_clone
from ..utils.storage_utils import current_timestamp, estimate_storage_size

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: int


class TTLCache:
    """In-memory cache keyed by logical operation name, with hit/miss accounting."""

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the cache.

        Args:
            ttl_ms: Time to live in milliseconds
            clock: Millisecond clock, defaults to wall time
        """
        self.ttl_ms = ttl_ms
        self._clock = clock or current_timestamp
        self._entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def _is_expired(self, entry: CacheEntry, now: int) -> bool:
        return now - entry.stored_at > self.ttl_ms

    def get_cached(self, key: str) -> Optional[Any]:
        """
        Get a value from cache.

        Args:
            key: Logical operation name

        Returns:
            A copy of the cached value, or None if absent or past TTL
        """
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            self.misses += 1
            logger.debug(f"Cache entry expired: {key}")
            return None

        self.hits += 1
        logger.debug(f"Cache hit for {key}")
        return deep_clone(entry.value)

    def set_cached(self, key: str, value: Any):
        """Store a snapshot of value under key."""
        self._entries[key] = CacheEntry(key=key, value=deep_clone(value), stored_at=self._clock())
        logger.debug(f"Cached {key}")

    def peek(self, key: str) -> Optional[Any]:
        """Return a live entry's value without touching hit/miss counters."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry, self._clock()):
            return None
        return deep_clone(entry.value)

    def invalidate(self, key: Optional[str] = None):
        """Drop a single key, or everything when key is None."""
        if key is None:
            self.clear()
            return
        self._entries.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate cache entries whose key contains pattern.

        Args:
            pattern: Substring to match

        Returns:
            Number of entries removed
        """
        keys_to_delete = [key for key in self._entries if pattern in key]
        for key in keys_to_delete:
            del self._entries[key]

        logger.debug(f"Invalidated {len(keys_to_delete)} cache entries matching {pattern!r}")
        return len(keys_to_delete)

    def sweep_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def keys(self):
        return list(self._entries.keys())

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if self._is_expired(entry, now))
        lookups = self.hits + self.misses
        hit_rate = self.hits / lookups if lookups > 0 else 0

        return {
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": hit_rate,
            "memory_usage_estimate": sum(
                len(key.encode("utf-8")) + estimate_storage_size(entry.value)
                for key, entry in self._entries.items()
            ),
        }

    def clear(self):
        """Clear the cache."""
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        logger.debug("Locale cache cleared")
