"""In-memory TTL cache with LRU eviction for API responses.

Entries expire lazily: an expired entry stays in memory until it is read,
swept by clean_expired(), evicted, or cleared. AutoCleanCache adds a
background asyncio task that sweeps on a fixed interval.

Note: this cache is not distributed and data is lost when the process exits.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from relay.core.logging import get_logger
from relay.exceptions import InvalidConfigurationError

logger = get_logger(__name__)

EvictCallback = Callable[[str, Any], None]

DEFAULT_TTL_MS = 60_000
DEFAULT_MAX_SIZE = 1000
DEFAULT_CLEANUP_INTERVAL_MS = 60_000


@dataclass
class CacheEntry:
    """Cache entry with TTL and access tracking (times in clock seconds)."""

    value: Any
    expires_at: float
    last_accessed_at: float

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        return now > self.expires_at


class ExpiringCache:
    """TTL + LRU key-value store.

    Capacity is only enforced when inserting a new key: if the cache is full,
    the least recently accessed entry is evicted first. The on_evict callback
    runs synchronously for every removed entry, whatever removed it.

    Intended for single-threaded asyncio use; no method suspends.
    """

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_size: int = DEFAULT_MAX_SIZE,
        on_evict: Optional[EvictCallback] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_ms: Default time-to-live in milliseconds
            max_size: Maximum number of entries
            on_evict: Called with (key, value) whenever an entry is removed
            clock: Time source returning seconds (default: time.monotonic)
        """
        if ttl_ms < 1:
            raise InvalidConfigurationError("ttl_ms must be a positive integer")
        if max_size < 1:
            raise InvalidConfigurationError("max_size must be a positive integer")

        self.ttl_ms = ttl_ms
        self.max_size = max_size
        self._on_evict = on_evict
        self._clock = clock or time.monotonic
        # Insertion order doubles as recency order: get() and set() move
        # the key to the end, which breaks ties between equal access times.
        self._data: Dict[str, CacheEntry] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a value, removing it if it has expired.

        Args:
            key: The cache key to look up
            default: Returned when the key is absent or expired

        Returns:
            The cached value, or default
        """
        entry = self._data.get(key)
        if entry is None:
            return default

        now = self._clock()
        if entry.is_expired(now):
            self.delete(key)
            return default

        entry.last_accessed_at = now
        self._data[key] = self._data.pop(key)
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Store a value.

        Args:
            key: The cache key
            value: The value to store
            ttl_ms: Time-to-live in milliseconds (default: the cache TTL)
        """
        if key not in self._data and len(self._data) >= self.max_size:
            self._evict_lru()

        now = self._clock()
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        self._data.pop(key, None)
        self._data[key] = CacheEntry(
            value=value, expires_at=now + ttl / 1000, last_accessed_at=now
        )

    def delete(self, key: str) -> bool:
        """Remove an entry.

        Returns:
            True if the key was present (expired or not), False otherwise
        """
        entry = self._data.pop(key, None)
        if entry is None:
            return False
        if self._on_evict is not None:
            self._on_evict(key, entry.value)
        return True

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired (expired entries are removed)."""
        entry = self._data.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self.delete(key)
            return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def clear(self) -> None:
        """Remove every entry, notifying on_evict for each."""
        entries = self._data
        self._data = {}
        if self._on_evict is not None:
            for key, entry in entries.items():
                self._on_evict(key, entry.value)

    def size(self) -> int:
        """Number of physically stored entries, expired ones included."""
        return len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> List[str]:
        """All stored keys.

        Expired entries that have not been swept yet are still listed; call
        clean_expired() first, or check each key with has(), when only live
        keys are wanted.
        """
        return list(self._data)

    def delete_prefix(self, prefix: str) -> int:
        """Remove every stored key that starts with prefix.

        Returns:
            Number of entries removed
        """
        matching = [key for key in self._data if key.startswith(prefix)]
        for key in matching:
            self.delete(key)
        return len(matching)

    def _evict_lru(self) -> None:
        """Evict the single least recently accessed entry (linear scan)."""
        if not self._data:
            return
        oldest_key = min(self._data, key=lambda k: self._data[k].last_accessed_at)
        logger.debug(f"Cache full ({self.max_size}), evicting LRU key: {oldest_key}")
        self.delete(oldest_key)

    def clean_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired_keys:
            self.delete(key)
        if expired_keys:
            logger.debug(f"Swept {len(expired_keys)} expired cache entries")
        return len(expired_keys)

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics.

        Returns:
            Dict with size, max_size, default_ttl_ms and per-entry remaining
            TTL and idle time (milliseconds).
        """
        now = self._clock()
        return {
            "size": len(self._data),
            "max_size": self.max_size,
            "default_ttl_ms": self.ttl_ms,
            "entries": [
                {
                    "key": key,
                    "remaining_ttl_ms": (entry.expires_at - now) * 1000,
                    "idle_time_ms": (now - entry.last_accessed_at) * 1000,
                }
                for key, entry in self._data.items()
            ],
        }


class AutoCleanCache(ExpiringCache):
    """ExpiringCache that sweeps expired entries on a fixed interval.

    The sweep task starts on construction, so the cache must be created
    inside a running event loop. Call stop_cleanup() (or clear()) before
    discarding the cache.
    """

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_size: int = DEFAULT_MAX_SIZE,
        on_evict: Optional[EvictCallback] = None,
        cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(ttl_ms=ttl_ms, max_size=max_size, on_evict=on_evict, clock=clock)
        if cleanup_interval_ms < 1:
            raise InvalidConfigurationError("cleanup_interval_ms must be a positive integer")
        self.cleanup_interval_ms = cleanup_interval_ms
        self._cleanup_task: Optional[asyncio.Task] = None
        self._start_cleanup()

    def _start_cleanup(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise RuntimeError(
                "AutoCleanCache must be created inside a running event loop"
            ) from e
        self._cleanup_task = loop.create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        interval = self.cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.clean_expired()

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def stop_cleanup(self) -> None:
        """Cancel the sweep task. Safe to call more than once."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
            logger.debug("Cache cleanup task stopped")

    def clear(self) -> None:
        """Stop the sweep task, then remove every entry."""
        self.stop_cleanup()
        super().clear()
