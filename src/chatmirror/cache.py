"""
In-memory TTL cache for remote reads.

Shields the remote service from redundant chat/contact/profile fetches.
Capacity-bounded with FIFO eviction: keys are per session (and per chat),
so churn is low and insertion order is a good enough age signal.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 5 * 60
DEFAULT_MAX_ENTRIES = 100


@dataclass
class CacheEntry:
    """A cached value and the monotonic instant it stops being valid."""

    key: str
    value: Any
    expires_at: float


class TTLCache:
    """
    Keyed, time-expiring store.

    A read past expiry evicts the entry and reports it absent.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._max_entries = max(1, max_entries)
        self._default_ttl = default_ttl
        self._clock = clock

    def _live_entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug(f"Expired: {key}")
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or `default` if absent or expired."""
        entry = self._live_entry(key)
        if entry is None:
            return default
        logger.debug(f"Hit: {key}")
        return entry.value

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key (see `CacheKeys`)
            value: Payload to cache
            ttl: Seconds until expiry; defaults to the cache-wide TTL
        """
        ttl = self._default_ttl if ttl is None else ttl

        # Re-setting moves the key to the back of the eviction queue
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"Evicted oldest: {oldest}")

        self._entries[key] = CacheEntry(key, value, self._clock() + ttl)
        logger.debug(f"Set: {key} (TTL: {ttl}s)")

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate(self, prefix: str) -> int:
        """
        Drop every entry whose key starts with `prefix`.

        Returns:
            Number of entries removed.
        """
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Cleared {len(doomed)} entries with prefix: {prefix}")
        return len(doomed)

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.debug(f"Cleared all {size} entries")

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {"size": len(self._entries), "max_entries": self._max_entries}


class CacheKeys:
    """Key builders for the cached views."""

    @staticmethod
    def chats(session: str) -> str:
        return f"chats:{session}"

    @staticmethod
    def contacts(session: str) -> str:
        return f"contacts:{session}"

    @staticmethod
    def profile(session: str) -> str:
        return f"profile:{session}"
