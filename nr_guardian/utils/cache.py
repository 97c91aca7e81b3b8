"""
In-memory response cache with TTL expiry and LRU eviction.

Services cache read-only NerdGraph results (dashboard lists, event types)
so repeated CLI lookups in one process do not spend rate-limit budget.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config.models import CacheConfig

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value with its expiry instant."""

    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResponseCache:
    """
    TTL cache keyed by operation name and parameters.

    Entries expire after ``config.ttl`` seconds; once ``config.max_size`` is
    reached the least recently used entry is evicted.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @staticmethod
    def generate_key(namespace: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build a stable cache key.

        Args:
            namespace: Operation name, e.g. ``"dashboards"``
            params: Parameters that distinguish results within the namespace

        Returns:
            ``namespace:<sha256 of the sorted params>``
        """
        payload = json.dumps(params or {}, sort_keys=True, default=str)
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
        return f"{namespace}:{digest}"

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        if not self.enabled:
            return None

        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self.enabled:
            return

        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.config.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {evicted}")

        expires_at = self._clock() + (ttl if ttl is not None else self.config.ttl)
        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate(self, namespace: str) -> int:
        """
        Drop every entry in a namespace.

        Returns:
            Number of entries removed
        """
        prefix = f"{namespace}:"
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for ``key`` or await ``fetch`` and cache it.

        Args:
            key: Cache key
            fetch: Coroutine factory producing the value on a miss
            ttl: Override of the configured TTL

        Returns:
            Cached or freshly fetched value
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            return cached

        value = await fetch()
        self.set(key, value, ttl)
        return value

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "enabled": self.enabled,
            "size": len(self._entries),
            "max_size": self.config.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }
