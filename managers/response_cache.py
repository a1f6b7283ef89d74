"""Time-windowed memoization of provider responses"""

import json
import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Union

from models.cache import CachedEntry
from models.generation import ProviderRequest, RawProviderResponse

logger = logging.getLogger("Caption_MCP")

DEFAULT_TTL = timedelta(hours=24)

Clock = Callable[[], float]


def cache_key(request: Union[ProviderRequest, Dict[str, Any]]) -> str:
    """Deterministic identity of a request: model, messages and token budget only.

    Nonces and timestamps are left out so logically identical requests
    share a key.
    """
    if isinstance(request, ProviderRequest):
        fields = request.cache_fields()
    else:
        fields = {
            "model": request.get("model"),
            "messages": request.get("messages"),
            "max_tokens": request.get("max_tokens"),
        }
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class ResponseCache:
    """Process-wide response cache with lazy TTL expiry.

    Entries are immutable and replaced wholesale on write, so concurrent
    callers on the event loop never observe a half-updated entry. Stale
    entries are not swept; they read as misses and get overwritten by the
    next successful call for the same key.
    """

    def __init__(self, ttl: Union[timedelta, float] = DEFAULT_TTL, clock: Optional[Clock] = None):
        self.ttl_seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        self._clock = clock or time.time
        self._entries: Dict[str, CachedEntry] = {}
        self._hits = 0
        self._misses = 0
        self._stale = 0
        logger.info(f"Initialized ResponseCache with TTL: {self.ttl_seconds / 3600:g} hours")

    def get(self, key: str) -> Optional[RawProviderResponse]:
        """Return the cached response for ``key`` or None on miss/expiry"""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.age(self._clock()) > self.ttl_seconds:
            logger.debug("Cache entry expired")
            self._stale += 1
            self._misses += 1
            return None
        self._hits += 1
        return entry.response

    def put(self, key: str, response: RawProviderResponse) -> CachedEntry:
        entry = CachedEntry(timestamp=self._clock(), response=response)
        self._entries[key] = entry
        return entry

    def clear(self) -> int:
        count = len(self._entries)
        self._entries = {}
        logger.info(f"Cache cleared ({count} entries removed)")
        return count

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        live = sum(1 for entry in self._entries.values() if entry.age(now) <= self.ttl_seconds)
        return {
            "entries": len(self._entries),
            "live_entries": live,
            "hits": self._hits,
            "misses": self._misses,
            "stale_reads": self._stale,
            "ttl_hours": self.ttl_seconds / 3600,
        }

    def __len__(self) -> int:
        return len(self._entries)
