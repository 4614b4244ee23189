"""LRU + TTL cache of assembled contexts."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable

from .models import Context

CacheKey = tuple[str, str, int, int]


class ContextCache:
    """Caches contexts by ``(session_id, query, max_tokens, log head)``.

    Keying on the session's log head means any newly appended event makes
    older entries unreachable; they age out through LRU or TTL. The
    coordinator appends at least one event per request, so within a session
    only identical requests in flight together see the same head and share
    an entry; a later request always misses.
    """

    def __init__(
        self,
        max_entries: int = 256,
        ttl_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            msg = "max_entries must be positive"
            raise ValueError(msg)
        self._max = max_entries
        self._ttl = ttl_sec
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, Context]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(session_id: str, query: str, max_tokens: int, head: int) -> CacheKey:
        return (session_id, query, max_tokens, head)

    def get(self, key: CacheKey) -> Context | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, context = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return context

    def put(self, key: CacheKey, context: Context) -> None:
        self._entries[key] = (self._clock(), context)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max:
            self._entries.popitem(last=False)

    def invalidate(self, session_id: str | None = None) -> int:
        """Drop entries for *session_id* (or all); returns how many were removed."""
        if session_id is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        stale = [k for k in self._entries if k[0] == session_id]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        return len(self._entries)
