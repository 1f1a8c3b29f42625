"""Query cache — process-local store of query results with a TTL.

Entries are keyed by a signature of (table, query options). Staleness is
checked lazily when an entry is read; there is no background sweeper.
Writes to a table must call invalidate(table) before relying on a fresh
read of that table.

The store is bounded by cachetools.LRUCache so an unbounded variety of
filters cannot grow memory without limit.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from cachetools import LRUCache

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    signature: str
    payload: Any
    created_at: float


class QueryCache:
    """In-memory TTL cache for read queries. One instance per process."""

    def __init__(
        self,
        ttl: float | None = None,
        maxsize: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl = settings.query_cache_ttl_seconds if ttl is None else ttl
        self._timer = timer
        self._entries: LRUCache = LRUCache(maxsize=maxsize or settings.query_cache_max_entries)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_signature(table: str, options: dict[str, Any]) -> str:
        """Deterministic key — independent of mapping key order."""
        normalized = json.dumps(options, sort_keys=True, ensure_ascii=False, default=str)
        digest = hashlib.sha256(normalized.encode()).hexdigest()[:32]
        return f"{table}:{digest}"

    def _expired(self, entry: CacheEntry) -> bool:
        return self._timer() - entry.created_at > self.ttl

    def get(self, signature: str) -> Any | None:
        """Return the cached payload, or None on miss / expiry."""
        entry = self._entries.get(signature)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry):
            del self._entries[signature]
            self.misses += 1
            logger.debug("Cache EXPIRED | key=%s", signature)
            return None
        self.hits += 1
        logger.info("Cache HIT | key=%s", signature)
        return entry.payload

    def set(self, signature: str, payload: Any):
        self._entries[signature] = CacheEntry(signature, payload, self._timer())
        logger.debug("Cache SET | key=%s | ttl=%ss", signature, self.ttl)

    def invalidate(self, table_prefix: str) -> int:
        """Drop every entry whose table name starts with the prefix."""
        doomed = [
            key for key in list(self._entries.keys())
            if key.partition(":")[0].startswith(table_prefix)
        ]
        for key in doomed:
            self._entries.pop(key, None)
        if doomed:
            logger.info("Cache invalidated %d keys | table=%s", len(doomed), table_prefix)
        return len(doomed)

    def invalidate_all(self):
        size = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared | keys=%d", size)

    def stats(self) -> dict[str, Any]:
        """Live entry count and signatures, for debugging surfaces."""
        for key in [k for k, e in list(self._entries.items()) if self._expired(e)]:
            self._entries.pop(key, None)
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "ttl": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }
