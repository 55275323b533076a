"""
In-memory Request Cache for composite check-in fetch results.

One entry per (page, page size, date range, status, guard, site) slot.
Sort options and the exact expanded date bounds are NOT part of the key:
bounds are a pure function of the date-range enum at roughly the same
instant, so recomputed timestamps reuse the slot.  Requests differing only
in sort order share a slot.

TTL is checked on read (now - captured_at < ttl).  Expired entries stay in
the map until the next sweep(), which the orchestrator runs after every
successful fresh fetch.
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from dashboard_config import DEFAULT_CONFIG
from query_descriptor import QueryDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompositePayload:
    """Raw responses of one fetch cycle, exactly as normalized off the wire."""
    records_envelope: Dict[str, Any]
    guards: List[Dict[str, Any]] = field(default_factory=list)
    sites: List[Dict[str, Any]] = field(default_factory=list)
    complete_stats: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CacheEntry:
    payload: CompositePayload
    captured_at: float  # seconds, same clock as RequestCache.clock


def cache_key(descriptor: QueryDescriptor) -> str:
    """Deterministic cache key from the coarse filter fields of a descriptor."""
    raw = json.dumps(
        {
            "page": descriptor.page,
            "pageSize": descriptor.page_size,
            "dateRange": descriptor.date_range.value,
            "status": descriptor.status,
            "guardId": descriptor.guard_id,
            "siteId": descriptor.site_id,
        },
        sort_keys=True,
    )
    return hashlib.sha256(raw.encode()).hexdigest()


class RequestCache:
    """Key → CacheEntry map with lazy TTL eviction.

    Owned by a FetchOrchestrator and passed in, so tests (and separate
    dashboards) get isolated instances.  Writes replace whole entries.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CONFIG.cache.ttl_seconds,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.captured_at) < self.ttl_seconds

    def get(self, descriptor: QueryDescriptor) -> Optional[CacheEntry]:
        """Return the live entry for this descriptor, or None on miss/expiry."""
        key = cache_key(descriptor)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self.clock()):
            logger.debug("Request cache entry expired for page=%d", descriptor.page)
            return None
        return entry

    def put(self, descriptor: QueryDescriptor, payload: CompositePayload) -> CacheEntry:
        entry = CacheEntry(payload=payload, captured_at=self.clock())
        with self._lock:
            self._entries[cache_key(descriptor)] = entry
        return entry

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete every entry past TTL.  Returns the number removed."""
        if now is None:
            now = self.clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items()
                if not self._is_fresh(entry, now)
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Request cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
