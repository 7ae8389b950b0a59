"""In-memory cache of blob payloads keyed by repository and blob sha.

Blob shas are content addresses, so a cached payload can never go stale;
the TTL only bounds memory held by long-running processes.  Failures and
empty payloads are never cached, so a transient error is retried on the
next lookup.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


class BlobCache:
    """Thread-safe LRU cache with a per-entry time-to-live.

    Args:
        ttl_seconds: How long an entry stays valid.
        max_entries: Upper bound on the number of cached blobs.  The least
            recently used entry is evicted first.
    """

    def __init__(self, ttl_seconds: float = 600, max_entries: int = 256) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: OrderedDict[CacheKey, tuple[float, bytes]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, owner: str, repo: str, sha: str) -> bytes | None:
        """Return the cached payload, or ``None`` if absent or expired."""
        key = (owner, repo, sha)
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            stored_at, data = item
            if time.monotonic() - stored_at > self._ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return data

    def put(self, owner: str, repo: str, sha: str, data: bytes) -> None:
        """Store *data* for the blob.  Empty payloads are ignored."""
        if not data:
            return
        key = (owner, repo, sha)
        with self._lock:
            self._entries[key] = (time.monotonic(), data)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted blob %s from cache", evicted[2])

    def clear(self) -> None:
        """Drop every cached entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
