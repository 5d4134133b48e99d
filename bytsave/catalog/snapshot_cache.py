# bytsave/catalog/snapshot_cache.py

"""In-memory TTL cache in front of a catalog provider."""

import logging
import threading
import time
from dataclasses import dataclass

from bytsave.catalog.base import CatalogProvider
from bytsave.config.settings import Settings
from bytsave.models.snapshot import ProductSnapshot

logger = logging.getLogger("bytsave.cache")


@dataclass
class CacheEntry:
    """A cached snapshot and when it was stored."""

    snapshot: ProductSnapshot
    timestamp: float


class SnapshotCache(CatalogProvider):
    """Serves repeated lookups of the same product from memory.

    Several trackers usually watch the same ASIN; within one run
    only the first of them costs a page fetch.  Concurrent misses on
    one key wait for that fetch instead of starting their own.
    Failures are not cached, so a flaky product is retried by the
    next tracker.
    """

    def __init__(
        self,
        inner: CatalogProvider,
        ttl: float | None = None,
    ) -> None:
        self.inner = inner
        self._ttl: float = ttl if ttl is not None else Settings.SNAPSHOT_CACHE_TTL
        self._entries: dict[str, CacheEntry] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_snapshot(self, identifier: str) -> ProductSnapshot:
        cached = self._lookup(identifier)
        if cached is not None:
            return cached

        with self._key_lock(identifier):
            # Filled while this thread waited on the key
            cached = self._lookup(identifier)
            if cached is not None:
                return cached
            with self._lock:
                self.misses += 1
            snapshot = self.inner.get_snapshot(identifier)
            with self._lock:
                self._entries[identifier] = CacheEntry(
                    snapshot=snapshot, timestamp=time.time(),
                )
        return snapshot

    def clear(self) -> int:
        """Purge all cached entries. Returns how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Snapshot cache purged (%d entries removed)", count)
        return count

    def _key_lock(self, identifier: str) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(identifier, threading.Lock())

    def _lookup(self, identifier: str) -> ProductSnapshot | None:
        with self._lock:
            self._evict_expired(time.time())
            entry = self._entries.get(identifier)
            if entry is None:
                return None
            self.hits += 1
        logger.debug("Cache hit for %s", identifier)
        return entry.snapshot

    def _evict_expired(self, now: float) -> None:
        """Remove entries older than the TTL threshold."""
        before = len(self._entries)
        self._entries = {
            k: e
            for k, e in self._entries.items()
            if now - e.timestamp < self._ttl
        }
        evicted = before - len(self._entries)
        if evicted:
            logger.debug("Evicted %d expired snapshots", evicted)
