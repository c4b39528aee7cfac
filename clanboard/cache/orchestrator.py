"""
Read-through cache orchestration: serve-if-fresh, else refresh or fall back to stale.
"""
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from clanboard.errors import (
    CacheMiss,
    PersistenceFailure,
    UpstreamError,
    UpstreamRejected,
)
from clanboard.realms import Realm, Source, cache_key
from .coalescer import RequestCoalescer
from .core import CacheEntry, CacheSource, CacheStats
from .store import CacheStore
from .ttl_policies import get_ttl_for_path

logger = logging.getLogger("cache.orchestrator")


class FetchOrchestrator:
    """
    Read-through policy over CacheStore and UpstreamClient:

    - Fresh hit: return cached bytes, no network call
    - Otherwise: live fetch, store, return
    - Live fetch failed: return the (possibly expired) cached entry and log
    - Nothing cached and fetch failed: raise CacheMiss

    The store is a best-effort accelerator; an unreadable or unwritable
    database never fails a read that the upstream can answer.
    """

    def __init__(
        self,
        store: CacheStore,
        client,
        clock: Callable[[], float] = time.time,
        coalesce_timeout: float = 60.0,
    ):
        """
        Args:
            store: Durable cache
            client: Object with fetch(realm, source, path) -> UpstreamResponse
            clock: Epoch-seconds clock used for freshness checks
            coalesce_timeout: Max wait when joining another caller's fetch
        """
        self._store = store
        self._client = client
        self._clock = clock
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    def get_or_refresh(
        self,
        realm: Realm,
        source: Source,
        path: str,
        ttl_seconds: Optional[int] = None,
        allow_stale: bool = True,
    ) -> bytes:
        """
        Get the body for an upstream path, fetching live when not fresh.

        Args:
            realm: Realm the path belongs to
            source: Authoritative or identity upstream
            path: Upstream path (already tag-encoded)
            ttl_seconds: Max age to serve without a live fetch; 0 forces a
                live fetch; None uses the read-class TTL for the path
            allow_stale: Fall back to an expired entry when the fetch fails

        Returns:
            Response body bytes

        Raises:
            CacheMiss: live fetch failed and no usable cached entry exists
        """
        body, _ = self.get_with_source(realm, source, path, ttl_seconds, allow_stale)
        return body

    def get_with_source(
        self,
        realm: Realm,
        source: Source,
        path: str,
        ttl_seconds: Optional[int] = None,
        allow_stale: bool = True,
    ) -> Tuple[bytes, CacheSource]:
        """Same as get_or_refresh, also reporting how the read was satisfied."""
        key = cache_key(realm, source, path)
        if ttl_seconds is None:
            ttl_seconds = get_ttl_for_path(path)

        entry = self._read(key)

        if entry is not None and entry.is_fresh(ttl_seconds, self._clock()):
            self._count("hits_fresh")
            return entry.body, CacheSource.FRESH

        try:
            body = self._coalescer.run(key, lambda: self._fetch_and_store(realm, source, path, key))
        except UpstreamError as e:
            self._count("upstream_failures")
            if entry is not None and allow_stale:
                age = entry.age_seconds(self._clock())
                logger.warning(f"Serving stale {key} [age={age:.0f}s]: {e}")
                self._count("hits_stale")
                return entry.body, CacheSource.STALE
            logger.warning(f"CACHE MISS with failed fetch: {key}: {e}")
            raise CacheMiss(key) from e

        self._count("misses")
        return body, CacheSource.UPSTREAM

    def refresh(self, realm: Realm, source: Source, path: str, allow_stale: bool = True) -> bytes:
        """Unconditional live fetch (TTL 0) that still seeds the cache."""
        return self.get_or_refresh(realm, source, path, ttl_seconds=0, allow_stale=allow_stale)

    def peek(self, realm: Realm, source: Source, path: str) -> Optional[bytes]:
        """Cached body regardless of age, without any network call."""
        entry = self._read(cache_key(realm, source, path))
        return entry.body if entry is not None else None

    def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            return self._store.get(key)
        except PersistenceFailure as e:
            logger.error(f"Cache read failed, treating as miss: {e}")
            return None

    def _fetch_and_store(self, realm: Realm, source: Source, path: str, key: str) -> bytes:
        """
        Live fetch; only a 200 response is cached.

        Raises:
            UpstreamUnreachable: network/timeout
            UpstreamRejected: non-200 status
        """
        response = self._client.fetch(realm, source, path)
        if response.status != 200:
            raise UpstreamRejected(response.status, response.body, url=response.url)

        try:
            self._store.put(key, response.body, response.status)
        except PersistenceFailure as e:
            # Live data is still returned even if it could not be cached
            self._count("write_failures")
            logger.error(f"Cache write failed for {key}: {e}")

        logger.debug(f"Refreshed {key} in {response.latency_ms}ms")
        return response.body

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def get_stats(self) -> dict:
        """Cache statistics."""
        with self._stats_lock:
            stats = self._stats.to_dict()
        stats["coalescer"] = self._coalescer.get_stats()
        return stats
