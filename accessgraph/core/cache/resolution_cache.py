"""Tenant-scoped, versioned TTL cache of resolved permission sets.

Per-key lifecycle::

    ABSENT -> COMPUTING -> CACHED -> (stale by TTL | stale by version) -> ABSENT

An entry is served only while it is within its TTL *and* was computed under
the tenant's current source version. ``invalidate_role`` therefore only has
to bump the tenant counter: every entry computed before the bump, including
those of descendant roles and of users holding them, becomes a miss on its
next read. ``invalidate`` of a single key also discards the result of any
computation of that key already in flight. Failed computations are never
cached.
"""

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Optional

from accessgraph.core.exceptions import VersionCounterError
from .models import CacheKey, CacheStatistics, Resolution, ResolvedPermissionSet
from .singleflight import SingleFlight
from .versions import LocalVersionCounter


logger = logging.getLogger(__name__)

UNKNOWN_VERSION = -1


class ResolutionCache:
    """
    Caches ResolvedPermissionSet values keyed by (subject type, subject, tenant).

    Thread-safe. Recomputation of a missing or stale key goes through a
    single-flight group keyed by (key, source version), so a hot role held by
    thousands of users is walked once per expiry, while two different keys
    can still recompute concurrently.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        *,
        version_counter=None,
        max_concurrent_computations: int = 8,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            ttl_seconds: Default time-to-live of an entry
            version_counter: LocalVersionCounter or RedisVersionCounter
            max_concurrent_computations: Size of the recompute thread pool
            clock: Wall clock used for computed_at/expires_at
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._versions = version_counter if version_counter is not None else LocalVersionCounter()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, ResolvedPermissionSet] = {}
        # Bumped by invalidate(); a computation started under an older
        # generation must not store its result.
        self._generations: Dict[CacheKey, int] = {}
        self._stats = CacheStatistics()
        self._flight = SingleFlight(max_workers=max_concurrent_computations)

    @property
    def ttl(self) -> float:
        return self._ttl

    def set_ttl(self, ttl_seconds: float) -> None:
        """Change the default TTL for entries stored from now on."""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        logger.info("Permission cache TTL set to %s seconds", ttl_seconds)

    def current_version(self, tenant_id: str) -> int:
        """Current source version of a tenant, or -1 if it cannot be read."""
        try:
            return self._versions.current(tenant_id)
        except VersionCounterError as e:
            logger.warning("Treating cache as cold for tenant %s: %s", tenant_id, e)
            return UNKNOWN_VERSION

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, key: CacheKey) -> Optional[ResolvedPermissionSet]:
        """Return the cached set for ``key`` if it is fresh, else None."""
        version = self.current_version(key.tenant_id)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if entry.is_expired(now):
                del self._entries[key]
                self._stats.expired += 1
                self._stats.misses += 1
                return None

            if version == UNKNOWN_VERSION or entry.source_version != version:
                del self._entries[key]
                self._stats.stale_version += 1
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return entry

    def put(
        self,
        key: CacheKey,
        value: ResolvedPermissionSet,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: Resolved set to store
            ttl: TTL override
            generation: Invalidation generation of ``key`` observed before the
                value was computed; see generation()

        Returns:
            False when the value was computed under an outdated source version
            or before an invalidation of ``key``, and was therefore dropped
        """
        if ttl is not None:
            value = replace(value, expires_at=value.computed_at + ttl)

        version = self.current_version(key.tenant_id)
        if version == UNKNOWN_VERSION or value.source_version != version:
            logger.debug(
                "Dropping result for %s computed at version %s (current %s)",
                key, value.source_version, version,
            )
            return False

        with self._lock:
            if generation is not None and generation != self._generations.get(key, 0):
                logger.debug("Dropping result for %s computed before an invalidation", key)
                return False
            self._entries[key] = value
        return True

    def generation(self, key: CacheKey) -> int:
        """Number of explicit invalidations of ``key`` so far."""
        with self._lock:
            return self._generations.get(key, 0)

    def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Resolution],
        ttl: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> ResolvedPermissionSet:
        """
        Return the cached set for ``key``, computing it on a miss.

        Concurrent misses for the same key and version share one computation.

        Args:
            key: Cache key
            compute: Produces the Resolution for ``key``
            ttl: TTL override for the stored entry
            timeout: Seconds this caller waits for the computation

        Raises:
            ResolutionTimeoutError: If this caller stops waiting
            Exception: Whatever ``compute`` raised (nothing is cached)
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        version = self.current_version(key.tenant_id)
        generation = self.generation(key)

        def run() -> ResolvedPermissionSet:
            # A flight for this key may have completed after our miss.
            existing = self._peek(key, version)
            if existing is not None:
                return existing

            with self._lock:
                self._stats.computations += 1
            try:
                resolution = compute()
            except Exception:
                with self._lock:
                    self._stats.failures += 1
                raise

            value = self._stamp(key, resolution, version, ttl)
            self.put(key, value, generation=generation)
            return value

        result, shared = self._flight.do((key, version, generation), run, timeout=timeout)
        if shared:
            with self._lock:
                self._stats.shared += 1
        return result

    def _peek(self, key: CacheKey, version: int) -> Optional[ResolvedPermissionSet]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or entry.source_version != version or entry.is_expired(self._clock()):
            return None
        return entry

    def _stamp(self, key: CacheKey, resolution: Resolution, version: int, ttl: Optional[float]):
        now = self._clock()
        return ResolvedPermissionSet(
            subject_type=key.subject_type,
            subject_id=key.subject_id,
            tenant_id=key.tenant_id,
            permissions=frozenset(resolution.permissions),
            role_ids=tuple(resolution.role_ids),
            computed_at=now,
            expires_at=now + (ttl if ttl is not None else self._ttl),
            source_version=version,
        )

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, key: CacheKey) -> bool:
        """Drop a single entry. Returns True if one was present."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            self._generations[key] = self._generations.get(key, 0) + 1
            self._stats.invalidations += 1
        logger.debug("Invalidated permission cache entry %s", key)
        return removed

    def invalidate_role(self, tenant_id: str, role_id: str) -> Optional[int]:
        """
        Invalidate everything that may have depended on ``role_id``.

        Bumps the tenant's source version. If the counter cannot be bumped,
        falls back to dropping the tenant's local entries.

        Returns:
            The new source version, or None when the fallback was used
        """
        self.invalidate(CacheKey.for_role(role_id, tenant_id))
        try:
            version = self._versions.bump(tenant_id)
        except VersionCounterError as e:
            logger.error("Version bump failed for tenant %s, dropping local entries: %s", tenant_id, e)
            self._drop_tenant(tenant_id)
            return None
        logger.debug("Role %s mutated; tenant %s now at source version %s", role_id, tenant_id, version)
        return version

    def invalidate_tenant(self, tenant_id: str) -> Optional[int]:
        """Drop every entry of a tenant and bump its source version."""
        dropped = self._drop_tenant(tenant_id)
        try:
            version = self._versions.bump(tenant_id)
        except VersionCounterError as e:
            logger.error("Version bump failed for tenant %s: %s", tenant_id, e)
            version = None
        logger.debug("Invalidated %d cache entries for tenant %s", dropped, tenant_id)
        return version

    def _drop_tenant(self, tenant_id: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k.tenant_id == tenant_id]
            for k in keys:
                del self._entries[k]
            self._stats.invalidations += len(keys)
        return len(keys)

    def clear(self) -> int:
        """Full flush: drop all entries and reset local version counters."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._versions.reset()
        logger.info("Cleared %d permission cache entries", count)
        return count

    def purge_expired(self) -> int:
        """Remove entries that are expired or stamped with an old version."""
        now = self._clock()
        with self._lock:
            tenants = {k.tenant_id for k in self._entries}
        versions = {t: self.current_version(t) for t in tenants}

        with self._lock:
            stale = [
                k for k, e in self._entries.items()
                if e.is_expired(now) or e.source_version != versions.get(k.tenant_id)
            ]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Purged %d stale permission cache entries", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def statistics(self) -> CacheStatistics:
        """Snapshot of the cache counters."""
        with self._lock:
            return replace(self._stats, entries=len(self._entries), extra={"ttl_seconds": self._ttl})

    def hit_rate(self) -> float:
        return self.statistics().hit_rate

    def reset_statistics(self) -> None:
        with self._lock:
            self._stats = CacheStatistics()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        """Stop the recompute pool; in-flight computations finish first."""
        self._flight.shutdown(wait=True)
