"""Per-tenant source version counters.

Every role mutation bumps its tenant's counter. Cache entries remember the
counter value they were computed under and are treated as misses once it
moves, so invalidation never has to find the individual entries that depended
on the mutated role.

Counters only ever increase. ``LocalVersionCounter`` can be reset as part of a
full cache flush; shared Redis counters are never reset from one process.
"""

import logging
import threading
from typing import Dict, Optional

import redis

from accessgraph.core.exceptions import VersionCounterError


logger = logging.getLogger(__name__)


class LocalVersionCounter:
    """Process-local counters guarded by a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._versions: Dict[str, int] = {}

    def current(self, tenant_id: str) -> int:
        with self._lock:
            return self._versions.get(tenant_id, 0)

    def bump(self, tenant_id: str) -> int:
        with self._lock:
            version = self._versions.get(tenant_id, 0) + 1
            self._versions[tenant_id] = version
            return version

    def reset(self) -> None:
        with self._lock:
            self._versions.clear()


class RedisVersionCounter:
    """
    Counters shared through Redis so every process observes every bump.

    Bumps use ``INCR``, which is atomic on the server. Reads are a plain
    ``GET``; a missing key means version 0.
    """

    def __init__(
        self,
        client: Optional["redis.Redis"] = None,
        *,
        redis_url: Optional[str] = None,
        key_prefix: str = "perm:",
        socket_timeout: float = 2.0,
    ):
        if client is None:
            if not redis_url:
                raise ValueError("Either a Redis client or redis_url is required")
            client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=socket_timeout,
                socket_timeout=socket_timeout,
            )
        self._redis = client
        self.key_prefix = key_prefix

    def _key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}version:{tenant_id}"

    def current(self, tenant_id: str) -> int:
        try:
            value = self._redis.get(self._key(tenant_id))
        except redis.RedisError as e:
            raise VersionCounterError(f"Cannot read source version for tenant {tenant_id}: {e}") from e
        return int(value) if value is not None else 0

    def bump(self, tenant_id: str) -> int:
        try:
            return int(self._redis.incr(self._key(tenant_id)))
        except redis.RedisError as e:
            raise VersionCounterError(f"Cannot bump source version for tenant {tenant_id}: {e}") from e

    def reset(self) -> None:
        # Other processes still hold entries stamped with these versions.
        logger.debug("Shared version counters are not reset on a local flush")

    def close(self) -> None:
        self._redis.close()


def build_version_counter(settings):
    """Pick the counter implementation for the given Settings."""
    if settings.uses_shared_versions:
        return RedisVersionCounter(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            socket_timeout=settings.redis_socket_timeout,
        )
    return LocalVersionCounter()
