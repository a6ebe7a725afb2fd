"""Resolution cache for accessgraph.

TTL-based, tenant-scoped cache of resolved permission sets with per-tenant
source versions and single-flight recomputation.
"""

from .models import (
    CacheKey,
    CacheStatistics,
    Resolution,
    ResolvedPermissionSet,
    SubjectType,
)
from .resolution_cache import ResolutionCache
from .singleflight import SingleFlight
from .versions import LocalVersionCounter, RedisVersionCounter, build_version_counter

__all__ = [
    "CacheKey",
    "CacheStatistics",
    "LocalVersionCounter",
    "RedisVersionCounter",
    "Resolution",
    "ResolutionCache",
    "ResolvedPermissionSet",
    "SingleFlight",
    "SubjectType",
    "build_version_counter",
]
