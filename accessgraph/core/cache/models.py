"""Value types for the resolution cache."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, NamedTuple, Tuple


class SubjectType(str, Enum):
    """Kinds of subject whose permissions are cached."""

    USER = "user"
    ROLE = "role"


class CacheKey(NamedTuple):
    """Identity of a cache entry. Entries never cross tenants."""
    subject_type: SubjectType
    subject_id: str
    tenant_id: str

    def __str__(self) -> str:
        return f"{self.subject_type.value}:{self.tenant_id}:{self.subject_id}"

    @classmethod
    def for_user(cls, user_id: str, tenant_id: str) -> "CacheKey":
        return cls(SubjectType.USER, str(user_id), str(tenant_id))

    @classmethod
    def for_role(cls, role_id: str, tenant_id: str) -> "CacheKey":
        return cls(SubjectType.ROLE, str(role_id), str(tenant_id))


class Resolution(NamedTuple):
    """Output of a permission computation, before it is stamped for caching."""
    permissions: FrozenSet[str]
    role_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedPermissionSet:
    """A resolved permission snapshot as stored in the cache."""

    subject_type: SubjectType
    subject_id: str
    tenant_id: str
    permissions: FrozenSet[str]
    computed_at: float
    expires_at: float
    source_version: int
    role_ids: Tuple[str, ...] = ()

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.subject_type, self.subject_id, self.tenant_id)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_type": self.subject_type.value,
            "subject_id": self.subject_id,
            "tenant_id": self.tenant_id,
            "permissions": sorted(self.permissions),
            "role_ids": list(self.role_ids),
            "computed_at": self.computed_at,
            "expires_at": self.expires_at,
            "source_version": self.source_version,
        }


@dataclass
class CacheStatistics:
    """Counters exposed to monitoring collaborators."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    stale_version: int = 0
    computations: int = 0
    shared: int = 0
    failures: int = 0
    invalidations: int = 0
    entries: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage; 0 when nothing was looked up yet."""
        total = self.hits + self.misses
        return (self.hits / total) * 100 if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "expired": self.expired,
            "stale_version": self.stale_version,
            "computations": self.computations,
            "shared": self.shared,
            "failures": self.failures,
            "invalidations": self.invalidations,
            "entries": self.entries,
            **self.extra,
        }
