"""Role records as seen by the resolution engine.

A role is a node in a tenant's inheritance graph. Edges are stored on both
ends (``parent_role_ids`` and ``child_role_ids``); stores keep them reciprocal
on write, but the engine never relies on that.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Tuple


def _ordered_ids(ids: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(str(i) for i in ids))


@dataclass(frozen=True)
class Role:
    """An immutable snapshot of a role record."""

    id: str
    tenant_id: str
    parent_role_ids: Tuple[str, ...] = ()
    child_role_ids: Tuple[str, ...] = ()
    direct_permissions: FrozenSet[str] = frozenset()
    denied_permissions: FrozenSet[str] = frozenset()
    priority: int = 0  # informational; resolution never consults it
    is_active: bool = True
    key: str = ""
    name: str = ""
    description: str = ""
    is_system: bool = False
    tags: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "tenant_id", str(self.tenant_id))
        object.__setattr__(self, "parent_role_ids", _ordered_ids(self.parent_role_ids))
        object.__setattr__(self, "child_role_ids", _ordered_ids(self.child_role_ids))
        object.__setattr__(self, "direct_permissions", frozenset(self.direct_permissions))
        object.__setattr__(self, "denied_permissions", frozenset(self.denied_permissions))
        object.__setattr__(self, "tags", tuple(self.tags))
        if not self.key:
            object.__setattr__(self, "key", self.id)

    @property
    def hierarchy_level(self) -> int:
        """Number of direct parents."""
        return len(self.parent_role_ids)

    @property
    def is_self_referencing(self) -> bool:
        return self.id in self.parent_role_ids

    def evolve(self, **changes: Any) -> "Role":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "parent_role_ids": list(self.parent_role_ids),
            "child_role_ids": list(self.child_role_ids),
            "direct_permissions": sorted(self.direct_permissions),
            "denied_permissions": sorted(self.denied_permissions),
            "priority": self.priority,
            "is_active": self.is_active,
            "is_system": self.is_system,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Role":
        """Create a role from a dictionary (YAML fixtures, cache payloads)."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            parent_role_ids=data.get("parent_role_ids") or data.get("parents") or (),
            child_role_ids=data.get("child_role_ids") or data.get("children") or (),
            direct_permissions=data.get("direct_permissions") or data.get("permissions") or (),
            denied_permissions=data.get("denied_permissions") or data.get("denied") or (),
            priority=int(data.get("priority", 0)),
            is_active=bool(data.get("is_active", True)),
            key=data.get("key", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            is_system=bool(data.get("is_system", False)),
            tags=data.get("tags") or (),
            metadata=data.get("metadata") or {},
        )


def sort_by_priority(roles: Iterable[Role]) -> list:
    """Sort roles by descending priority, then id, for display."""
    return sorted(roles, key=lambda r: (-r.priority, r.id))
