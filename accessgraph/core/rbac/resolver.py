"""Effective permission resolution over a role inheritance graph.

The resolver is pure computation: it walks the graph through a lookup
callable and never caches. Caching and concurrency belong to
``accessgraph.core.cache``.

Rules:
- A role already visited during the current call contributes nothing, so
  cycles (including a role listing itself as parent) terminate.
- A missing or inactive role contributes nothing. Dangling edges are
  tolerated because fail-closed on one stale edge would lock out every
  subject holding the role.
- ``effective = (direct | inherited) - denied`` is applied per role being
  resolved. A parent's denial strips the permission from the parent's own
  effective set (and so from what it passes on), but never from a
  descendant that grants the permission directly.
- Exceptions raised by ``lookup`` propagate: I/O failure fails closed.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Set

from accessgraph.core.exceptions import ResolutionTimeoutError
from .roles import Role


logger = logging.getLogger(__name__)

RoleLookup = Callable[[str], Optional[Role]]


@dataclass
class _Frame:
    role: Role
    parents: Iterator[str]
    granted: Set[str] = field(default_factory=set)


class PermissionResolver:
    """Computes effective permission sets via cycle-safe transitive closure."""

    def __init__(self, lookup: RoleLookup, *, tenant_id: Optional[str] = None):
        """
        Args:
            lookup: Returns the role for an id, or None when it does not exist
            tenant_id: Tenant the lookup is bound to; used for logging and to
                reject records that belong to another tenant
        """
        self.lookup = lookup
        self.tenant_id = tenant_id

    def resolve(self, role_id: str, deadline: Optional[float] = None) -> frozenset:
        """
        Resolve the effective permissions of a role.

        Args:
            role_id: Role to resolve
            deadline: Absolute ``time.monotonic()`` value after which the
                resolution is abandoned

        Returns:
            Frozen set of permission keys

        Raises:
            ResolutionTimeoutError: If the deadline passes mid-walk
            Exception: Whatever ``lookup`` raises
        """
        visited: Set[str] = set()

        root = self._enter(role_id, visited, deadline, via=None)
        if root is None:
            return frozenset()

        # Explicit stack: graph depth is bounded only by the number of roles.
        stack: List[_Frame] = [root]
        while stack:
            frame = stack[-1]
            parent_id = next(frame.parents, None)
            if parent_id is not None:
                parent = self._enter(parent_id, visited, deadline, via=frame.role.id)
                if parent is not None:
                    stack.append(parent)
                continue

            stack.pop()
            effective = frozenset(frame.granted - frame.role.denied_permissions)
            if not stack:
                return effective
            stack[-1].granted.update(effective)

        return frozenset()

    def ancestors(self, role_id: str, deadline: Optional[float] = None) -> List[Role]:
        """Active roles reachable through parent edges, the role itself first."""
        return self._walk(role_id, lambda r: r.parent_role_ids, deadline)

    def descendants(self, role_id: str, deadline: Optional[float] = None) -> List[Role]:
        """Active roles reachable through child edges, the role itself first.

        These are the roles whose effective sets may change when ``role_id``
        is mutated.
        """
        return self._walk(role_id, lambda r: r.child_role_ids, deadline)

    def _walk(self, role_id, edges, deadline) -> List[Role]:
        found: List[Role] = []
        visited: Set[str] = set()
        pending = [role_id]
        while pending:
            current = pending.pop()
            if current in visited:
                continue
            visited.add(current)
            role = self._fetch(current, deadline)
            if role is None or not role.is_active:
                continue
            found.append(role)
            # Reverse so the first edge is explored first.
            pending.extend(reversed([i for i in edges(role) if i not in visited]))
        return found

    def _enter(self, role_id, visited, deadline, via) -> Optional[_Frame]:
        if role_id in visited:
            if via is not None:
                logger.warning(
                    "Role graph cycle: %s -> %s already on the resolution path (tenant=%s)",
                    via, role_id, self.tenant_id,
                )
            return None
        visited.add(role_id)

        role = self._fetch(role_id, deadline)
        if role is None:
            if via is not None:
                logger.warning(
                    "Dangling parent edge: role %s references missing role %s (tenant=%s)",
                    via, role_id, self.tenant_id,
                )
            return None
        if not role.is_active:
            logger.debug("Skipping inactive role %s (tenant=%s)", role_id, self.tenant_id)
            return None

        return _Frame(
            role=role,
            parents=iter(role.parent_role_ids),
            granted=set(role.direct_permissions),
        )

    def _fetch(self, role_id: str, deadline: Optional[float]) -> Optional[Role]:
        if deadline is not None and time.monotonic() > deadline:
            raise ResolutionTimeoutError(
                f"Resolution deadline exceeded before loading role {role_id}",
                tenant_id=self.tenant_id,
            )
        role = self.lookup(role_id)
        if role is None:
            return None
        if self.tenant_id is not None and role.tenant_id != self.tenant_id:
            logger.warning(
                "Role %s belongs to tenant %s, not %s; treating as absent",
                role_id, role.tenant_id, self.tenant_id,
            )
            return None
        return role


def resolve_permissions(
    role_id: str,
    lookup: RoleLookup,
    deadline: Optional[float] = None,
) -> frozenset:
    """Convenience wrapper: resolve one role with a throwaway resolver."""
    return PermissionResolver(lookup).resolve(role_id, deadline=deadline)
