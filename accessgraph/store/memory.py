"""In-memory role graph store.

Thread-safe reference implementation of RoleGraphStore. Writes keep parent
and child edges reciprocal and notify mutation listeners after the write is
applied. Deleting a role does not rewrite its children, so their parent
edges dangle exactly as they would after a delete in a document store.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from accessgraph.core.flags.models import FeatureFlag
from accessgraph.core.rbac.roles import Role
from .base import RoleGraphStore


logger = logging.getLogger(__name__)


class InMemoryRoleGraphStore(RoleGraphStore):
    """Dictionary-backed store for tests, fixtures and single-process use."""

    def __init__(
        self,
        roles: Iterable[Role] = (),
        assignments: Optional[Dict[Tuple[str, str], Sequence[str]]] = None,
        flags: Iterable[FeatureFlag] = (),
    ):
        super().__init__()
        self._lock = threading.RLock()
        self._roles: Dict[Tuple[str, str], Role] = {}
        self._assignments: Dict[Tuple[str, str], List[str]] = {}
        self._flags: Dict[Tuple[Optional[str], str], FeatureFlag] = {}

        for role in roles:
            self._save_locked(role)
        for (tenant_id, user_id), role_ids in (assignments or {}).items():
            self._assignments[(str(tenant_id), str(user_id))] = list(dict.fromkeys(role_ids))
        for flag in flags:
            self._flags[(flag.tenant_id, flag.name)] = flag

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_role(self, tenant_id: str, role_id: str) -> Optional[Role]:
        with self._lock:
            return self._roles.get((tenant_id, role_id))

    def list_roles(self, tenant_id: str) -> List[Role]:
        with self._lock:
            return [r for (t, _), r in self._roles.items() if t == tenant_id]

    def get_user_role_ids(self, tenant_id: str, user_id: str) -> Sequence[str]:
        with self._lock:
            return tuple(self._assignments.get((tenant_id, user_id), ()))

    def users_with_role(self, tenant_id: str, role_id: str) -> List[str]:
        with self._lock:
            return sorted(u for (t, u), ids in self._assignments.items() if t == tenant_id and role_id in ids)

    def get_feature_flag(self, tenant_id: Optional[str], name: str) -> Optional[FeatureFlag]:
        with self._lock:
            if tenant_id is not None:
                flag = self._flags.get((tenant_id, name))
                if flag is not None:
                    return flag
            return self._flags.get((None, name))

    def list_feature_flags(self, tenant_id: Optional[str] = None) -> List[FeatureFlag]:
        with self._lock:
            flags = [f for (t, _), f in self._flags.items() if t is None or t == tenant_id]
        return sorted(flags, key=lambda f: (f.name, f.tenant_id is None))

    # ------------------------------------------------------------------
    # Role writes
    # ------------------------------------------------------------------

    def save_role(self, role: Role) -> Role:
        """Create or replace a role, keeping edges reciprocal."""
        with self._lock:
            saved = self._save_locked(role)
        self._notify_role_mutated(role.tenant_id, role.id)
        return saved

    def _save_locked(self, role: Role) -> Role:
        key = (role.tenant_id, role.id)
        previous = self._roles.get(key)
        old_parents = set(previous.parent_role_ids) if previous else set()
        new_parents = set(role.parent_role_ids)

        for parent_id in new_parents - old_parents:
            self._link_child(role.tenant_id, parent_id, role.id)
        for parent_id in old_parents - new_parents:
            self._unlink_child(role.tenant_id, parent_id, role.id)

        # Children that point at this role keep their edge on this side too.
        children = list(role.child_role_ids)
        for (tenant_id, other_id), other in self._roles.items():
            if tenant_id == role.tenant_id and role.id in other.parent_role_ids:
                children.append(other_id)
        saved = role.evolve(child_role_ids=children)
        self._roles[key] = saved
        return saved

    def delete_role(self, tenant_id: str, role_id: str) -> bool:
        with self._lock:
            role = self._roles.pop((tenant_id, role_id), None)
            if role is None:
                return False
            for parent_id in role.parent_role_ids:
                self._unlink_child(tenant_id, parent_id, role_id)

        self._notify_role_mutated(tenant_id, role_id)
        return True

    def add_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(direct_permissions=r.direct_permissions | {permission}),
        )

    def remove_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(direct_permissions=r.direct_permissions - {permission}),
        )

    def deny_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(denied_permissions=r.denied_permissions | {permission}),
        )

    def allow_permission(self, tenant_id: str, role_id: str, permission: str) -> Role:
        """Remove a permission from the denied set."""
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(denied_permissions=r.denied_permissions - {permission}),
        )

    def add_parent_role(self, tenant_id: str, role_id: str, parent_id: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(parent_role_ids=r.parent_role_ids + (parent_id,)),
        )

    def remove_parent_role(self, tenant_id: str, role_id: str, parent_id: str) -> Role:
        return self._update(
            tenant_id, role_id,
            lambda r: r.evolve(parent_role_ids=[p for p in r.parent_role_ids if p != parent_id]),
        )

    def set_active(self, tenant_id: str, role_id: str, is_active: bool) -> Role:
        return self._update(tenant_id, role_id, lambda r: r.evolve(is_active=is_active))

    def _update(self, tenant_id: str, role_id: str, change: Callable[[Role], Role]) -> Role:
        with self._lock:
            role = self._roles.get((tenant_id, role_id))
            if role is None:
                raise KeyError(f"Role {role_id} not found in tenant {tenant_id}")
            saved = self._save_locked(change(role))
        self._notify_role_mutated(tenant_id, role_id)
        return saved

    def _link_child(self, tenant_id: str, parent_id: str, child_id: str) -> None:
        parent = self._roles.get((tenant_id, parent_id))
        if parent is not None and child_id not in parent.child_role_ids:
            self._roles[(tenant_id, parent_id)] = parent.evolve(
                child_role_ids=parent.child_role_ids + (child_id,)
            )

    def _unlink_child(self, tenant_id: str, parent_id: str, child_id: str) -> None:
        parent = self._roles.get((tenant_id, parent_id))
        if parent is not None and child_id in parent.child_role_ids:
            self._roles[(tenant_id, parent_id)] = parent.evolve(
                child_role_ids=[c for c in parent.child_role_ids if c != child_id]
            )

    # ------------------------------------------------------------------
    # Assignment and flag writes
    # ------------------------------------------------------------------

    def assign_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._lock:
            role_ids = self._assignments.setdefault((tenant_id, user_id), [])
            if role_id in role_ids:
                return
            role_ids.append(role_id)
        self._notify_assignment_changed(tenant_id, user_id)

    def unassign_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._lock:
            role_ids = self._assignments.get((tenant_id, user_id), [])
            if role_id not in role_ids:
                return
            role_ids.remove(role_id)
        self._notify_assignment_changed(tenant_id, user_id)

    def put_feature_flag(self, flag: FeatureFlag) -> FeatureFlag:
        with self._lock:
            self._flags[(flag.tenant_id, flag.name)] = flag
        logger.debug("Stored feature flag %s (tenant=%s)", flag.name, flag.tenant_id)
        self._notify_flag_changed(flag.tenant_id, flag.name)
        return flag

    def delete_feature_flag(self, tenant_id: Optional[str], name: str) -> bool:
        with self._lock:
            removed = self._flags.pop((tenant_id, name), None) is not None
        if removed:
            self._notify_flag_changed(tenant_id, name)
        return removed
