"""Permission service: the query and invalidation surface of the engine.

Query methods always produce a boolean. Any failure while resolving is
logged and turned into a deny, so an unreachable store can never grant
access. ``check_permission`` additionally reports whether a deny came from
the authorization system being degraded, letting callers answer with a
5xx instead of a 403.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Union

from accessgraph.common.logger import log_context
from accessgraph.core.cache import (
    CacheKey,
    Resolution,
    ResolutionCache,
    ResolvedPermissionSet,
    SubjectType,
    build_version_counter,
)
from accessgraph.core.config import get_settings
from accessgraph.core.exceptions import AccessGraphError, TransientStoreError
from .permissions import PermissionMatcher
from .resolver import PermissionResolver
from .roles import Role, sort_by_priority


logger = logging.getLogger(__name__)

Subject = Union[SubjectType, str]


def _as_permission_list(permissions: Iterable[str]) -> List[str]:
    if isinstance(permissions, str):
        raise TypeError(
            f"Expected an iterable of permission keys, got the string {permissions!r}"
        )
    return list(permissions)


@dataclass(frozen=True)
class AuthorizationDecision:
    """Result of a single permission check."""
    allowed: bool
    permission: str
    reason: str
    degraded: bool = False

    def __bool__(self) -> bool:
        return self.allowed


class PermissionService:
    """
    Answers permission queries for users and roles of a tenant.

    Users hold the union of the effective permissions of their assigned
    roles. Each query performs at most one resolution, served from the
    ResolutionCache when fresh.
    """

    def __init__(
        self,
        store,
        cache: Optional[ResolutionCache] = None,
        *,
        settings=None,
        resolve_timeout: Optional[float] = None,
        subscribe: bool = True,
    ):
        """
        Initialize the permission service.

        Args:
            store: RoleGraphStore to read roles and assignments from
            cache: Resolution cache; built from settings when omitted
            settings: Settings instance; defaults to get_settings()
            resolve_timeout: Seconds allowed for one resolution (store
                lookups included) and for a caller waiting on it
            subscribe: Register for the store's mutation notifications
        """
        settings = settings or get_settings()
        self.store = store
        if cache is None:
            cache = ResolutionCache(
                settings.cache_ttl_seconds,
                version_counter=build_version_counter(settings),
                max_concurrent_computations=settings.max_concurrent_resolutions,
            )
        self.cache = cache
        self.resolve_timeout = (
            resolve_timeout if resolve_timeout is not None else settings.resolve_timeout_seconds
        )
        self._unsubscribers: List[Callable[[], None]] = []
        if subscribe:
            self._unsubscribers.append(store.on_role_mutated(self._on_role_mutated))
            self._unsubscribers.append(store.on_assignment_changed(self._on_assignment_changed))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        subject_id: str,
        tenant_id: str,
        subject_type: Subject = SubjectType.USER,
        timeout: Optional[float] = None,
    ) -> ResolvedPermissionSet:
        """
        Return the resolved permission set of a subject.

        Raises:
            TransientStoreError: If the store failed or the resolution timed out
        """
        key = CacheKey(SubjectType(subject_type), str(subject_id), str(tenant_id))
        wait = timeout if timeout is not None else self.resolve_timeout
        return self.cache.get_or_compute(key, lambda: self._compute(key), timeout=wait)

    def effective_permissions(
        self,
        subject_id: str,
        tenant_id: str,
        subject_type: Subject = SubjectType.USER,
    ) -> List[str]:
        """
        Sorted effective permission keys of a subject.

        Unlike the has_* checks this does not swallow store failures.
        """
        return sorted(self.resolve(subject_id, tenant_id, subject_type).permissions)

    def _compute(self, key: CacheKey) -> Resolution:
        with log_context(key.tenant_id, f"{key.subject_type.value}:{key.subject_id}"):
            return self._resolve_key(key)

    def _resolve_key(self, key: CacheKey) -> Resolution:
        deadline = time.monotonic() + self.resolve_timeout
        tenant_id = key.tenant_id
        resolver = PermissionResolver(
            lambda role_id: self._load_role(tenant_id, role_id), tenant_id=tenant_id
        )

        if key.subject_type == SubjectType.ROLE:
            role_ids = (key.subject_id,)
        else:
            role_ids = tuple(dict.fromkeys(
                self._call_store(self.store.get_user_role_ids, tenant_id, key.subject_id)
            ))

        permissions = set()
        for role_id in role_ids:
            permissions.update(resolver.resolve(role_id, deadline=deadline))

        logger.debug(
            "Resolved %d permissions for %s via roles %s", len(permissions), key, list(role_ids)
        )
        return Resolution(frozenset(permissions), role_ids)

    def _load_role(self, tenant_id: str, role_id: str) -> Optional[Role]:
        return self._call_store(self.store.get_role, tenant_id, role_id)

    @staticmethod
    def _call_store(method, tenant_id: str, *args):
        try:
            return method(tenant_id, *args)
        except AccessGraphError:
            raise
        except Exception as e:
            raise TransientStoreError(
                f"Role store call {getattr(method, '__name__', 'lookup')} failed: {e}",
                tenant_id=tenant_id,
            ) from e

    # ------------------------------------------------------------------
    # Queries (fail closed)
    # ------------------------------------------------------------------

    def check_permission(
        self,
        subject_id: str,
        tenant_id: str,
        permission: str,
        subject_type: Subject = SubjectType.USER,
    ) -> AuthorizationDecision:
        """Check one permission and explain the outcome."""
        resolved = self._resolve_or_none(subject_id, tenant_id, subject_type)
        if resolved is None:
            return AuthorizationDecision(
                allowed=False,
                permission=permission,
                reason="Authorization system degraded; access denied",
                degraded=True,
            )
        if permission in resolved.permissions:
            return AuthorizationDecision(True, permission, f"Permission '{permission}' granted")
        return AuthorizationDecision(False, permission, f"Permission '{permission}' not granted")

    def has_permission(
        self,
        subject_id: str,
        tenant_id: str,
        permission: str,
        subject_type: Subject = SubjectType.USER,
    ) -> bool:
        """True iff ``permission`` is in the subject's effective set."""
        return self.check_permission(subject_id, tenant_id, permission, subject_type).allowed

    def has_any_permission(
        self,
        subject_id: str,
        tenant_id: str,
        permissions: Iterable[str],
        subject_type: Subject = SubjectType.USER,
    ) -> bool:
        """True if at least one of ``permissions`` is held."""
        permissions = _as_permission_list(permissions)
        resolved = self._resolve_or_none(subject_id, tenant_id, subject_type)
        if resolved is None:
            return False
        return any(p in resolved.permissions for p in permissions)

    def has_all_permissions(
        self,
        subject_id: str,
        tenant_id: str,
        permissions: Iterable[str],
        subject_type: Subject = SubjectType.USER,
    ) -> bool:
        """True if every one of ``permissions`` is held."""
        permissions = _as_permission_list(permissions)
        resolved = self._resolve_or_none(subject_id, tenant_id, subject_type)
        if resolved is None:
            return False
        return all(p in resolved.permissions for p in permissions)

    def has_matching_permission(
        self,
        subject_id: str,
        tenant_id: str,
        pattern: str,
        subject_type: Subject = SubjectType.USER,
    ) -> bool:
        """True if any held permission matches a wildcard policy pattern."""
        resolved = self._resolve_or_none(subject_id, tenant_id, subject_type)
        if resolved is None:
            return False
        return PermissionMatcher([pattern]).any_held(resolved.permissions)

    def _resolve_or_none(self, subject_id, tenant_id, subject_type) -> Optional[ResolvedPermissionSet]:
        subject = f"{getattr(subject_type, 'value', subject_type)}:{subject_id}"
        with log_context(tenant_id, subject):
            try:
                return self.resolve(subject_id, tenant_id, subject_type)
            except Exception:
                logger.exception("Permission resolution failed for %s; denying", subject)
                return None

    # ------------------------------------------------------------------
    # Hierarchy (informational)
    # ------------------------------------------------------------------

    def role_hierarchy(self, role_id: str, tenant_id: str) -> List[Role]:
        """Active ancestors of a role, including itself, by descending priority."""
        resolver = PermissionResolver(
            lambda rid: self._load_role(tenant_id, rid), tenant_id=tenant_id
        )
        return sort_by_priority(resolver.ancestors(role_id))

    def affected_roles(self, role_id: str, tenant_id: str) -> List[str]:
        """Ids of the active roles whose effective sets depend on ``role_id``."""
        resolver = PermissionResolver(
            lambda rid: self._load_role(tenant_id, rid), tenant_id=tenant_id
        )
        return [r.id for r in resolver.descendants(role_id)]

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_user(self, user_id: str, tenant_id: str) -> None:
        self.cache.invalidate(CacheKey.for_user(user_id, tenant_id))

    def invalidate_role(self, role_id: str, tenant_id: str) -> None:
        """Invalidate a role, its descendants and every user holding them."""
        self.cache.invalidate_role(str(tenant_id), str(role_id))

    def invalidate_tenant(self, tenant_id: str) -> None:
        self.cache.invalidate_tenant(str(tenant_id))

    def invalidate(
        self,
        subject_id: str,
        tenant_id: str,
        subject_type: Subject = SubjectType.USER,
    ) -> None:
        """Administrative hook: invalidate a user or a role."""
        if SubjectType(subject_type) == SubjectType.ROLE:
            self.invalidate_role(subject_id, tenant_id)
        else:
            self.invalidate_user(subject_id, tenant_id)

    def _on_role_mutated(self, tenant_id: str, role_id: str) -> None:
        self.invalidate_role(role_id, tenant_id)

    def _on_assignment_changed(self, tenant_id: str, user_id: str) -> None:
        self.invalidate_user(user_id, tenant_id)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def cache_statistics(self) -> dict:
        return self.cache.statistics().to_dict()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.cache.close()
