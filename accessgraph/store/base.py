"""Base classes for role graph stores.

Defines the narrow interface the resolution engine consumes from the
persistence layer, plus the change-notification plumbing shared by the
concrete stores.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from accessgraph.core.flags.models import FeatureFlag
from accessgraph.core.rbac.roles import Role


logger = logging.getLogger(__name__)

RoleMutationCallback = Callable[[str, str], None]
AssignmentCallback = Callable[[str, str], None]
FlagChangeCallback = Callable[[Optional[str], str], None]


class RoleGraphStore(ABC):
    """
    Read access to roles, user role assignments and feature flags.

    Lookups return None for absent records. Implementations raise
    ``TransientStoreError`` when the backing storage fails.
    """

    def __init__(self):
        self._listeners: List[RoleMutationCallback] = []
        self._assignment_listeners: List[AssignmentCallback] = []
        self._flag_listeners: List[FlagChangeCallback] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def get_role(self, tenant_id: str, role_id: str) -> Optional[Role]:
        """Get a role of a tenant by id."""
        pass

    @abstractmethod
    def get_user_role_ids(self, tenant_id: str, user_id: str) -> Sequence[str]:
        """Get the ids of the roles assigned to a user; empty if none."""
        pass

    @abstractmethod
    def get_feature_flag(self, tenant_id: Optional[str], name: str) -> Optional[FeatureFlag]:
        """Get a flag by name, preferring a tenant-scoped flag over a global one."""
        pass

    @abstractmethod
    def list_feature_flags(self, tenant_id: Optional[str] = None) -> List[FeatureFlag]:
        """List global flags plus those scoped to ``tenant_id``."""
        pass

    def on_role_mutated(self, callback: RoleMutationCallback) -> Callable[[], None]:
        """
        Register a callback invoked with (tenant_id, role_id) after every
        committed write to a role record.

        Returns:
            A function that unregisters the callback
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify_role_mutated(self, tenant_id: str, role_id: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(tenant_id, role_id)
            except Exception:
                # A failing listener must not undo a committed write.
                logger.exception(
                    "Role mutation listener failed for role %s (tenant=%s)", role_id, tenant_id
                )

    def on_assignment_changed(self, callback: AssignmentCallback) -> Callable[[], None]:
        """
        Register a callback invoked with (tenant_id, user_id) after a user's
        role assignments change.

        Returns:
            A function that unregisters the callback
        """
        with self._listeners_lock:
            self._assignment_listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._assignment_listeners:
                    self._assignment_listeners.remove(callback)

        return unsubscribe

    def _notify_assignment_changed(self, tenant_id: str, user_id: str) -> None:
        with self._listeners_lock:
            listeners = list(self._assignment_listeners)
        for callback in listeners:
            try:
                callback(tenant_id, user_id)
            except Exception:
                logger.exception(
                    "Assignment listener failed for user %s (tenant=%s)", user_id, tenant_id
                )

    def on_flag_changed(self, callback: FlagChangeCallback) -> Callable[[], None]:
        """
        Register a callback invoked with (tenant_id, flag_name) after a flag
        is created, updated or deleted. ``tenant_id`` is None for global flags.

        Returns:
            A function that unregisters the callback
        """
        with self._listeners_lock:
            self._flag_listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._flag_listeners:
                    self._flag_listeners.remove(callback)

        return unsubscribe

    def _notify_flag_changed(self, tenant_id: Optional[str], name: str) -> None:
        with self._listeners_lock:
            listeners = list(self._flag_listeners)
        for callback in listeners:
            try:
                callback(tenant_id, name)
            except Exception:
                logger.exception("Flag listener failed for %s (tenant=%s)", name, tenant_id)
