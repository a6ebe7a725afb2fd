"""RBAC (Role-Based Access Control) module for accessgraph.

This module defines the permission key model, roles, the inheritance
resolver and the permission service.
"""

from .permissions import PermissionKey, PermissionMatcher, is_valid_permission_key, matches_pattern
from .resolver import PermissionResolver, resolve_permissions
from .roles import Role, sort_by_priority
from .service import AuthorizationDecision, PermissionService

__all__ = [
    "AuthorizationDecision",
    "PermissionKey",
    "PermissionMatcher",
    "PermissionResolver",
    "PermissionService",
    "Role",
    "is_valid_permission_key",
    "matches_pattern",
    "resolve_permissions",
    "sort_by_priority",
]
