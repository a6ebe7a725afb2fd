"""Role graph stores."""

from .base import RoleGraphStore
from .memory import InMemoryRoleGraphStore

__all__ = ["InMemoryRoleGraphStore", "RoleGraphStore"]
