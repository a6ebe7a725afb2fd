"""SQL persistence for the role graph."""

from .base import Base, create_session_factory
from .store import SqlRoleGraphStore

__all__ = ["Base", "SqlRoleGraphStore", "create_session_factory"]
