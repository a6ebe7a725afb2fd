"""Database models for accessgraph."""

from accessgraph.db.models.role import RoleRecord, RoleEdge, UserRole
from accessgraph.db.models.feature_flag import FeatureFlagRecord

__all__ = [
    "RoleRecord",
    "RoleEdge",
    "UserRole",
    "FeatureFlagRecord",
]
