from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Integer, Index

from accessgraph.db.base import Base


class RoleRecord(Base):
    __tablename__ = "roles"

    tenant_id = Column(String(100), primary_key=True)
    id = Column(String(100), primary_key=True)
    key = Column(String(100), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    description = Column(String(1000), default="")
    permissions = Column(JSON, nullable=False, default=list)
    denied_permissions = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    is_system = Column(Boolean, default=False)
    tags = Column(JSON, default=list)
    attributes = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RoleEdge(Base):
    """Inheritance edge: ``child_id`` inherits from ``parent_id``.

    No foreign keys: an edge may outlive either endpoint.
    """
    __tablename__ = "role_edges"

    tenant_id = Column(String(100), primary_key=True)
    child_id = Column(String(100), primary_key=True)
    parent_id = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_role_edges_parent", "tenant_id", "parent_id"),
    )


class UserRole(Base):
    __tablename__ = "user_roles"

    tenant_id = Column(String(100), primary_key=True)
    user_id = Column(String(100), primary_key=True)
    role_id = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_user_roles_role", "tenant_id", "role_id"),
    )
