from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Integer, UniqueConstraint

from accessgraph.db.base import Base


class FeatureFlagRecord(Base):
    __tablename__ = "feature_flags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    tenant_id = Column(String(100), nullable=True)  # NULL for global flags
    description = Column(String(1000), default="")
    enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Integer, nullable=False, default=100)
    target_users = Column(JSON, default=list)
    target_roles = Column(JSON, default=list)
    conditions = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("name", "tenant_id", name="uq_feature_flags_name_tenant"),
    )
