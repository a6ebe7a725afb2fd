"""Database seeding for accessgraph.

Creates the default (switched off) feature flags and loads YAML fixtures
into the SQL store.
"""

from typing import Dict

from sqlalchemy import and_
from sqlalchemy.orm import Session

from accessgraph.common.config import load_fixture
from accessgraph.core.flags.models import DEFAULT_FLAGS
from accessgraph.db.models import FeatureFlagRecord


def seed_default_flags(db: Session) -> Dict[str, FeatureFlagRecord]:
    """
    Create the default global feature flags.

    Seeding is idempotent: flags that already exist are returned unchanged.

    Args:
        db: Database session

    Returns:
        Dict mapping flag name to FeatureFlagRecord
    """
    seeded = {}

    for flag_config in DEFAULT_FLAGS:
        existing = db.query(FeatureFlagRecord).filter(
            and_(
                FeatureFlagRecord.name == flag_config["name"],
                FeatureFlagRecord.tenant_id.is_(None),
            )
        ).first()

        if existing:
            seeded[existing.name] = existing
            continue

        record = FeatureFlagRecord(
            name=flag_config["name"],
            tenant_id=None,
            description=flag_config["description"],
            enabled=flag_config["enabled"],
            rollout_percentage=flag_config["rollout_percentage"],
            target_users=[],
            target_roles=list(flag_config["target_roles"]),
            conditions=[],
        )
        db.add(record)
        seeded[record.name] = record

    db.flush()
    return seeded


def seed_from_fixture(store, config_path: str) -> None:
    """
    Write the roles, assignments and flags of a fixture file through a store.

    Going through the store's write methods keeps mutation listeners informed.

    Args:
        store: SqlRoleGraphStore (or any store with the write methods)
        config_path: Path to the YAML fixture
    """
    fixture = load_fixture(config_path)
    for role in fixture.roles:
        store.save_role(role)
    for (tenant_id, user_id), role_ids in fixture.assignments.items():
        for role_id in role_ids:
            store.assign_role(tenant_id, user_id, role_id)
    for flag in fixture.flags:
        store.put_feature_flag(flag)
