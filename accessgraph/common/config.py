"""Fixture configuration for accessgraph.

Handles loading of YAML files that describe role graphs, user role
assignments and feature flags, e.g.::

    flags:                      # global flags
      - name: mobile_app
        enabled: true
    tenants:
      acme:
        roles:
          - id: agent
            permissions: [lead:read]
          - id: manager
            parents: [agent]
            denied: [lead:delete]
        assignments:
          alice: [manager]
        flags:                  # flags scoped to this tenant
          - name: ai_lead_scoring
            enabled: true
            rollout_percentage: 25
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from accessgraph.core.flags.models import DEFAULT_FLAGS, FeatureFlag
from accessgraph.core.rbac.roles import Role


@dataclass
class FixtureConfig:
    """Typed content of a fixture file."""

    roles: List[Role] = field(default_factory=list)
    assignments: Dict[Tuple[str, str], List[str]] = field(default_factory=dict)
    flags: List[FeatureFlag] = field(default_factory=list)


def parse_role(tenant_id: str, role_dict: Dict[str, Any]) -> Role:
    """Parse a role entry of a tenant.

    Args:
        tenant_id: Tenant the role belongs to
        role_dict: Role dictionary

    Returns:
        Role instance
    """
    if "id" not in role_dict:
        raise ValueError(f"Role in tenant {tenant_id} is missing an id")
    return Role.from_dict({**role_dict, "tenant_id": tenant_id})


def parse_flag(flag_dict: Dict[str, Any], tenant_id: str = None) -> FeatureFlag:
    """Parse a feature flag entry; tenant sections scope their flags."""
    if tenant_id is not None:
        flag_dict = {**flag_dict, "tenant_id": tenant_id}
    return FeatureFlag.from_dict(flag_dict)


def parse_fixture(config_dict: Dict[str, Any]) -> FixtureConfig:
    """Parse the full fixture dictionary.

    Args:
        config_dict: Full fixture dictionary

    Returns:
        FixtureConfig instance
    """
    fixture = FixtureConfig()

    if config_dict.get("default_flags", False):
        fixture.flags.extend(FeatureFlag.from_dict(f) for f in DEFAULT_FLAGS)
    for flag_dict in config_dict.get("flags") or []:
        fixture.flags.append(parse_flag(flag_dict))

    for tenant_id, tenant_dict in (config_dict.get("tenants") or {}).items():
        tenant_id = str(tenant_id)
        tenant_dict = tenant_dict or {}
        for role_dict in tenant_dict.get("roles") or []:
            fixture.roles.append(parse_role(tenant_id, role_dict))
        for user_id, role_ids in (tenant_dict.get("assignments") or {}).items():
            fixture.assignments[(tenant_id, str(user_id))] = [str(r) for r in role_ids or []]
        for flag_dict in tenant_dict.get("flags") or []:
            fixture.flags.append(parse_flag(flag_dict, tenant_id))

    return fixture


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_fixture(config_path: str) -> FixtureConfig:
    """Load and parse a fixture file into typed records."""
    return parse_fixture(load_config(config_path))


def load_store(config_path: str):
    """Build an InMemoryRoleGraphStore seeded from a fixture file."""
    from accessgraph.store.memory import InMemoryRoleGraphStore

    fixture = load_fixture(config_path)
    return InMemoryRoleGraphStore(
        roles=fixture.roles,
        assignments=fixture.assignments,
        flags=fixture.flags,
    )
