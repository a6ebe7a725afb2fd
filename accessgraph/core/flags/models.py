"""Feature flag records, evaluation contexts and results."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .rules import Condition


@dataclass(frozen=True)
class FeatureFlag:
    """A feature flag. ``tenant_id`` of None marks a global flag."""

    name: str
    enabled: bool = False
    tenant_id: Optional[str] = None
    rollout_percentage: int = 100
    target_users: Tuple[str, ...] = ()
    target_roles: Tuple[str, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    description: str = ""

    def __post_init__(self):
        if not 0 <= self.rollout_percentage <= 100:
            raise ValueError(
                f"rollout_percentage must be within [0, 100], got {self.rollout_percentage}"
            )
        object.__setattr__(self, "target_users", tuple(self.target_users))
        object.__setattr__(self, "target_roles", tuple(self.target_roles))
        object.__setattr__(self, "conditions", tuple(
            c if isinstance(c, Condition) else Condition.from_dict(c) for c in self.conditions
        ))

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "tenant_id": self.tenant_id,
            "rollout_percentage": self.rollout_percentage,
            "target_users": list(self.target_users),
            "target_roles": list(self.target_roles),
            "conditions": [c.to_dict() for c in self.conditions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureFlag":
        tenant_id = data.get("tenant_id")
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            enabled=bool(data.get("enabled", False)),
            tenant_id=str(tenant_id) if tenant_id is not None else None,
            rollout_percentage=int(data.get("rollout_percentage", 100)),
            target_users=tuple(data.get("target_users") or ()),
            target_roles=tuple(data.get("target_roles") or ()),
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions") or ()),
        )


@dataclass(frozen=True)
class FlagContext:
    """Request context a flag is evaluated against."""

    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    roles: Tuple[str, ...] = ()
    environment: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "roles", tuple(self.roles or ()))

    @classmethod
    def from_mapping(cls, data: Union["FlagContext", Mapping[str, Any], None]) -> "FlagContext":
        """Build a context from a mapping; camelCase keys are accepted too."""
        if isinstance(data, FlagContext):
            return data
        data = dict(data or {})

        def pick(*names):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return None

        user_id = pick("user_id", "userId")
        tenant_id = pick("tenant_id", "tenantId")
        return cls(
            user_id=str(user_id) if user_id is not None else None,
            tenant_id=str(tenant_id) if tenant_id is not None else None,
            roles=tuple(pick("roles", "userRoles") or ()),
            environment=pick("environment"),
            custom_data=dict(pick("custom_data", "customData") or {}),
        )

    @property
    def bucketing_key(self) -> str:
        """Key used for rollout bucketing: user, else tenant, else "default"."""
        return self.user_id or self.tenant_id or "default"


@dataclass
class FlagEvaluation:
    """Outcome of evaluating one flag; ``reason`` names the deciding check."""

    flag_name: str
    enabled: bool
    reason: str
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.enabled

    def to_dict(self) -> Dict[str, Any]:
        result = {"flag_name": self.flag_name, "enabled": self.enabled, "reason": self.reason}
        if self.metadata is not None:
            result["metadata"] = self.metadata
        return result


# Flags seeded for a fresh deployment, all switched off.
DEFAULT_FLAGS: List[Dict[str, Any]] = [
    {
        "name": name,
        "description": description,
        "enabled": False,
        "rollout_percentage": 0,
        "target_roles": ["SUPER_ADMIN", "TENANT_ADMIN"],
    }
    for name, description in (
        ("ai_lead_scoring", "Enable AI-powered lead scoring"),
        ("advanced_analytics", "Enable advanced analytics features"),
        ("automation_workflows", "Enable automation workflow engine"),
        ("mobile_app", "Enable mobile app features"),
        ("api_access", "Enable API access for integrations"),
        ("custom_integrations", "Enable custom integration capabilities"),
    )
]
