"""Feature flag condition definitions.

Conditions compare one field of the evaluation context against a fixed
value. A flag's conditions are combined with AND logic. The operator set is
closed; an operator outside it never passes.
"""

import math
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass


class ConditionOperator(str, Enum):
    """Operators for condition comparisons."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"

    @classmethod
    def parse(cls, value: Any) -> Optional["ConditionOperator"]:
        """Return the operator for ``value`` or None if it is not supported."""
        try:
            return cls(value)
        except ValueError:
            return None


class ConditionType(str, Enum):
    """Informational condition category carried over from stored flags."""

    USER_ID = "user_id"
    ROLE = "role"
    TENANT = "tenant"
    ENVIRONMENT = "environment"
    TIME = "time"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Condition:
    """
    A single flag condition.

    ``operator`` keeps the raw stored string so that an unknown operator
    survives loading and simply fails evaluation.
    """
    field: str
    operator: str
    value: Any = None
    type: ConditionType = ConditionType.CUSTOM

    def to_dict(self) -> Dict[str, Any]:
        """Convert condition to dictionary for serialization."""
        return {
            "type": self.type.value,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Create condition from dictionary."""
        operator = data["operator"]
        if isinstance(operator, ConditionOperator):
            operator = operator.value
        try:
            condition_type = ConditionType(data.get("type", ConditionType.CUSTOM.value))
        except ValueError:
            condition_type = ConditionType.CUSTOM
        return cls(
            field=data["field"],
            operator=operator,
            value=data.get("value"),
            type=condition_type,
        )


def resolve_field(field_name: str, context) -> Any:
    """Look up a condition field: built-in context fields first, then custom_data."""
    if field_name == "userId":
        return context.user_id
    if field_name == "tenantId":
        return context.tenant_id
    if field_name == "roles":
        return list(context.roles)
    if field_name == "environment":
        return context.environment
    return (context.custom_data or {}).get(field_name)


_SEQUENCES = (list, tuple, set, frozenset)


def _to_number(value: Any) -> float:
    """Numeric coercion; NaN for absent or unparsable values, so both
    ordering comparisons fail."""
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        if not value.strip():
            return 0.0
        try:
            return float(value)
        except ValueError:
            return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    return math.nan


def _to_text(value: Any) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    """Type-strict equality: ``True`` never equals ``1`` and containers
    only equal themselves."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return left is right


def _includes(items, value: Any) -> bool:
    return any(strict_equals(item, value) for item in items)


def compare_values(actual: Any, operator: Any, expected: Any) -> bool:
    """Compare values using the specified operator.

    Equality and membership are type-strict. Numeric comparisons coerce
    both sides; a missing or non-numeric value never passes. ``contains``
    checks list membership for lists and substring presence otherwise.
    """
    op = operator if isinstance(operator, ConditionOperator) else ConditionOperator.parse(operator)
    if op is None:
        return False

    if op == ConditionOperator.EQUALS:
        return strict_equals(actual, expected)
    elif op == ConditionOperator.NOT_EQUALS:
        return not strict_equals(actual, expected)
    elif op == ConditionOperator.CONTAINS:
        if isinstance(actual, _SEQUENCES):
            return _includes(actual, expected)
        return _to_text(expected) in _to_text(actual)
    elif op == ConditionOperator.NOT_CONTAINS:
        if isinstance(actual, _SEQUENCES):
            return not _includes(actual, expected)
        return _to_text(expected) not in _to_text(actual)
    elif op == ConditionOperator.GREATER_THAN:
        return _to_number(actual) > _to_number(expected)
    elif op == ConditionOperator.LESS_THAN:
        return _to_number(actual) < _to_number(expected)
    elif op == ConditionOperator.IN:
        return isinstance(expected, _SEQUENCES) and _includes(expected, actual)
    elif op == ConditionOperator.NOT_IN:
        if isinstance(expected, _SEQUENCES):
            return not _includes(expected, actual)
        return True
    return False


def evaluate_condition(condition: Condition, context) -> Tuple[bool, Optional[str]]:
    """
    Evaluate a single condition against a flag context.

    Returns:
        Tuple of (passed, reason)
    """
    actual = resolve_field(condition.field, context)
    if compare_values(actual, condition.operator, condition.value):
        return True, None
    return False, f"Condition failed: {condition.field} {condition.operator} {condition.value!r}"
