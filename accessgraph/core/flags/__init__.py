"""Feature flag evaluation for accessgraph.

Evaluates tenant-scoped and global flags against request contexts with
conditions, targeting and deterministic percentage rollout.
"""

from .evaluator import FeatureFlagEvaluator, in_rollout, rollout_bucket, rollout_hash
from .models import DEFAULT_FLAGS, FeatureFlag, FlagContext, FlagEvaluation
from .rules import (
    Condition,
    ConditionOperator,
    ConditionType,
    compare_values,
    evaluate_condition,
    strict_equals,
)

__all__ = [
    "Condition",
    "ConditionOperator",
    "ConditionType",
    "DEFAULT_FLAGS",
    "FeatureFlag",
    "FeatureFlagEvaluator",
    "FlagContext",
    "FlagEvaluation",
    "compare_values",
    "evaluate_condition",
    "in_rollout",
    "rollout_bucket",
    "rollout_hash",
    "strict_equals",
]
