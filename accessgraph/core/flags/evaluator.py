"""Feature flag evaluation.

Checks run in a fixed order and stop at the first one that fails; each
outcome carries a distinct reason string:

1. flag not found
2. flag disabled
3. tenant-scoped flag for another tenant
4. conditions (all must pass)
5. target users
6. target roles
7. rollout percentage
8. enabled

Rollout bucketing is deterministic across processes and languages: the
bucketing key is hashed with the 32-bit ``h * 31 + code_unit`` hash over its
UTF-16 code units (the same values JavaScript's ``charCodeAt`` yields), and
the bucket is ``abs(h) % 100``.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from accessgraph.core.config import get_settings
from .models import FeatureFlag, FlagContext, FlagEvaluation
from .rules import evaluate_condition


logger = logging.getLogger(__name__)

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def rollout_hash(key: str) -> int:
    """Signed 32-bit ``h * 31 + c`` hash over the UTF-16 code units of ``key``."""
    value = 0
    data = key.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        value = (value * 31 + code_unit) & _INT32_MASK
    return value - 0x100000000 if value & _INT32_SIGN else value


def rollout_bucket(key: str) -> int:
    """Bucket in [0, 100) for a bucketing key."""
    return abs(rollout_hash(key)) % 100


def in_rollout(key: str, percentage: float) -> bool:
    """Admit ``key`` iff its bucket is below ``percentage``."""
    return rollout_bucket(key) < percentage


ContextLike = Union[FlagContext, Mapping[str, Any], None]


class FeatureFlagEvaluator:
    """
    Evaluates feature flags against request contexts.

    Stateless apart from a TTL cache of flag definitions loaded from the
    store. Absent flags are not cached, so a newly created flag is visible
    on the next evaluation, and flag writes reported by the store drop the
    cached definition.
    """

    def __init__(
        self,
        store,
        *,
        cache_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        subscribe: bool = True,
    ):
        """
        Args:
            store: Anything providing get_feature_flag/list_feature_flags
            cache_ttl_seconds: Definition cache TTL; 0 disables caching
            clock: Monotonic clock for cache expiry
            subscribe: Drop cached definitions when the store reports a
                flag write (stores exposing on_flag_changed only)
        """
        self.store = store
        self.cache_ttl = (
            cache_ttl_seconds if cache_ttl_seconds is not None
            else get_settings().flag_cache_ttl_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._definitions: Dict[Tuple[Optional[str], str], Tuple[FeatureFlag, float]] = {}
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        if subscribe and hasattr(store, "on_flag_changed"):
            self._unsubscribe = store.on_flag_changed(self._on_flag_changed)

    def evaluate(self, flag_name: str, context: ContextLike = None) -> FlagEvaluation:
        """
        Evaluate a flag for a context.

        Never raises: an error while loading or evaluating the flag yields
        a disabled result.
        """
        ctx = FlagContext.from_mapping(context)
        try:
            flag = self._get_flag(ctx.tenant_id, flag_name)
            return self.evaluate_flag(flag, ctx, flag_name=flag_name)
        except Exception:
            logger.exception("Feature flag evaluation error for %s", flag_name)
            return FlagEvaluation(flag_name, False, "Error evaluating feature flag")

    def is_enabled(self, flag_name: str, context: ContextLike = None) -> bool:
        return self.evaluate(flag_name, context).enabled

    def evaluate_flag(
        self,
        flag: Optional[FeatureFlag],
        context: FlagContext,
        flag_name: Optional[str] = None,
    ) -> FlagEvaluation:
        """Run the ordered checks for an already loaded flag."""
        name = flag.name if flag is not None else (flag_name or "")

        if flag is None:
            return FlagEvaluation(name, False, "Feature flag not found")

        if not flag.enabled:
            return FlagEvaluation(name, False, "Feature flag is disabled")

        if flag.tenant_id is not None and flag.tenant_id != context.tenant_id:
            return FlagEvaluation(name, False, "Feature flag is tenant-specific and does not match")

        for condition in flag.conditions:
            passed, reason = evaluate_condition(condition, context)
            if not passed:
                logger.debug("Flag %s: %s", name, reason)
                return FlagEvaluation(name, False, "Feature flag conditions not met")

        if flag.target_users:
            if not context.user_id or context.user_id not in flag.target_users:
                return FlagEvaluation(name, False, "User not in target list")

        if flag.target_roles:
            if not set(context.roles) & set(flag.target_roles):
                return FlagEvaluation(name, False, "User role not in target list")

        if flag.rollout_percentage < 100:
            if not in_rollout(context.bucketing_key, flag.rollout_percentage):
                return FlagEvaluation(
                    name, False, f"User not in rollout percentage ({flag.rollout_percentage}%)"
                )

        return FlagEvaluation(
            name,
            True,
            "Feature flag is enabled for this context",
            metadata={
                "rollout_percentage": flag.rollout_percentage,
                "conditions": [c.to_dict() for c in flag.conditions],
                "target_users": list(flag.target_users),
                "target_roles": list(flag.target_roles),
            },
        )

    def enabled_flags(self, context: ContextLike = None) -> List[str]:
        """Names of all flags enabled for a context, sorted."""
        ctx = FlagContext.from_mapping(context)
        try:
            flags = self.store.list_feature_flags(ctx.tenant_id)
        except Exception:
            logger.exception("Error listing feature flags (tenant=%s)", ctx.tenant_id)
            return []

        names = sorted({flag.name for flag in flags})
        return [name for name in names if self.evaluate(name, ctx).enabled]

    def invalidate(self, flag_name: Optional[str] = None) -> None:
        """Drop cached definitions of one flag, or of all flags."""
        with self._lock:
            self._generation += 1
            if flag_name is None:
                self._definitions.clear()
            else:
                for key in [k for k in self._definitions if k[1] == flag_name]:
                    del self._definitions[key]

    def _get_flag(self, tenant_id: Optional[str], name: str) -> Optional[FeatureFlag]:
        key = (tenant_id, name)
        now = self._clock()
        if self.cache_ttl > 0:
            with self._lock:
                cached = self._definitions.get(key)
                if cached is not None and now - cached[1] < self.cache_ttl:
                    return cached[0]
                generation = self._generation

        flag = self.store.get_feature_flag(tenant_id, name)
        if flag is not None and self.cache_ttl > 0:
            with self._lock:
                # A write reported while loading makes this definition suspect.
                if generation == self._generation:
                    self._definitions[key] = (flag, now)
        return flag

    def _on_flag_changed(self, tenant_id: Optional[str], name: str) -> None:
        logger.debug("Flag %s changed (tenant=%s); dropping cached definition", name, tenant_id)
        self.invalidate(name)

    def close(self) -> None:
        """Stop listening for flag writes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
