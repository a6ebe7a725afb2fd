"""CLI interface for checking permissions against a fixture file."""

import sys

import yaml

from .common.config import load_store
from .common.logger import configure_from_settings
from .core.config import get_settings
from .core.flags import FeatureFlagEvaluator, FlagContext
from .core.rbac import PermissionService

USAGE = "Usage: python -m accessgraph <fixture.yaml> <tenant> <user> [permission ...]"


def main(argv=None) -> int:
    """Print a user's effective permissions and enabled flags, or check
    the given permissions.

    Returns:
        0 when every requested permission is granted, 1 otherwise
    """
    args = sys.argv[1:] if argv is None else argv
    if len(args) < 3:
        print(USAGE, file=sys.stderr)
        return 2

    fixture_path, tenant_id, user_id, permissions = args[0], args[1], args[2], args[3:]

    settings = get_settings()
    configure_from_settings(settings)

    try:
        store = load_store(fixture_path)
    except (OSError, KeyError, TypeError, ValueError, yaml.YAMLError) as e:
        print(f"Error: cannot load fixture {fixture_path}: {e}", file=sys.stderr)
        return 2

    service = PermissionService(store, settings=settings)
    evaluator = FeatureFlagEvaluator(store, cache_ttl_seconds=0)
    try:
        if not permissions:
            resolved = service.resolve(user_id, tenant_id)
            print(f"Roles: {', '.join(resolved.role_ids) or '-'}")
            print(f"Permissions: {', '.join(sorted(resolved.permissions)) or '-'}")
            context = FlagContext(user_id=user_id, tenant_id=tenant_id, roles=resolved.role_ids)
            print(f"Flags: {', '.join(evaluator.enabled_flags(context)) or '-'}")
            return 0

        granted = True
        for permission in permissions:
            decision = service.check_permission(user_id, tenant_id, permission)
            print(f"{permission}: {'ALLOW' if decision.allowed else 'DENY'} ({decision.reason})")
            granted = granted and decision.allowed
        return 0 if granted else 1
    finally:
        evaluator.close()
        service.close()


if __name__ == "__main__":
    sys.exit(main())
