"""Permission keys and wildcard matching.

Permission string format: "resource:action[:scope[:scope...]]"
Examples:
  - leads:read
  - leads:write:own
  - analytics:export:team

Keys are opaque for storage and resolution (exact-string equality). Wildcard
patterns are only used when checking authorization policies against the keys
a subject already holds.
"""

from typing import Iterable, List, NamedTuple, Tuple

from accessgraph.core.exceptions import InvalidPermissionKeyError


SEPARATOR = ":"
WILDCARD = "*"


class PermissionKey(NamedTuple):
    """A permission is a resource, an action and optional scope segments."""
    resource: str
    action: str
    scopes: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return SEPARATOR.join((self.resource, self.action) + tuple(self.scopes))

    @property
    def base(self) -> str:
        """The key without scope segments, e.g. ``leads:write``."""
        return f"{self.resource}{SEPARATOR}{self.action}"

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    @classmethod
    def from_string(cls, perm_str: str) -> "PermissionKey":
        """Parse a permission string like 'leads:write:own'."""
        parts = perm_str.split(SEPARATOR) if isinstance(perm_str, str) else []
        if len(parts) < 2 or any(not part for part in parts):
            raise InvalidPermissionKeyError(perm_str)
        return cls(parts[0], parts[1], tuple(parts[2:]))


def is_valid_permission_key(perm_str: str) -> bool:
    """Check that a string follows the resource:action[:scope...] format."""
    try:
        PermissionKey.from_string(perm_str)
    except InvalidPermissionKeyError:
        return False
    return True


def matches_pattern(pattern: str, permission: str) -> bool:
    """Check whether a policy pattern matches a held permission key.

    ``*`` matches any value at its segment position. A pattern with fewer
    segments than the permission matches as a prefix; a pattern with more
    segments never matches.

    >>> matches_pattern("leads:*", "leads:write:own")
    True
    >>> matches_pattern("leads:write:own", "leads:write")
    False
    """
    if pattern == permission:
        return True

    pattern_parts = pattern.split(SEPARATOR)
    permission_parts = permission.split(SEPARATOR)
    if len(pattern_parts) > len(permission_parts):
        return False

    for expected, actual in zip(pattern_parts, permission_parts):
        if expected != WILDCARD and expected != actual:
            return False
    return True


class PermissionMatcher:
    """Matches permission keys against a fixed set of policy patterns."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = tuple(dict.fromkeys(patterns))

    def matches(self, permission: str) -> bool:
        """Check if any pattern matches the permission."""
        return any(matches_pattern(p, permission) for p in self.patterns)

    def matching(self, permissions: Iterable[str]) -> List[str]:
        """Return the permissions matched by at least one pattern, sorted."""
        return sorted(p for p in set(permissions) if self.matches(p))

    def any_held(self, permissions: Iterable[str]) -> bool:
        """Check if any of the held permissions satisfies a pattern."""
        return any(self.matches(p) for p in permissions)
