"""Exception types for accessgraph.

Absent roles and flags are never exceptions: lookups return ``None`` and the
engine treats them as contributing nothing. Only failures that an operator must
be able to tell apart from a plain "access denied" are raised.
"""

from typing import Optional


class AccessGraphError(Exception):
    """Base class for all accessgraph errors."""


class TransientStoreError(AccessGraphError):
    """Raised when the role store cannot be reached or fails mid-query."""

    def __init__(self, message: str, tenant_id: Optional[str] = None):
        super().__init__(message)
        self.tenant_id = tenant_id


class ResolutionTimeoutError(TransientStoreError):
    """Raised when a resolution or a wait on one exceeds its deadline."""


class VersionCounterError(AccessGraphError):
    """Raised when a tenant source version cannot be read or bumped."""


class InvalidPermissionKeyError(AccessGraphError, ValueError):
    """Raised when a permission key does not follow resource:action[:scope...]."""

    def __init__(self, key: str):
        super().__init__(f"Invalid permission key format: {key!r}")
        self.key = key
