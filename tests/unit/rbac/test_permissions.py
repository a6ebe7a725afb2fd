"""Tests for permission keys and wildcard matching."""

import pytest

from accessgraph.core.exceptions import InvalidPermissionKeyError
from accessgraph.core.rbac.permissions import (
    PermissionKey,
    PermissionMatcher,
    is_valid_permission_key,
    matches_pattern,
)


class TestPermissionKey:
    """Test permission key parsing."""

    def test_permission_string_format(self):
        """Test permission string format."""
        assert str(PermissionKey("leads", "read")) == "leads:read"
        assert str(PermissionKey("leads", "write", ("own",))) == "leads:write:own"

    def test_permission_from_string(self):
        """Test parsing permission from string."""
        key = PermissionKey.from_string("analytics:export:team")
        assert key.resource == "analytics"
        assert key.action == "export"
        assert key.scopes == ("team",)
        assert key.base == "analytics:export"
        assert key.has_scope("team")

    @pytest.mark.parametrize("value", ["invalid", "", ":read", "leads:", "leads::own"])
    def test_invalid_permission_format(self, value):
        """Keys need at least two non-empty segments."""
        with pytest.raises(InvalidPermissionKeyError):
            PermissionKey.from_string(value)

    def test_invalid_key_error_is_value_error(self):
        with pytest.raises(ValueError) as exc_info:
            PermissionKey.from_string("invalid")
        assert exc_info.value.key == "invalid"

    def test_is_valid_permission_key(self):
        assert is_valid_permission_key("leads:read")
        assert is_valid_permission_key("leads:write:own")
        assert not is_valid_permission_key("leads")


class TestWildcardMatching:
    """Test wildcard policy patterns."""

    def test_exact_match(self):
        assert matches_pattern("leads:read", "leads:read")
        assert not matches_pattern("leads:read", "leads:write")

    def test_resource_wildcard_matches_scoped_permission(self):
        """Pattern leads:* matches leads:write:own (prefix semantics)."""
        assert matches_pattern("leads:*", "leads:write:own")

    def test_longer_pattern_never_matches(self):
        """Pattern leads:write:own does not match leads:write."""
        assert not matches_pattern("leads:write:own", "leads:write")

    def test_wildcard_in_any_segment(self):
        assert matches_pattern("*:read", "contacts:read")
        assert matches_pattern("leads:*:own", "leads:delete:own")
        assert not matches_pattern("leads:*:own", "leads:delete:team")

    def test_wildcard_does_not_cross_resources(self):
        assert not matches_pattern("leads:*", "contacts:read")


class TestPermissionMatcher:
    """Test PermissionMatcher class."""

    def test_matches_any_pattern(self):
        matcher = PermissionMatcher(["leads:*", "contacts:read"])
        assert matcher.matches("leads:write")
        assert matcher.matches("contacts:read")
        assert not matcher.matches("contacts:write")

    def test_matching_returns_sorted_subset(self):
        matcher = PermissionMatcher(["leads:*"])
        held = ["leads:write", "contacts:read", "leads:read", "leads:read"]
        assert matcher.matching(held) == ["leads:read", "leads:write"]

    def test_any_held(self):
        matcher = PermissionMatcher(["reports:*"])
        assert not matcher.any_held(["leads:read"])
        assert matcher.any_held(["leads:read", "reports:view"])
        assert not matcher.any_held([])
