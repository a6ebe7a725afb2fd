"""Tests for PermissionService."""

import logging
import threading
from unittest.mock import MagicMock

import pytest

from accessgraph.core.cache import ResolutionCache, SubjectType
from accessgraph.core.exceptions import TransientStoreError
from accessgraph.core.rbac import PermissionService
from accessgraph.store import InMemoryRoleGraphStore

from tests.factories import TENANT, create_role


class TestQueries:
    """Boolean permission checks."""

    def test_user_inherits_through_assigned_role(self, service):
        assert service.has_permission("alice", TENANT, "leads:read")
        assert service.has_permission("alice", TENANT, "leads:write")
        assert not service.has_permission("bob", TENANT, "leads:write")

    def test_role_subject(self, service):
        assert service.has_permission("manager", TENANT, "leads:read", SubjectType.ROLE)
        assert service.effective_permissions("agent", TENANT, "role") == ["leads:read"]

    def test_user_without_roles_has_nothing(self, service):
        assert service.effective_permissions("nobody", TENANT) == []
        assert not service.has_permission("nobody", TENANT, "leads:read")

    def test_user_holds_union_of_roles(self, store, service):
        store.save_role(create_role("reporter", permissions=["reports:view"]))
        store.assign_role(TENANT, "alice", "reporter")
        assert service.effective_permissions("alice", TENANT) == [
            "leads:read", "leads:write", "reports:view",
        ]

    def test_has_any_permission(self, service):
        assert service.has_any_permission("bob", TENANT, ["leads:write", "leads:read"])
        assert not service.has_any_permission("bob", TENANT, ["leads:write"])
        assert not service.has_any_permission("bob", TENANT, [])

    def test_has_all_permissions(self, service):
        assert service.has_all_permissions("alice", TENANT, ["leads:read", "leads:write"])
        assert not service.has_all_permissions("bob", TENANT, ["leads:read", "leads:write"])
        assert service.has_all_permissions("bob", TENANT, [])

    def test_bare_string_is_rejected(self, service):
        with pytest.raises(TypeError):
            service.has_any_permission("bob", TENANT, "leads:read")
        with pytest.raises(TypeError):
            service.has_all_permissions("bob", TENANT, "leads:read")

    def test_has_matching_permission(self, service):
        assert service.has_matching_permission("alice", TENANT, "leads:*")
        assert not service.has_matching_permission("alice", TENANT, "contacts:*")

    def test_tenants_are_isolated(self, store, service):
        store.save_role(create_role("manager", tenant_id="other", permissions=["billing:admin"]))
        store.assign_role("other", "alice", "manager")
        assert service.effective_permissions("alice", "other") == ["billing:admin"]
        assert not service.has_permission("alice", TENANT, "billing:admin")

    def test_single_resolution_per_query(self, store, cache, settings):
        store.get_user_role_ids = MagicMock(wraps=store.get_user_role_ids)
        service = PermissionService(store, cache, settings=settings)
        service.has_all_permissions("alice", TENANT, ["leads:read", "leads:write", "leads:delete"])
        assert store.get_user_role_ids.call_count == 1
        service.close()


class TestConstruction:

    def test_injected_empty_cache_is_used(self, store, settings):
        cache = ResolutionCache(60)
        service = PermissionService(store, cache, settings=settings, subscribe=False)
        try:
            assert len(cache) == 0
            assert service.cache is cache
            assert service.has_permission("bob", TENANT, "leads:read")

            store.remove_permission(TENANT, "agent", "leads:read")
            cache.invalidate_role(TENANT, "agent")
            assert not service.has_permission("bob", TENANT, "leads:read")
        finally:
            service.close()


class TestFailClosed:
    """Store failures deny instead of raising."""

    @pytest.fixture
    def broken_store(self):
        store = InMemoryRoleGraphStore()
        store.get_user_role_ids = MagicMock(side_effect=ConnectionError("database unreachable"))
        return store

    @pytest.fixture
    def broken_service(self, broken_store, settings):
        service = PermissionService(broken_store, ResolutionCache(60), settings=settings)
        yield service
        service.close()

    def test_has_checks_return_false(self, broken_service):
        assert broken_service.has_permission("alice", TENANT, "leads:read") is False
        assert broken_service.has_any_permission("alice", TENANT, ["leads:read"]) is False
        assert broken_service.has_all_permissions("alice", TENANT, []) is False
        assert broken_service.has_matching_permission("alice", TENANT, "*") is False

    def test_check_permission_reports_degraded(self, broken_service, caplog):
        with caplog.at_level(logging.ERROR, logger="accessgraph.core.rbac.service"):
            decision = broken_service.check_permission("alice", TENANT, "leads:read")
        assert not decision
        assert decision.degraded
        assert "denying" in caplog.text

    def test_plain_deny_is_not_degraded(self, service):
        decision = service.check_permission("bob", TENANT, "leads:write")
        assert not decision.allowed
        assert not decision.degraded

    def test_effective_permissions_propagates_store_error(self, broken_service):
        with pytest.raises(TransientStoreError) as exc_info:
            broken_service.effective_permissions("alice", TENANT)
        assert exc_info.value.tenant_id == TENANT
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_failures_are_not_cached(self, broken_store, broken_service):
        broken_service.has_permission("alice", TENANT, "leads:read")
        broken_store.get_user_role_ids = MagicMock(return_value=())
        assert broken_service.effective_permissions("alice", TENANT) == []
        assert broken_service.cache_statistics()["failures"] == 1


class TestInvalidation:
    """Mutations through the store reach the cache."""

    def test_added_permission_visible_immediately(self, store, service):
        assert not service.has_permission("alice", TENANT, "leads:delete")
        store.add_permission(TENANT, "agent", "leads:delete")
        assert service.has_permission("alice", TENANT, "leads:delete")
        assert service.has_permission("bob", TENANT, "leads:delete")

    def test_denial_on_manager_keeps_agent(self, store, service):
        assert service.effective_permissions("manager", TENANT, "role") == ["leads:read", "leads:write"]
        store.deny_permission(TENANT, "manager", "leads:read")
        assert service.effective_permissions("manager", TENANT, "role") == ["leads:write"]
        assert service.effective_permissions("agent", TENANT, "role") == ["leads:read"]

    def test_assignment_change_invalidates_user(self, store, service):
        assert not service.has_permission("bob", TENANT, "leads:write")
        store.assign_role(TENANT, "bob", "manager")
        assert service.has_permission("bob", TENANT, "leads:write")
        store.unassign_role(TENANT, "bob", "manager")
        assert not service.has_permission("bob", TENANT, "leads:write")

    def test_revocation_during_resolution_is_not_cached(self, store, service):
        read_done, release = threading.Event(), threading.Event()
        original = store.get_user_role_ids
        calls = []

        def slow_lookup(tenant_id, user_id):
            role_ids = original(tenant_id, user_id)
            calls.append(role_ids)
            if len(calls) == 1:
                read_done.set()
                release.wait(5)
            return role_ids

        store.get_user_role_ids = slow_lookup
        worker = threading.Thread(target=service.has_permission, args=("alice", TENANT, "leads:write"))
        worker.start()
        assert read_done.wait(5)

        store.unassign_role(TENANT, "alice", "manager")
        release.set()
        worker.join(5)

        assert not service.has_permission("alice", TENANT, "leads:write")
        assert len(calls) == 2

    def test_deactivated_parent_drops_inherited(self, store, service):
        store.set_active(TENANT, "agent", False)
        assert service.effective_permissions("alice", TENANT) == ["leads:write"]

    def test_close_unsubscribes(self, store, cache, settings):
        service = PermissionService(store, cache, settings=settings)
        service.close()
        before = cache.current_version(TENANT)
        store.add_permission(TENANT, "agent", "leads:delete")
        assert cache.current_version(TENANT) == before

    def test_explicit_invalidate_user(self, service, cache):
        service.has_permission("alice", TENANT, "leads:read")
        assert len(cache) == 1
        service.invalidate("alice", TENANT)
        assert len(cache) == 0

    def test_invalidate_tenant(self, service, cache):
        service.has_permission("alice", TENANT, "leads:read")
        service.has_permission("bob", TENANT, "leads:read")
        service.invalidate_tenant(TENANT)
        assert len(cache) == 0


class TestHierarchy:
    """Informational hierarchy listings."""

    def test_role_hierarchy_sorted_by_priority(self, store, service):
        store.save_role(create_role("director", parents=["manager"], priority=1))
        store.save_role(create_role("agent", permissions=["leads:read"], priority=10))
        hierarchy = service.role_hierarchy("director", TENANT)
        assert [r.id for r in hierarchy] == ["agent", "director", "manager"]

    def test_affected_roles(self, store, service):
        store.save_role(create_role("director", parents=["manager"]))
        assert service.affected_roles("agent", TENANT) == ["agent", "manager", "director"]
