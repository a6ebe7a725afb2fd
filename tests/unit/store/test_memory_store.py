"""Tests for the in-memory role graph store."""

import pytest

from accessgraph.store import InMemoryRoleGraphStore

from tests.factories import TENANT, create_flag, create_role


@pytest.fixture
def events(store):
    recorded = []
    store.on_role_mutated(lambda tenant_id, role_id: recorded.append(("role", tenant_id, role_id)))
    store.on_assignment_changed(lambda tenant_id, user_id: recorded.append(("user", tenant_id, user_id)))
    return recorded


class TestReads:

    def test_get_role(self, store):
        assert store.get_role(TENANT, "agent").direct_permissions == {"leads:read"}
        assert store.get_role(TENANT, "missing") is None
        assert store.get_role("other", "agent") is None

    def test_edges_are_reciprocal(self, store):
        assert store.get_role(TENANT, "agent").child_role_ids == ("manager",)

    def test_list_roles(self, store):
        assert sorted(r.id for r in store.list_roles(TENANT)) == ["agent", "manager"]

    def test_users_with_role(self, store):
        assert store.users_with_role(TENANT, "manager") == ["alice"]

    def test_unknown_user_has_no_roles(self, store):
        assert store.get_user_role_ids(TENANT, "nobody") == ()


class TestRoleWrites:

    def test_mutations_notify(self, store, events):
        store.add_permission(TENANT, "agent", "leads:delete")
        store.deny_permission(TENANT, "manager", "leads:read")
        assert events == [("role", TENANT, "agent"), ("role", TENANT, "manager")]

    def test_permission_helpers(self, store):
        store.add_permission(TENANT, "agent", "leads:delete")
        store.remove_permission(TENANT, "agent", "leads:read")
        store.deny_permission(TENANT, "agent", "leads:export")
        store.allow_permission(TENANT, "agent", "leads:export")
        role = store.get_role(TENANT, "agent")
        assert role.direct_permissions == {"leads:delete"}
        assert role.denied_permissions == frozenset()

    def test_parent_helpers_keep_edges_reciprocal(self, store):
        store.save_role(create_role("director"))
        store.add_parent_role(TENANT, "director", "manager")
        assert store.get_role(TENANT, "manager").child_role_ids == ("director",)

        store.remove_parent_role(TENANT, "director", "manager")
        assert store.get_role(TENANT, "manager").child_role_ids == ()
        assert store.get_role(TENANT, "director").parent_role_ids == ()

    def test_child_saved_before_parent(self):
        store = InMemoryRoleGraphStore()
        store.save_role(create_role("child", parents=["parent"]))
        store.save_role(create_role("parent"))
        assert store.get_role(TENANT, "parent").child_role_ids == ("child",)

    def test_delete_leaves_dangling_child_edge(self, store, events):
        assert store.delete_role(TENANT, "agent")
        assert store.get_role(TENANT, "manager").parent_role_ids == ("agent",)
        assert events == [("role", TENANT, "agent")]
        assert not store.delete_role(TENANT, "agent")

    def test_update_missing_role(self, store):
        with pytest.raises(KeyError):
            store.add_permission(TENANT, "missing", "a:b")

    def test_failing_listener_does_not_break_write(self, store):
        def broken(tenant_id, role_id):
            raise RuntimeError("listener bug")

        store.on_role_mutated(broken)
        store.set_active(TENANT, "agent", False)
        assert not store.get_role(TENANT, "agent").is_active

    def test_unsubscribe(self, store):
        recorded = []
        unsubscribe = store.on_role_mutated(lambda *args: recorded.append(args))
        unsubscribe()
        store.add_permission(TENANT, "agent", "a:b")
        assert recorded == []


class TestAssignments:

    def test_assign_and_unassign_notify_once(self, store, events):
        store.assign_role(TENANT, "bob", "manager")
        store.assign_role(TENANT, "bob", "manager")
        store.unassign_role(TENANT, "bob", "manager")
        store.unassign_role(TENANT, "bob", "manager")
        assert events == [("user", TENANT, "bob"), ("user", TENANT, "bob")]
        assert store.get_user_role_ids(TENANT, "bob") == ("agent",)


class TestFlags:

    def test_tenant_flag_preferred(self):
        store = InMemoryRoleGraphStore(flags=[
            create_flag("f", enabled=False),
            create_flag("f", tenant_id=TENANT, enabled=True),
        ])
        assert store.get_feature_flag(TENANT, "f").tenant_id == TENANT
        assert store.get_feature_flag("other", "f").tenant_id is None
        assert store.get_feature_flag(None, "f").tenant_id is None

    def test_list_and_delete(self):
        store = InMemoryRoleGraphStore(flags=[create_flag("a"), create_flag("b", tenant_id="x")])
        assert [f.name for f in store.list_feature_flags()] == ["a"]
        assert [f.name for f in store.list_feature_flags("x")] == ["a", "b"]
        assert store.delete_feature_flag("x", "b")
        assert not store.delete_feature_flag("x", "b")

    def test_writes_notify_flag_listeners(self, store, events):
        store.on_flag_changed(lambda tenant_id, name: events.append(("flag", tenant_id, name)))
        store.put_feature_flag(create_flag("beta"))
        store.put_feature_flag(create_flag("beta", tenant_id=TENANT))
        assert store.delete_feature_flag(None, "beta")
        assert not store.delete_feature_flag(None, "beta")
        assert events == [("flag", None, "beta"), ("flag", TENANT, "beta"), ("flag", None, "beta")]
