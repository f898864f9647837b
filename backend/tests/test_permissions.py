"""Tests for the permission catalog and pure decision rules."""

import pytest

from church_rbac.auth.permissions import (
    ACTION_LABELS,
    MODULE_LABELS,
    ROLE_DEFAULTS,
    Action,
    Module,
    all_actions,
    decode_permission_document,
    encode_permission_map,
    normalize_entries,
    parse_action,
    parse_module,
    parse_permission_key,
    resolve_permission,
    resolve_permissions,
    role_seed_defaults,
)


@pytest.mark.unit
@pytest.mark.permissions
class TestCatalog:

    def test_edit_and_update_are_the_same_action(self):
        assert Action.EDIT is Action.UPDATE
        assert Action.EDIT.value == "update"
        assert all_actions().count(Action.EDIT) == 1

    def test_every_module_and_action_has_a_label(self):
        assert set(MODULE_LABELS) == set(Module)
        assert set(ACTION_LABELS) == set(Action)

    def test_parse_accepts_values_and_member_names(self):
        assert parse_module("home_builder") is Module.HOME_BUILDER
        assert parse_module("HomeBuilder") is None
        assert parse_module("FINANCE") is Module.FINANCE
        assert parse_action("update") is Action.EDIT
        assert parse_action("Edit") is Action.EDIT
        assert parse_action("manage") is Action.MANAGE
        assert parse_action("fly") is None
        assert parse_module(42) is None

    def test_parse_permission_key(self):
        assert parse_permission_key("blog.update") == (Module.BLOG, Action.EDIT)
        assert parse_permission_key("blog") is None
        assert parse_permission_key("sermons.view") is None

    def test_seed_defaults(self):
        secretary = role_seed_defaults("secretary")
        assert secretary[(Module.BLOG, Action.EDIT)] is True
        assert (Module.FINANCE, Action.VIEW) not in secretary
        assert role_seed_defaults("visitor") == {}

    def test_every_builtin_role_can_see_the_dashboard(self):
        for role in ROLE_DEFAULTS:
            assert (Module.DASHBOARD, Action.VIEW) in role_seed_defaults(role)


@pytest.mark.unit
@pytest.mark.permissions
class TestDocuments:

    def test_flat_document_round_trip(self):
        entries = {(Module.BLOG, Action.EDIT): True, (Module.FINANCE, Action.VIEW): False}
        doc = encode_permission_map(entries)
        assert doc == {"blog.update": True, "finance.view": False}
        assert list(doc) == sorted(doc)
        assert decode_permission_document(doc) == entries

    def test_obsolete_keys_are_dropped(self):
        doc = {"blog.update": True, "sermons.view": True, "blog.publish": True, "broken": True}
        assert decode_permission_document(doc) == {(Module.BLOG, Action.EDIT): True}

    def test_empty_documents(self):
        assert decode_permission_document(None) == {}
        assert decode_permission_document({}) == {}

    def test_legacy_document(self):
        doc = {
            "granted": [
                {"module": "finance", "actions": ["view", "export"]},
                {"module": "blog", "actions": ["update", "delete"]},
            ],
            "revoked": [
                {"module": "blog", "actions": ["delete"]},
                {"module": "sermons", "actions": ["view"]},
            ],
        }
        assert decode_permission_document(doc) == {
            (Module.FINANCE, Action.VIEW): True,
            (Module.FINANCE, Action.EXPORT): True,
            (Module.BLOG, Action.EDIT): True,
            (Module.BLOG, Action.DELETE): False,
        }

    def test_legacy_revoked_wins_regardless_of_order(self):
        doc = {
            "revoked": [{"module": "blog", "actions": ["view"]}],
            "granted": [{"module": "blog", "actions": ["view"]}],
        }
        assert decode_permission_document(doc) == {(Module.BLOG, Action.VIEW): False}

    def test_malformed_documents_are_dropped(self):
        assert decode_permission_document(["blog.view"]) == {}
        assert decode_permission_document("blog.view") == {}
        assert decode_permission_document({"granted": ["blog"]}) == {}
        assert decode_permission_document({"blog.view": "yes", "finance.view": False}) == {
            (Module.FINANCE, Action.VIEW): False,
        }

    def test_malformed_legacy_entries_are_skipped(self):
        doc = {
            "granted": [
                "blog",
                {"module": "events", "actions": "view"},
                {"module": "finance", "actions": ["view"]},
            ],
            "revoked": {"module": "finance"},
        }
        assert decode_permission_document(doc) == {(Module.FINANCE, Action.VIEW): True}

    def test_normalize_accepts_keys_tuples_and_triples(self):
        expected = {(Module.BLOG, Action.EDIT): True, (Module.USERS, Action.MANAGE): False}
        assert normalize_entries({"blog.update": True, "users.manage": False}) == expected
        assert normalize_entries({("blog", "update"): 1, (Module.USERS, "manage"): 0}) == expected
        assert normalize_entries([("blog", "update", True), ("users", "manage", False)]) == expected

    def test_normalize_rejects_unknown_entries(self):
        with pytest.raises(ValueError, match="sermons.view"):
            normalize_entries({"sermons.view": True})
        with pytest.raises(ValueError):
            normalize_entries([("blog", "publish", True)])


@pytest.mark.unit
@pytest.mark.permissions
class TestResolvePermission:

    def test_role_default_without_override(self):
        defaults = {(Module.BLOG, Action.EDIT): True}
        assert resolve_permission(defaults, None, Module.BLOG, Action.EDIT) is True
        assert resolve_permission(defaults, {}, Module.BLOG, Action.DELETE) is False

    def test_override_wins_both_ways(self):
        defaults = {(Module.BLOG, Action.EDIT): True}
        assert resolve_permission(
            defaults, {(Module.BLOG, Action.EDIT): False}, Module.BLOG, Action.EDIT
        ) is False
        assert resolve_permission(
            {}, {(Module.FINANCE, Action.VIEW): True}, Module.FINANCE, Action.VIEW
        ) is True

    def test_raw_strings_are_coerced(self):
        defaults = {(Module.BLOG, Action.EDIT): True}
        assert resolve_permission(defaults, None, "blog", "update") is True
        assert resolve_permission(defaults, None, "blog", "Edit") is True

    def test_unknown_module_or_action_denies(self):
        defaults = {(Module.BLOG, Action.EDIT): True}
        assert resolve_permission(defaults, None, "sermons", "view") is False
        assert resolve_permission(defaults, None, "blog", "publish") is False
        assert resolve_permission(defaults, None, None, None) is False

    def test_manage_is_not_implied(self):
        defaults = {(Module.FINANCE, Action.MANAGE): True}
        assert resolve_permission(defaults, None, Module.FINANCE, Action.DELETE) is False

    def test_resolve_permissions_lists_effective_keys(self):
        defaults = {(Module.BLOG, Action.VIEW): True, (Module.BLOG, Action.EDIT): True}
        overrides = {(Module.BLOG, Action.EDIT): False, (Module.EVENTS, Action.VIEW): True}
        assert resolve_permissions(defaults, overrides) == ["blog.view", "events.view"]
