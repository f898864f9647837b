"""Tests for the access guard."""

import pytest

from church_rbac.auth.guard import AccessRequirement
from church_rbac.auth.permissions import Action, Module
from church_rbac.models import User


@pytest.mark.integration
@pytest.mark.asyncio
class TestAccessGuard:

    async def test_single_check(self, permission_engine, users):
        guard = permission_engine.guard
        assert await guard.can_access(users["secretary"], AccessRequirement(Module.BLOG, Action.EDIT))
        assert not await guard.can_access(users["member"], AccessRequirement(Module.BLOG, Action.EDIT))

    async def test_all_requirement(self, permission_engine, users):
        guard = permission_engine.guard
        requirement = AccessRequirement(all=(
            (Module.MEMBERS, Action.VIEW),
            (Module.MEMBERS, Action.EXPORT),
        ))
        assert await guard.can_access(users["secretary"], requirement)
        assert not await guard.can_access(users["leader"], requirement)

    async def test_any_requirement(self, permission_engine, users):
        guard = permission_engine.guard
        requirement = AccessRequirement(any=(
            (Module.FINANCE, Action.VIEW),
            (Module.DONATIONS, Action.VIEW),
        ))
        assert await guard.can_access(users["finance"], requirement)
        assert not await guard.can_access(users["member"], requirement)

    async def test_any_manage_follows_role_and_override(self, permission_engine, users):
        guard = permission_engine.guard
        engine = permission_engine
        leader = users["leader"]
        requirement = AccessRequirement(any_manage=True)
        assert not await guard.can_access(leader, requirement)

        await engine.roles.save_role_defaults(
            "leader", {"users.view": True, "blog.manage": True, "finance.view": True}
        )
        assert await guard.can_access(leader, requirement)
        pairs = [(m, Action.MANAGE) for m in (Module.USERS, Module.BLOG, Module.FINANCE)]
        assert await engine.resolver.resolve_any(leader, pairs)

        await engine.overrides.save_overrides(leader.id, {"blog.manage": False})
        assert not await guard.can_access(leader, requirement)
        assert not await engine.resolver.resolve_any(leader, pairs)

    async def test_admin_bypass(self, permission_engine, users):
        guard = permission_engine.guard
        admin = users["admin"]
        await permission_engine.roles.save_role_defaults("admin", {})
        await permission_engine.overrides.save_overrides(admin.id, {"backup.manage": False})

        bypass = AccessRequirement(Module.BACKUP, Action.MANAGE, admin_bypass=True)
        plain = AccessRequirement(Module.BACKUP, Action.MANAGE)
        assert await guard.can_access(admin, bypass)
        assert not await guard.can_access(admin, plain)

    async def test_admin_bypass_does_not_help_other_roles(self, permission_engine, users):
        requirement = AccessRequirement(Module.BACKUP, Action.MANAGE, admin_bypass=True)
        assert not await permission_engine.guard.can_access(users["secretary"], requirement)

    async def test_criteria_combine_with_and(self, permission_engine, users):
        guard = permission_engine.guard
        requirement = AccessRequirement(
            Module.BLOG,
            Action.VIEW,
            any=((Module.FINANCE, Action.VIEW),),
        )
        assert not await guard.can_access(users["member"], requirement)

        await permission_engine.overrides.save_overrides(users["member"].id, {"finance.view": True})
        assert await guard.can_access(users["member"], requirement)

    async def test_empty_or_partial_requirement_denies(self, permission_engine, users):
        guard = permission_engine.guard
        assert not await guard.can_access(users["admin"], AccessRequirement())
        assert not await guard.can_access(users["admin"], AccessRequirement(module=Module.BLOG))
        # admin_bypass needs a criterion to bypass.
        assert AccessRequirement(admin_bypass=True).is_empty()
        assert not await guard.can_access(users["admin"], AccessRequirement(admin_bypass=True))

    async def test_anonymous_denies(self, permission_engine):
        assert not await permission_engine.guard.can_access(
            None, AccessRequirement(Module.DASHBOARD, Action.VIEW)
        )

    async def test_unknown_values_deny(self, permission_engine, users):
        requirement = AccessRequirement("sermons", "preach")
        assert not await permission_engine.guard.can_access(users["admin"], requirement)

    async def test_store_failure_denies(self, flaky_engine, flaky_sessions, users):
        flaky_sessions.fail = True
        requirement = AccessRequirement(Module.BLOG, Action.VIEW)
        assert await flaky_engine.can_access(users["member"], requirement) is False

        admin_bypass = AccessRequirement(Module.BLOG, Action.VIEW, admin_bypass=True)
        assert await flaky_engine.can_access(users["admin"], admin_bypass) is True

    async def test_malformed_override_document_denies_without_crashing(
        self, permission_engine, session_factory, users
    ):
        member = users["member"]
        async with session_factory() as session:
            row = await session.get(User, member.id)
            row.custom_permissions = {"granted": ["blog"], "revoked": "finance"}
            await session.commit()

        guard = permission_engine.guard
        assert await guard.can_access(member, AccessRequirement(Module.BLOG, Action.VIEW)) is True
        assert await guard.can_access(member, AccessRequirement(Module.FINANCE, Action.VIEW)) is False

    async def test_non_database_failure_denies(self, permission_engine, users):
        async def unreachable(role):
            raise OSError("Connect call failed")

        permission_engine.roles._load = unreachable
        requirement = AccessRequirement(Module.BLOG, Action.VIEW)

        assert await permission_engine.guard.can_access(users["secretary"], requirement) is False

        admin_bypass = AccessRequirement(Module.BLOG, Action.VIEW, admin_bypass=True)
        assert await permission_engine.guard.can_access(users["admin"], admin_bypass) is True
