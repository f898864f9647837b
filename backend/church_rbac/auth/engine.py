"""Wire the permission engine together.

One `PermissionEngine` per application (stored on `app.state`) or per
test. Nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from church_rbac.auth.cache import PermissionCache
from church_rbac.auth.guard import AccessGuard, AccessRequirement
from church_rbac.auth.resolver import PermissionResolver, Principal
from church_rbac.config import Settings
from church_rbac.services.role_permissions import RoleMatrixStore
from church_rbac.services.user_overrides import UserOverrideStore
from church_rbac.utils.cache import InvalidationBus


@dataclass
class PermissionEngine:
    cache: PermissionCache
    roles: RoleMatrixStore
    overrides: UserOverrideStore
    resolver: PermissionResolver
    guard: AccessGuard
    bus: InvalidationBus | None = None

    async def can_access(self, user: Principal | None, requirement: AccessRequirement) -> bool:
        return await self.guard.can_access(user, requirement)


def build_permission_engine(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    redis_client: redis.Redis | None = None,
    cache: PermissionCache | None = None,
) -> PermissionEngine:
    cache = cache or PermissionCache(ttl_seconds=settings.permission_cache_ttl_seconds)

    bus = None
    if redis_client is not None:
        bus = InvalidationBus(
            redis_client, cache, channel=settings.permission_invalidation_channel
        )
    notify = bus.publish if bus is not None else None

    roles = RoleMatrixStore(session_factory, cache, notify)
    overrides = UserOverrideStore(session_factory, cache, notify)
    resolver = PermissionResolver(roles, overrides)
    guard = AccessGuard(resolver, admin_role=settings.admin_role)
    return PermissionEngine(
        cache=cache,
        roles=roles,
        overrides=overrides,
        resolver=resolver,
        guard=guard,
        bus=bus,
    )
