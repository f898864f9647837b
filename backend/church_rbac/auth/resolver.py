"""Combine role defaults and user overrides into effective decisions."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from church_rbac.auth.permissions import (
    Action,
    Module,
    PermissionMap,
    resolve_permission,
)
from church_rbac.services.role_permissions import RoleMatrixStore
from church_rbac.services.user_overrides import UserOverrideStore

logger = logging.getLogger(__name__)


class Principal(Protocol):
    """Anything with an id and a role, e.g. `models.user.User`."""

    id: str
    role: str


class PermissionResolver:
    def __init__(self, roles: RoleMatrixStore, overrides: UserOverrideStore) -> None:
        self.roles = roles
        self.overrides = overrides

    async def _maps(self, user: Principal) -> tuple[PermissionMap, PermissionMap]:
        role_defaults = await self.roles.get_role_defaults(user.role)
        overrides = await self.overrides.get_overrides(str(user.id))
        return role_defaults, overrides

    async def resolve(self, user: Principal, module: Any, action: Any) -> bool:
        role_defaults, overrides = await self._maps(user)
        return resolve_permission(role_defaults, overrides, module, action)

    async def resolve_all(self, user: Principal, pairs: Iterable[tuple[Any, Any]]) -> bool:
        """True when every pair is granted. An empty list is vacuously true."""
        pairs = list(pairs)
        if not pairs:
            return True
        role_defaults, overrides = await self._maps(user)
        return all(
            resolve_permission(role_defaults, overrides, module, action)
            for module, action in pairs
        )

    async def resolve_any(self, user: Principal, pairs: Iterable[tuple[Any, Any]]) -> bool:
        """True when at least one pair is granted. An empty list is false."""
        pairs = list(pairs)
        if not pairs:
            return False
        role_defaults, overrides = await self._maps(user)
        return any(
            resolve_permission(role_defaults, overrides, module, action)
            for module, action in pairs
        )

    async def effective_permissions(self, user: Principal) -> dict[Module, set[Action]]:
        role_defaults, overrides = await self._maps(user)
        effective: dict[Module, set[Action]] = {}
        for module in Module:
            granted = {
                action for action in Action
                if resolve_permission(role_defaults, overrides, module, action)
            }
            if granted:
                effective[module] = granted
        return effective
