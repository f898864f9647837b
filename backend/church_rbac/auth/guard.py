"""Access guard: the single yes/no entry point for callers.

A requirement may carry several criteria; all present criteria must pass.
A requirement with no criterion at all denies. Storage and other failures deny
(fail closed) and are logged, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from church_rbac.auth.permissions import ADMIN_ROLE, Action, Module
from church_rbac.auth.resolver import PermissionResolver, Principal
from church_rbac.middleware.exceptions import PermissionStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessRequirement:
    module: Any = None
    action: Any = None
    all: tuple[tuple[Any, Any], ...] | None = None
    any: tuple[tuple[Any, Any], ...] | None = None
    any_manage: bool = False
    admin_bypass: bool = False

    def is_empty(self) -> bool:
        # admin_bypass only modifies other criteria; on its own it grants nothing.
        return (
            self.module is None
            and self.action is None
            and self.all is None
            and self.any is None
            and not self.any_manage
        )

    def describe(self) -> str:
        parts = []
        if self.module is not None or self.action is not None:
            parts.append(f"{_value(self.module)}.{_value(self.action)}")
        if self.all is not None:
            parts.append("all(" + ", ".join(f"{_value(m)}.{_value(a)}" for m, a in self.all) + ")")
        if self.any is not None:
            parts.append("any(" + ", ".join(f"{_value(m)}.{_value(a)}" for m, a in self.any) + ")")
        if self.any_manage:
            parts.append("any_manage")
        return " & ".join(parts) or "<empty>"


def _value(item: Any) -> str:
    return getattr(item, "value", str(item))


@dataclass
class AccessGuard:
    resolver: PermissionResolver
    admin_role: str = ADMIN_ROLE
    manage_modules: tuple[Module, ...] = field(default_factory=lambda: tuple(Module))

    async def can_access(self, user: Principal | None, requirement: AccessRequirement) -> bool:
        if user is None:
            return False
        if requirement.is_empty():
            logger.warning("Access requirement without any criterion; denying")
            return False
        if requirement.admin_bypass and user.role == self.admin_role:
            return True

        try:
            allowed = await self._check(user, requirement)
        except PermissionStoreError as e:
            logger.error(
                f"Denying {requirement.describe()} for user {user.id}: "
                f"permission store unavailable ({e.message})"
            )
            return False
        except Exception as e:
            # CancelledError is a BaseException and still propagates.
            logger.error(
                f"Denying {requirement.describe()} for user {user.id}: "
                f"permission check failed ({type(e).__name__}: {e})",
                exc_info=True,
            )
            return False

        if not allowed:
            logger.debug(f"Denied {requirement.describe()} for user {user.id} ({user.role})")
        return allowed

    async def _check(self, user: Principal, requirement: AccessRequirement) -> bool:
        if requirement.module is not None or requirement.action is not None:
            if requirement.module is None or requirement.action is None:
                return False
            if not await self.resolver.resolve(user, requirement.module, requirement.action):
                return False

        if requirement.all is not None:
            if not await self.resolver.resolve_all(user, requirement.all):
                return False

        if requirement.any is not None:
            if not await self.resolver.resolve_any(user, requirement.any):
                return False

        if requirement.any_manage:
            pairs = [(module, Action.MANAGE) for module in self.manage_modules]
            if not await self.resolver.resolve_any(user, pairs):
                return False

        return True
