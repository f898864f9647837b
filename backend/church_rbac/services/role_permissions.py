"""Role permission matrix store.

Reads go through the PermissionCache; `save_role_defaults` (and the
helpers built on it) are the only writers. Every write is one
transaction, and the role's cache entry is dropped right after the
commit succeeds and before the call returns. A failed write raises
PermissionStoreError and leaves the cache untouched.

Resolution of a role's defaults on read:
  - persisted row, active      → its grants (obsolete keys dropped)
  - persisted row, inactive    → nothing granted
  - no row, built-in role      → catalog seed defaults
  - no row, unknown role       → nothing granted
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from church_rbac.auth.cache import PermissionCache
from church_rbac.auth.permissions import (
    DEFAULT_ROLES,
    PermissionMap,
    decode_permission_document,
    encode_permission_map,
    is_builtin_role,
    normalize_entries,
    role_label,
    role_seed_defaults,
)
from church_rbac.middleware.exceptions import (
    BusinessLogicError,
    PermissionStoreError,
    ResourceNotFoundError,
)
from church_rbac.models.role_permission import RolePermission

logger = logging.getLogger(__name__)

# Called after a local invalidation, e.g. InvalidationBus.publish(kind, key).
Notifier = Callable[[str, str | None], Awaitable[None]]


@asynccontextmanager
async def store_session(
    session_factory: async_sessionmaker[AsyncSession],
    what: str,
) -> AsyncIterator[AsyncSession]:
    """Open a session, translating database failures to PermissionStoreError."""
    try:
        async with session_factory() as session:
            yield session
    except SQLAlchemyError as e:
        logger.error(f"Permission store failure while trying to {what}: {e}")
        raise PermissionStoreError(f"Could not {what}") from e


def validated_entries(entries) -> PermissionMap:
    try:
        return normalize_entries(entries)
    except ValueError as e:
        raise BusinessLogicError(str(e), error_code="UNKNOWN_PERMISSION") from e


def custom_role_id(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name.lower())


@dataclass
class RoleInfo:
    role: str
    display_name: str
    description: str | None = None
    is_custom: bool = False
    is_active: bool = True


def _role_info(row: RolePermission) -> RoleInfo:
    return RoleInfo(
        role=row.role,
        display_name=row.display_name or role_label(row.role),
        description=row.description,
        is_custom=row.is_custom,
        is_active=row.is_active,
    )


class RoleMatrixStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: PermissionCache,
        notify: Notifier | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._notify = notify

    # ── Reads ────────────────────────────────────────────────

    async def get_role_defaults(self, role: str) -> PermissionMap:
        return dict(await self._cache.get_role(role, self._load))

    async def _load(self, role: str) -> PermissionMap:
        async with store_session(self._session_factory, f"load role {role!r}") as session:
            row = await session.get(RolePermission, role)

        if row is None:
            return role_seed_defaults(role)
        if not row.is_active:
            logger.warning(f"Role {role!r} is inactive; granting nothing")
            return {}
        return decode_permission_document(row.grants)

    async def list_roles(self) -> list[RoleInfo]:
        """Built-in roles first, then active custom roles."""
        async with store_session(self._session_factory, "list roles") as session:
            rows = (await session.execute(select(RolePermission))).scalars().all()

        by_role = {row.role: row for row in rows}
        roles = [
            _role_info(by_role[role]) if role in by_role
            else RoleInfo(role=role, display_name=role_label(role))
            for role in DEFAULT_ROLES
        ]
        roles.extend(
            _role_info(row)
            for row in sorted(rows, key=lambda r: r.role)
            if row.is_custom and row.is_active
        )
        return roles

    async def get_matrix(self) -> dict[str, PermissionMap]:
        return {
            info.role: await self.get_role_defaults(info.role)
            for info in await self.list_roles()
        }

    # ── Writes ───────────────────────────────────────────────

    async def save_role_defaults(
        self,
        role: str,
        entries,
        updated_by: str | None = None,
    ) -> PermissionMap:
        """Replace the role's whole default grant set."""
        grants = validated_entries(entries)

        async with store_session(self._session_factory, f"save role {role!r}") as session:
            row = await session.get(RolePermission, role)
            if row is None:
                if not is_builtin_role(role):
                    raise ResourceNotFoundError("Role", role)
                row = RolePermission(
                    role=role,
                    display_name=role_label(role),
                    is_custom=False,
                    is_active=True,
                    created_by=updated_by,
                )
                session.add(row)
            row.grants = encode_permission_map(grants)
            row.updated_by = updated_by
            await session.commit()

        await self._invalidated("role", role)
        logger.info(f"Role {role!r} permissions saved by {updated_by or 'system'}")
        return grants

    async def reset_role_defaults(self, role: str, updated_by: str | None = None) -> PermissionMap:
        if not is_builtin_role(role):
            raise ResourceNotFoundError("Role", role)
        return await self.save_role_defaults(role, role_seed_defaults(role), updated_by)

    async def seed_defaults(
        self,
        overwrite: bool = False,
        updated_by: str = "system-seed",
    ) -> list[str]:
        """Persist catalog defaults for every built-in role. Returns seeded roles."""
        seeded: list[str] = []
        async with store_session(self._session_factory, "seed role defaults") as session:
            for role in DEFAULT_ROLES:
                row = await session.get(RolePermission, role)
                if row is not None and not overwrite:
                    continue
                if row is None:
                    row = RolePermission(
                        role=role,
                        display_name=role_label(role),
                        is_custom=False,
                        is_active=True,
                        created_by=updated_by,
                    )
                    session.add(row)
                row.grants = encode_permission_map(role_seed_defaults(role))
                row.updated_by = updated_by
                seeded.append(role)
            await session.commit()

        if seeded:
            await self._invalidated("all", None)
        return seeded

    # ── Custom roles ─────────────────────────────────────────

    async def create_custom_role(
        self,
        name: str,
        display_name: str | None = None,
        description: str | None = None,
        entries=None,
        created_by: str | None = None,
    ) -> RoleInfo:
        if not name or not name.strip():
            raise BusinessLogicError("Role name is required", error_code="ROLE_NAME_REQUIRED")

        role = custom_role_id(name)
        if is_builtin_role(role):
            raise BusinessLogicError(
                f"Role {role!r} already exists as a built-in role", error_code="ROLE_EXISTS"
            )
        grants = validated_entries(entries or {})

        async with store_session(self._session_factory, f"create role {role!r}") as session:
            if await session.get(RolePermission, role) is not None:
                raise BusinessLogicError(
                    f"A custom role named {role!r} already exists", error_code="ROLE_EXISTS"
                )
            row = RolePermission(
                role=role,
                grants=encode_permission_map(grants),
                display_name=display_name or name,
                description=description,
                is_custom=True,
                is_active=True,
                created_by=created_by,
                updated_by=created_by,
            )
            session.add(row)
            await session.commit()
            info = _role_info(row)

        # A lookup before creation may have cached the unknown role as empty.
        await self._invalidated("role", role)
        logger.info(f"Custom role {role!r} created by {created_by or 'system'}")
        return info

    async def update_custom_role(
        self,
        role: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        entries=None,
        is_active: bool | None = None,
        updated_by: str | None = None,
    ) -> RoleInfo:
        grants = validated_entries(entries) if entries is not None else None

        async with store_session(self._session_factory, f"update role {role!r}") as session:
            row = await session.get(RolePermission, role)
            if row is None or not row.is_custom:
                raise ResourceNotFoundError("Custom role", role)
            if display_name is not None:
                row.display_name = display_name
            if description is not None:
                row.description = description
            if grants is not None:
                row.grants = encode_permission_map(grants)
            if is_active is not None:
                row.is_active = is_active
            row.updated_by = updated_by
            await session.commit()
            info = _role_info(row)

        await self._invalidated("role", role)
        return info

    async def deactivate_custom_role(self, role: str, updated_by: str | None = None) -> RoleInfo:
        """Soft delete: users holding the role fall back to deny-by-default."""
        return await self.update_custom_role(role, is_active=False, updated_by=updated_by)

    # ── Helpers ──────────────────────────────────────────────

    async def _invalidated(self, kind: str, key: str | None) -> None:
        if kind == "all":
            self._cache.invalidate_all()
        else:
            self._cache.invalidate_role(key)
        if self._notify is not None:
            await self._notify(kind, key)
