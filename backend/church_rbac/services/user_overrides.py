"""Per-user permission overrides.

Overrides live on `User.custom_permissions` as a flat
{"module.action": bool} document. Only the pairs where a user diverges
from their role are stored; NULL means "role defaults only". Documents in
the older granted/revoked shape are still read, and
`migrate_legacy_overrides` rewrites them in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from church_rbac.auth.cache import PermissionCache
from church_rbac.auth.permissions import (
    PermissionMap,
    decode_permission_document,
    encode_permission_map,
    is_legacy_document,
)
from church_rbac.middleware.exceptions import ResourceNotFoundError
from church_rbac.models.user import User
from church_rbac.services.role_permissions import Notifier, store_session, validated_entries

logger = logging.getLogger(__name__)


@dataclass
class UserOverrides:
    user_id: str
    email: str
    display_name: str
    role: str
    overrides: PermissionMap
    updated_by: str | None = None
    updated_at: datetime | None = None


@dataclass
class MigrationResult:
    user_id: str
    email: str
    status: str  # "migrated" | "skipped"
    entries: int = 0


class UserOverrideStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: PermissionCache,
        notify: Notifier | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._notify = notify

    async def get_overrides(self, user_id: str) -> PermissionMap:
        return dict(await self._cache.get_user(user_id, self._load))

    async def _load(self, user_id: str) -> PermissionMap:
        async with store_session(self._session_factory, f"load overrides for {user_id}") as session:
            user = await session.get(User, user_id)
        if user is None:
            return {}
        return decode_permission_document(user.custom_permissions)

    async def save_overrides(
        self,
        user_id: str,
        entries,
        updated_by: str | None = None,
    ) -> PermissionMap:
        """Replace the user's overrides. An empty map clears them."""
        overrides = validated_entries(entries)

        async with store_session(self._session_factory, f"save overrides for {user_id}") as session:
            user = await session.get(User, user_id)
            if user is None:
                raise ResourceNotFoundError("User", user_id)
            user.custom_permissions = encode_permission_map(overrides) or None
            user.custom_permissions_updated_by = updated_by
            user.custom_permissions_updated_at = datetime.utcnow()
            await session.commit()

        self._cache.invalidate_user(user_id)
        if self._notify is not None:
            await self._notify("user", user_id)

        logger.info(
            f"Overrides for user {user_id} saved by {updated_by or 'system'} "
            f"({len(overrides)} entries)"
        )
        return overrides

    async def clear_overrides(self, user_id: str, updated_by: str | None = None) -> None:
        await self.save_overrides(user_id, {}, updated_by)

    async def list_users_with_overrides(self) -> list[UserOverrides]:
        async with store_session(self._session_factory, "list user overrides") as session:
            result = await session.execute(
                select(User)
                .where(User.custom_permissions.is_not(None))
                .order_by(User.email)
            )
            users = result.scalars().all()

        listing = []
        for user in users:
            overrides = decode_permission_document(user.custom_permissions)
            if not overrides:
                continue
            listing.append(UserOverrides(
                user_id=user.id,
                email=user.email,
                display_name=user.display_name,
                role=user.role,
                overrides=overrides,
                updated_by=user.custom_permissions_updated_by,
                updated_at=user.custom_permissions_updated_at,
            ))
        return listing

    async def migrate_legacy_overrides(
        self,
        updated_by: str = "system-migration",
    ) -> list[MigrationResult]:
        """Rewrite granted/revoked documents into the flat format.

        Obsolete modules and actions are dropped along the way. Runs as a
        single transaction.
        """
        results: list[MigrationResult] = []
        async with store_session(self._session_factory, "migrate legacy overrides") as session:
            result = await session.execute(
                select(User).where(User.custom_permissions.is_not(None))
            )
            for user in result.scalars().all():
                if not is_legacy_document(user.custom_permissions):
                    results.append(MigrationResult(user.id, user.email, "skipped"))
                    continue
                overrides = decode_permission_document(user.custom_permissions)
                user.custom_permissions = encode_permission_map(overrides) or None
                user.custom_permissions_updated_by = updated_by
                user.custom_permissions_updated_at = datetime.utcnow()
                results.append(MigrationResult(user.id, user.email, "migrated", len(overrides)))
            await session.commit()

        migrated = [r for r in results if r.status == "migrated"]
        for r in migrated:
            self._cache.invalidate_user(r.user_id)
        if migrated and self._notify is not None:
            await self._notify("all", None)

        logger.info(
            f"Override migration finished: {len(migrated)} migrated, "
            f"{len(results) - len(migrated)} skipped"
        )
        return results
