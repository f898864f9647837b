"""Management CLI for permission data.

Usage:
    python -m church_rbac.cli seed-roles [--overwrite]   # Persist built-in role defaults
    python -m church_rbac.cli list-roles                 # Show roles and grant counts
    python -m church_rbac.cli migrate-overrides          # Rewrite legacy user overrides
"""

import asyncio
import logging
import sys

from church_rbac.auth.engine import build_permission_engine
from church_rbac.config import settings
from church_rbac.database import async_session, engine


def _permission_engine():
    return build_permission_engine(async_session, settings)


async def seed_roles(overwrite: bool = False):
    seeded = await _permission_engine().roles.seed_defaults(overwrite=overwrite)
    if not seeded:
        print("All built-in roles already persisted (use --overwrite to reset).")
    for role in seeded:
        print(f"  Seeded {role}")


async def list_roles():
    permissions = _permission_engine()
    roles = await permissions.roles.list_roles()
    for info in roles:
        grants = await permissions.roles.get_role_defaults(info.role)
        granted = sum(1 for allowed in grants.values() if allowed)
        kind = "custom" if info.is_custom else "built-in"
        state = "" if info.is_active else " (inactive)"
        print(f"  {info.role:<20} {info.display_name:<24} {kind:<9} {granted:>3} grants{state}")
    print(f"\n{len(roles)} role(s)")


async def migrate_overrides():
    results = await _permission_engine().overrides.migrate_legacy_overrides()
    for r in results:
        print(f"  {r.email:<40} {r.status}" + (f" ({r.entries} entries)" if r.status == "migrated" else ""))
    migrated = sum(1 for r in results if r.status == "migrated")
    print(f"\n{migrated} migrated, {len(results) - migrated} skipped")


async def _run(coro):
    try:
        await coro
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "seed-roles":
        asyncio.run(_run(seed_roles(overwrite="--overwrite" in sys.argv[2:])))
    elif cmd == "list-roles":
        asyncio.run(_run(list_roles()))
    elif cmd == "migrate-overrides":
        asyncio.run(_run(migrate_overrides()))
    else:
        print("Usage: python -m church_rbac.cli [seed-roles [--overwrite]|list-roles|migrate-overrides]")
