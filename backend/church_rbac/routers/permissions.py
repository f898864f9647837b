"""Permissions router: role matrix, custom roles and user overrides.

Endpoints:
    GET    /api/permissions/catalog                 Modules and actions with labels
    GET    /api/permissions/roles                   Built-in + active custom roles
    GET    /api/permissions/matrix                  Default grants for every role
    GET    /api/permissions/roles/{role}            Default grants for one role
    PUT    /api/permissions/roles/{role}            Replace a role's default grants
    POST   /api/permissions/roles/{role}/reset      Restore seed defaults
    POST   /api/permissions/custom-roles            Create a custom role
    PATCH  /api/permissions/custom-roles/{role}     Update a custom role
    DELETE /api/permissions/custom-roles/{role}     Deactivate a custom role
    GET    /api/permissions/users                   Users with overrides
    GET    /api/permissions/users/{user_id}         One user's overrides
    PUT    /api/permissions/users/{user_id}         Replace a user's overrides
    DELETE /api/permissions/users/{user_id}         Clear a user's overrides
    GET    /api/permissions/me                      Caller's effective permissions
    POST   /api/permissions/check                   Evaluate a requirement for the caller
    GET    /api/permissions/cache/stats             Cache counters
    POST   /api/permissions/cache/invalidate        Drop cached entries
"""

import logging

from fastapi import APIRouter, Depends, status

from church_rbac.auth.deps import get_current_user, get_permission_engine, require_access
from church_rbac.auth.engine import PermissionEngine
from church_rbac.auth.guard import AccessRequirement
from church_rbac.auth.permissions import (
    ACTION_LABELS,
    MODULE_LABELS,
    Action,
    Module,
    all_actions,
    all_modules,
    encode_permission_map,
)
from church_rbac.middleware.exceptions import BusinessLogicError
from church_rbac.schemas.permissions import (
    AccessCheckRequest,
    AccessCheckResponse,
    CacheInvalidateRequest,
    CacheStatsOut,
    CatalogEntry,
    CatalogResponse,
    CustomRoleCreate,
    CustomRoleUpdate,
    MyPermissions,
    PermissionsUpdate,
    RolePermissionsOut,
    RoleSummary,
    UserOverridesOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()

can_view = require_access(Module.PERMISSIONS, Action.VIEW, admin_bypass=True)
can_edit = require_access(Module.PERMISSIONS, Action.EDIT, admin_bypass=True)
can_manage = require_access(Module.PERMISSIONS, Action.MANAGE, admin_bypass=True)


# ── Catalog ──────────────────────────────────────────────────

@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog(_user=Depends(get_current_user)):
    return CatalogResponse(
        modules=[CatalogEntry(value=m.value, label=MODULE_LABELS[m]) for m in all_modules()],
        actions=[CatalogEntry(value=a.value, label=ACTION_LABELS[a]) for a in all_actions()],
    )


# ── Roles ────────────────────────────────────────────────────

@router.get("/roles", response_model=list[RoleSummary])
async def list_roles(
    _user=Depends(can_view),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return await engine.roles.list_roles()


@router.get("/matrix", response_model=list[RolePermissionsOut])
async def get_matrix(
    _user=Depends(can_view),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    matrix = await engine.roles.get_matrix()
    return [
        RolePermissionsOut(role=role, permissions=encode_permission_map(grants))
        for role, grants in matrix.items()
    ]


@router.get("/roles/{role}", response_model=RolePermissionsOut)
async def get_role(
    role: str,
    _user=Depends(can_view),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    grants = await engine.roles.get_role_defaults(role)
    return RolePermissionsOut(role=role, permissions=encode_permission_map(grants))


@router.put("/roles/{role}", response_model=RolePermissionsOut)
async def save_role(
    role: str,
    body: PermissionsUpdate,
    user=Depends(can_edit),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    grants = await engine.roles.save_role_defaults(role, body.permissions, updated_by=user.id)
    return RolePermissionsOut(role=role, permissions=encode_permission_map(grants))


@router.post("/roles/{role}/reset", response_model=RolePermissionsOut)
async def reset_role(
    role: str,
    user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    grants = await engine.roles.reset_role_defaults(role, updated_by=user.id)
    return RolePermissionsOut(role=role, permissions=encode_permission_map(grants))


# ── Custom roles ─────────────────────────────────────────────

@router.post("/custom-roles", response_model=RoleSummary, status_code=status.HTTP_201_CREATED)
async def create_custom_role(
    body: CustomRoleCreate,
    user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return await engine.roles.create_custom_role(
        body.name,
        display_name=body.display_name,
        description=body.description,
        entries=body.permissions,
        created_by=user.id,
    )


@router.patch("/custom-roles/{role}", response_model=RoleSummary)
async def update_custom_role(
    role: str,
    body: CustomRoleUpdate,
    user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return await engine.roles.update_custom_role(
        role,
        display_name=body.display_name,
        description=body.description,
        entries=body.permissions,
        is_active=body.is_active,
        updated_by=user.id,
    )


@router.delete("/custom-roles/{role}", response_model=RoleSummary)
async def deactivate_custom_role(
    role: str,
    user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return await engine.roles.deactivate_custom_role(role, updated_by=user.id)


# ── User overrides ───────────────────────────────────────────

@router.get("/users", response_model=list[UserOverridesOut])
async def list_user_overrides(
    _user=Depends(can_view),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return [
        UserOverridesOut(
            user_id=entry.user_id,
            email=entry.email,
            display_name=entry.display_name,
            role=entry.role,
            overrides=encode_permission_map(entry.overrides),
            updated_by=entry.updated_by,
            updated_at=entry.updated_at,
        )
        for entry in await engine.overrides.list_users_with_overrides()
    ]


@router.get("/users/{user_id}", response_model=UserOverridesOut)
async def get_user_overrides(
    user_id: str,
    _user=Depends(can_view),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    overrides = await engine.overrides.get_overrides(user_id)
    return UserOverridesOut(user_id=user_id, overrides=encode_permission_map(overrides))


@router.put("/users/{user_id}", response_model=UserOverridesOut)
async def save_user_overrides(
    user_id: str,
    body: PermissionsUpdate,
    user=Depends(can_edit),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    overrides = await engine.overrides.save_overrides(user_id, body.permissions, updated_by=user.id)
    return UserOverridesOut(
        user_id=user_id,
        overrides=encode_permission_map(overrides),
        updated_by=user.id,
    )


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_user_overrides(
    user_id: str,
    user=Depends(can_edit),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    await engine.overrides.clear_overrides(user_id, updated_by=user.id)


# ── Caller ───────────────────────────────────────────────────

@router.get("/me", response_model=MyPermissions)
async def my_permissions(
    user=Depends(get_current_user),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    effective = await engine.resolver.effective_permissions(user)
    return MyPermissions(
        user_id=str(user.id),
        role=user.role,
        permissions={
            module.value: sorted(action.value for action in actions)
            for module, actions in effective.items()
        },
    )


@router.post("/check", response_model=AccessCheckResponse)
async def check_access(
    body: AccessCheckRequest,
    user=Depends(get_current_user),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    requirement = AccessRequirement(
        module=body.module,
        action=body.action,
        all=tuple((p.module, p.action) for p in body.all) if body.all is not None else None,
        any=tuple((p.module, p.action) for p in body.any) if body.any is not None else None,
        any_manage=body.any_manage,
        admin_bypass=body.admin_bypass,
    )
    return AccessCheckResponse(allowed=await engine.can_access(user, requirement))


# ── Cache ────────────────────────────────────────────────────

@router.get("/cache/stats", response_model=CacheStatsOut)
async def cache_stats(
    _user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    return engine.cache.stats()


@router.post("/cache/invalidate", response_model=CacheStatsOut)
async def invalidate_cache(
    body: CacheInvalidateRequest,
    user=Depends(can_manage),
    engine: PermissionEngine = Depends(get_permission_engine),
):
    if body.kind == "all":
        engine.cache.invalidate_all()
    elif not body.key:
        raise BusinessLogicError(f"A key is required to invalidate a {body.kind}")
    elif body.kind == "role":
        engine.cache.invalidate_role(body.key)
    else:
        engine.cache.invalidate_user(body.key)

    if engine.bus is not None:
        await engine.bus.publish(body.kind, body.key if body.kind != "all" else None)

    logger.info(f"Permission cache invalidated ({body.kind}:{body.key}) by {user.id}")
    return engine.cache.stats()
