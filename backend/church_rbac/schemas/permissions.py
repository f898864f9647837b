"""Pydantic schemas for the permissions API.

Grant maps travel as flat {"module.action": bool} objects, the same shape
they are persisted in.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ── Catalog ──────────────────────────────────────────────────

class CatalogEntry(BaseModel):
    value: str
    label: str


class CatalogResponse(BaseModel):
    modules: list[CatalogEntry]
    actions: list[CatalogEntry]


# ── Roles ────────────────────────────────────────────────────

class RoleSummary(BaseModel):
    role: str
    display_name: str
    description: str | None = None
    is_custom: bool
    is_active: bool

    model_config = {"from_attributes": True}


class RolePermissionsOut(BaseModel):
    role: str
    permissions: dict[str, bool]


class PermissionsUpdate(BaseModel):
    permissions: dict[str, bool] = Field(default_factory=dict)


class CustomRoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    display_name: str | None = Field(None, max_length=255)
    description: str | None = None
    permissions: dict[str, bool] = Field(default_factory=dict)


class CustomRoleUpdate(BaseModel):
    display_name: str | None = Field(None, max_length=255)
    description: str | None = None
    permissions: dict[str, bool] | None = None
    is_active: bool | None = None


# ── User overrides ───────────────────────────────────────────

class UserOverridesOut(BaseModel):
    user_id: str
    email: str | None = None
    display_name: str | None = None
    role: str | None = None
    overrides: dict[str, bool]
    updated_by: str | None = None
    updated_at: datetime | None = None


class MyPermissions(BaseModel):
    user_id: str
    role: str
    permissions: dict[str, list[str]]


# ── Checks ───────────────────────────────────────────────────

class PermissionPair(BaseModel):
    module: str
    action: str


class AccessCheckRequest(BaseModel):
    module: str | None = None
    action: str | None = None
    all: list[PermissionPair] | None = None
    any: list[PermissionPair] | None = None
    any_manage: bool = False
    admin_bypass: bool = False


class AccessCheckResponse(BaseModel):
    allowed: bool


# ── Cache ────────────────────────────────────────────────────

class CacheInvalidateRequest(BaseModel):
    kind: Literal["role", "user", "all"] = "all"
    key: str | None = None


class CacheStatsOut(BaseModel):
    hits: int
    misses: int
    invalidations: int
    discarded: int
    entries: int

    model_config = {"from_attributes": True}
