"""Aggregate model imports for Alembic auto-detection."""

from church_rbac.models.role_permission import RolePermission  # noqa: F401
from church_rbac.models.user import User  # noqa: F401
