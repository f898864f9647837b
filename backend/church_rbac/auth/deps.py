"""FastAPI dependencies for authorization.

Dependencies:
  get_current_user      → the authenticated user placed on request.state
  get_permission_engine → the app's PermissionEngine
  require_access(...)   → 403 unless the user meets an access requirement

Authentication itself happens upstream: the host application's auth
middleware resolves the session and sets `request.state.user` to an
object with at least `id` and `role`.
"""

from fastapi import Depends, Request

from church_rbac.auth.engine import PermissionEngine
from church_rbac.auth.guard import AccessRequirement
from church_rbac.auth.resolver import Principal
from church_rbac.middleware.exceptions import (
    AuthenticationRequiredError,
    PermissionDeniedError,
)


# ── Core user dependency ────────────────────────────────────

async def get_current_user(request: Request) -> Principal:
    user = getattr(request.state, "user", None)
    if user is None or not getattr(user, "is_active", True):
        raise AuthenticationRequiredError()
    return user


def get_permission_engine(request: Request) -> PermissionEngine:
    return request.app.state.permission_engine


# ── Permission-based access control ─────────────────────────

def require_access(
    module=None,
    action=None,
    *,
    all=None,
    any=None,
    any_manage: bool = False,
    admin_bypass: bool = False,
):
    """Dependency factory: restrict to users who meet the requirement.

    Usage:
        @router.put("/roles/{role}")
        async def save_role(
            user=Depends(require_access(Module.PERMISSIONS, Action.EDIT)),
        ):
            ...

        @router.get("/admin")
        async def admin_home(user=Depends(require_access(any_manage=True))):
            ...
    """
    requirement = AccessRequirement(
        module=module,
        action=action,
        all=tuple(all) if all is not None else None,
        any=tuple(any) if any is not None else None,
        any_manage=any_manage,
        admin_bypass=admin_bypass,
    )

    async def _check(
        user: Principal = Depends(get_current_user),
        engine: PermissionEngine = Depends(get_permission_engine),
    ) -> Principal:
        if not await engine.can_access(user, requirement):
            raise PermissionDeniedError(f"Missing permission: {requirement.describe()}")
        return user

    return _check
