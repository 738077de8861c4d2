"""
Route protection dependencies for organization-scoped RBAC.

Implements:
- Role and permission guards on the resolved tenant context
- System role guards (platform-wide)
- Self-or-privileged guard for user-scoped routes
- A one-off permission check for handlers that do not run under a tenant
"""
from typing import Annotated, Callable, Iterable, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations import memberships
from app.features.organizations.models import Organization
from app.features.permissions import guards
from app.features.permissions.matrix import OrganizationRole
from app.features.tenancy.context import AuthorizationContext
from app.features.tenancy.dependencies import get_tenant_context
from app.features.users.dependencies import get_current_user
from app.features.users.models import SystemRole, User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Permission Checking Functions
# ============================================================================

async def can_perform_action(
    db: AsyncSession,
    user: User,
    organization: Organization,
    resource: str,
    action: str,
) -> bool:
    """
    Check if user may perform an action on a resource in an organization.

    Super admins always may; everyone else needs an active membership whose
    permission map grants the cell.
    """
    if user.bypasses_membership():
        return True
    if not organization.is_available:
        return False
    membership = await memberships.find_active_membership(db, user.id, organization.id)
    if membership is None:
        return False
    return membership.has_permission(resource, action)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_org_role(*allowed_roles: OrganizationRole | str) -> Callable:
    """
    FastAPI dependency requiring one of the listed organization roles.

    Usage:
        @router.delete("/{org_slug}")
        async def delete_org(ctx: AuthorizationContext = Depends(require_org_role("owner"))):
            ...

    Raises:
        InsufficientRole: 403 if the membership role is not listed
    """
    roles = tuple(OrganizationRole(role) for role in allowed_roles)

    async def role_dependency(
        context: Annotated[AuthorizationContext, Depends(get_tenant_context)],
    ) -> AuthorizationContext:
        denied = guards.check_role(context, roles)
        if denied is not None:
            log.info("Role guard denied user %s in %s: %s", context.user.id, context.organization.slug, denied.detail)
            raise denied.to_error()
        return context

    return role_dependency


def require_org_permission(resource: str, action: str) -> Callable:
    """
    FastAPI dependency requiring a specific organization permission.

    Usage:
        @router.post("/{org_slug}/members")
        async def invite(ctx: AuthorizationContext = Depends(require_org_permission("users", "invite"))):
            ...

    Raises:
        InsufficientPermission: 403 if the membership lacks the grant
    """
    async def permission_dependency(
        context: Annotated[AuthorizationContext, Depends(get_tenant_context)],
    ) -> AuthorizationContext:
        denied = guards.check_permission(context, resource, action)
        if denied is not None:
            log.info(
                "Permission guard denied user %s %s.%s in %s",
                context.user.id, resource, action, context.organization.slug,
            )
            raise denied.to_error()
        return context

    return permission_dependency


def require_system_role(*allowed_roles: SystemRole) -> Callable:
    """
    FastAPI dependency requiring a platform-wide system role.

    Usage:
        @router.put("/{user_id}/system-role")
        async def update(admin: User = Depends(require_system_role(SystemRole.SUPER_ADMIN))):
            ...
    """
    async def system_role_dependency(
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        denied = guards.check_system_role(user, allowed_roles)
        if denied is not None:
            raise denied.to_error()
        return user

    return system_role_dependency


def require_self_or_system_role(
    path_param: str = "user_id",
    allowed_roles: Iterable[SystemRole] = (SystemRole.SUPER_ADMIN,),
) -> Callable:
    """
    FastAPI dependency passing when the path names the caller, or the caller
    holds an elevated system role.
    """
    allowed = tuple(allowed_roles)

    async def self_or_privileged_dependency(
        request: Request,
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        target: Optional[str] = request.path_params.get(path_param)
        denied = guards.check_self_or_system_role(user, target or "", allowed)
        if denied is not None:
            raise denied.to_error(target=target)
        return user

    return self_or_privileged_dependency


require_super_admin = require_system_role(SystemRole.SUPER_ADMIN)
require_system_admin = require_system_role(SystemRole.SUPER_ADMIN, SystemRole.SYSTEM_ADMIN)
