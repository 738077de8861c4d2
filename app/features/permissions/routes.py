"""
Permission API routes.

Read-only views of the role matrix, the caller's effective permissions in a
tenant, and one-off permission checks.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import OrganizationNotFound
from app.features.permissions import matrix
from app.features.permissions.dependencies import can_perform_action
from app.features.permissions.matrix import OrganizationRole
from app.features.permissions.schemas import (
    RolePermissionsResponse,
    TenantContextResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
)
from app.features.tenancy.context import AuthorizationContext, AuthorizationContextBuilder
from app.features.tenancy.dependencies import get_context_builder, get_optional_tenant_context
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _role_entry(role: OrganizationRole) -> RolePermissionsResponse:
    return RolePermissionsResponse(role=role, rank=role.rank, permissions=matrix.role_permissions(role))


# ============================================================================
# Role Matrix Routes
# ============================================================================

@router.get("/roles", response_model=list[RolePermissionsResponse])
async def list_roles(_user: Annotated[User, Depends(get_current_user)]):
    """List every organization role with its default permissions, most privileged first."""
    return [_role_entry(role) for role in OrganizationRole]


@router.get("/roles/{role}", response_model=RolePermissionsResponse)
async def get_role(role: OrganizationRole, _user: Annotated[User, Depends(get_current_user)]):
    return _role_entry(role)


# ============================================================================
# Effective Permission Routes
# ============================================================================

@router.get("/me", response_model=TenantContextResponse)
async def get_my_permissions(
    context: Annotated[Optional[AuthorizationContext], Depends(get_optional_tenant_context)],
):
    """
    Effective permissions of the caller in the organization named by the
    ``X-Organization-Slug`` / ``X-Tenant-ID`` header or subdomain.

    Returns an empty context when no accessible organization is named.
    """
    if context is None:
        return TenantContextResponse()
    return TenantContextResponse(
        organization_id=context.organization.id,
        organization_slug=context.organization.slug,
        role=context.role,
        bypass=context.is_bypass,
        permissions={resource: dict(actions) for resource, actions in context.permissions.items()},
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    user: Annotated[User, Depends(get_current_user)],
    builder: Annotated[AuthorizationContextBuilder, Depends(get_context_builder)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Check whether the caller may perform an action on a resource in an organization."""
    organization = await builder.find_organization(check.organization_slug)
    if organization is None:
        raise OrganizationNotFound(organization_slug=check.organization_slug)

    allowed = await can_perform_action(db, user, organization, check.resource, check.action)
    log.debug("Permission check user=%s %s.%s in %s: %s", user.id, check.resource, check.action, organization.slug, allowed)
    return PermissionCheckResponse(
        has_permission=allowed,
        organization_slug=organization.slug,
        resource=check.resource,
        action=check.action,
    )
