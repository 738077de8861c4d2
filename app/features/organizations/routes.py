"""
Organization feature routes.

Routes under ``/{org_slug}`` run inside a tenant context: the slug in the
path selects the organization and the guards check the caller's membership.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import InsufficientRole
from app.features.organizations import memberships, service
from app.features.organizations.dependencies import get_hierarchy, get_target_membership
from app.features.organizations.hierarchy import OrganizationHierarchy
from app.features.organizations.models import Membership, Organization
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    OrganizationPublic,
    SettingsUpdate,
    ParentUpdate,
    HierarchyEntry,
    MemberCreate,
    MemberUpdate,
    MemberResponse,
)
from app.features.permissions import guards
from app.features.permissions.dependencies import require_org_permission, require_org_role, require_super_admin
from app.features.permissions.matrix import OrganizationRole
from app.features.tenancy.context import AuthorizationContext
from app.features.tenancy.dependencies import get_tenant_context
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])

OWNER_OR_ADMIN = (OrganizationRole.OWNER, OrganizationRole.ADMIN)


def _ensure_can_assign_owner(context: AuthorizationContext, *roles: OrganizationRole | None) -> None:
    """Only owners (or bypass) may hand out or take away the owner role."""
    if OrganizationRole.OWNER not in roles:
        return
    if context.is_bypass or context.role == OrganizationRole.OWNER:
        return
    raise InsufficientRole("Only organization owners can grant or revoke the owner role")


# Organization endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create an organization. The caller becomes its owner."""
    return await service.create_organization(db, user, org_data)


@router.get("/my", response_model=list[OrganizationResponse])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get all available organizations the current user is an active member of."""
    result = await db.execute(
        select(Organization)
        .join(Membership, Membership.organization_id == Organization.id)
        .where(
            Membership.user_id == user.id,
            Membership.is_active == True,  # noqa: E712
            Organization.is_active == True,  # noqa: E712
            Organization.deleted_at.is_(None),
        )
        .order_by(Organization.name)
    )
    return result.scalars().all()


@router.get("/roots", response_model=list[OrganizationPublic])
async def list_root_organizations(
    _user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List top-level organizations."""
    return await service.list_root_organizations(db)


@router.get("/{org_slug}", response_model=OrganizationResponse)
async def get_organization(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "read"))]
):
    return context.organization


@router.patch("/{org_slug}", response_model=OrganizationResponse)
async def update_organization(
    update_data: OrganizationUpdate,
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "write"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization details."""
    return await service.update_organization(db, context.organization, update_data)


@router.patch("/{org_slug}/settings", response_model=OrganizationResponse)
async def update_organization_settings(
    update_data: SettingsUpdate,
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "settings"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Merge top-level settings keys into the organization settings."""
    return await service.update_settings(db, context.organization, update_data.settings)


@router.put("/{org_slug}/parent", response_model=OrganizationResponse)
async def set_organization_parent(
    parent_data: ParentUpdate,
    context: Annotated[AuthorizationContext, Depends(require_org_role(*OWNER_OR_ADMIN))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Move the organization under a new parent, or make it a root with ``null``."""
    return await service.set_parent(db, context.user, context.organization, parent_data.parent_id)


@router.delete("/{org_slug}")
async def delete_organization(
    context: Annotated[AuthorizationContext, Depends(require_org_role(OrganizationRole.OWNER))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Soft-delete the organization and all of its sub-organizations (owner only)."""
    deleted = await service.soft_delete(db, context.organization)
    return {"message": "Organization deleted", "deleted_ids": deleted}


@router.put("/{org_slug}/deactivate", response_model=OrganizationResponse)
async def deactivate_organization(
    context: Annotated[AuthorizationContext, Depends(require_org_role(OrganizationRole.OWNER))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate the organization (owner only). Members lose access until a super admin reactivates it."""
    return await service.set_active(db, context.organization, False)


@router.put("/{org_slug}/activate", response_model=OrganizationResponse)
async def activate_organization(
    org_slug: str,
    _admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Reactivate an inactive organization (super admin only)."""
    organization = await service.get_by_slug(db, org_slug)
    return await service.set_active(db, organization, True)


# Hierarchy endpoints
@router.get("/{org_slug}/hierarchy", response_model=list[HierarchyEntry])
async def get_organization_hierarchy(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "read"))],
    hierarchy: Annotated[OrganizationHierarchy, Depends(get_hierarchy)]
):
    """Breadcrumb chain from the root organization down to this one."""
    return await hierarchy.breadcrumbs(context.organization)


@router.get("/{org_slug}/children", response_model=list[OrganizationPublic])
async def get_organization_children(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "read"))],
    hierarchy: Annotated[OrganizationHierarchy, Depends(get_hierarchy)]
):
    return await hierarchy.children(context.organization.id)


@router.get("/{org_slug}/descendants", response_model=list[OrganizationPublic])
async def get_organization_descendants(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("organizations", "read"))],
    hierarchy: Annotated[OrganizationHierarchy, Depends(get_hierarchy)]
):
    return await hierarchy.descendants(context.organization)


# Member management endpoints
@router.get("/{org_slug}/members", response_model=list[MemberResponse])
async def list_organization_members(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("users", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = Query(False)
):
    return await memberships.list_members(db, context.organization.id, include_inactive=include_inactive)


@router.get("/{org_slug}/admins", response_model=list[MemberResponse])
async def list_organization_admins(
    context: Annotated[AuthorizationContext, Depends(require_org_permission("users", "read"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Active owners and admins of the organization."""
    return await memberships.list_org_admins(db, context.organization.id)


@router.post("/{org_slug}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_organization_member(
    member_data: MemberCreate,
    context: Annotated[AuthorizationContext, Depends(require_org_permission("users", "invite"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to the organization."""
    _ensure_can_assign_owner(context, member_data.role)
    membership = await memberships.add_member(
        db,
        context.organization,
        member_data.user_id,
        role=member_data.role,
        permissions=member_data.permissions,
        invited_by=context.user,
    )
    await db.refresh(membership, ["user"])
    return membership


@router.patch("/{org_slug}/members/{user_id}", response_model=MemberResponse)
async def update_organization_member(
    user_id: str,
    update_data: MemberUpdate,
    context: Annotated[AuthorizationContext, Depends(require_org_role(*OWNER_OR_ADMIN))],
    membership: Annotated[Membership, Depends(get_target_membership)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's role, activation or profile fields (owners and admins)."""
    if update_data.role is not None and update_data.role != membership.role:
        _ensure_can_assign_owner(context, update_data.role, membership.role)
        await memberships.change_role(db, membership, update_data.role)
    if update_data.is_active is not None and update_data.is_active != membership.is_active:
        await memberships.set_active(db, membership, update_data.is_active)
    if update_data.department is not None:
        membership.department = update_data.department
    if update_data.job_title is not None:
        membership.job_title = update_data.job_title
    await db.flush()
    return membership


@router.put("/{org_slug}/members/{user_id}/permissions/{resource}/{action}", response_model=MemberResponse)
async def grant_member_permission(
    user_id: str,
    resource: str,
    action: str,
    _context: Annotated[AuthorizationContext, Depends(require_org_role(*OWNER_OR_ADMIN))],
    membership: Annotated[Membership, Depends(get_target_membership)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await memberships.set_permission(db, membership, resource, action, True)


@router.delete("/{org_slug}/members/{user_id}/permissions/{resource}/{action}", response_model=MemberResponse)
async def revoke_member_permission(
    user_id: str,
    resource: str,
    action: str,
    _context: Annotated[AuthorizationContext, Depends(require_org_role(*OWNER_OR_ADMIN))],
    membership: Annotated[Membership, Depends(get_target_membership)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await memberships.set_permission(db, membership, resource, action, False)


@router.delete("/{org_slug}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_organization_member(
    user_id: str,
    context: Annotated[AuthorizationContext, Depends(get_tenant_context)],
    membership: Annotated[Membership, Depends(get_target_membership)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Remove a user from the organization.

    Members may always remove themselves; removing someone else needs
    ``users.delete``. The last active owner cannot be removed.
    """
    if membership.user_id != context.user.id:
        denied = guards.check_permission(context, "users", "delete")
        if denied is not None:
            raise denied.to_error(user_id=user_id)
        _ensure_can_assign_owner(context, membership.role)

    denied = await guards.check_not_last_owner(db, membership)
    if denied is not None:
        raise denied.to_error(organization_id=membership.organization_id, user_id=user_id)

    await memberships.remove_membership(db, membership)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
