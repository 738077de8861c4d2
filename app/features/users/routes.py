"""
User feature routes.
"""
import math
from datetime import datetime
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import InsufficientSystemRole, UserNotFound
from app.features.organizations import memberships
from app.features.organizations.models import Membership
from app.features.permissions.dependencies import (
    require_self_or_system_role,
    require_super_admin,
    require_system_admin,
)
from app.features.permissions.matrix import OrganizationRole
from app.features.users import service
from app.features.users.auth import IdentityProvider, get_identity_provider
from app.features.users.models import SystemRole, User
from app.features.users.schemas import (
    UserResponse,
    UserProfile,
    SystemRoleUpdate,
    UserOrganizationEntry,
    UserOrganizationsPage,
    UsersPage,
    UserStats,
    UsersOverview,
)
from app.features.users.dependencies import get_current_user
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


def _organization_entry(membership: Membership) -> UserOrganizationEntry:
    organization = membership.organization
    return UserOrganizationEntry(
        organization_id=organization.id,
        organization_name=organization.name,
        organization_slug=organization.slug,
        parent_id=organization.parent_id,
        role=membership.role.value,
        permissions=membership.permissions,
        is_active=membership.is_active,
        joined_at=membership.joined_at,
        last_access_at=membership.last_access_at,
    )


def _users_page(items: list[User], total: int, page: int, limit: int) -> UsersPage:
    pages = math.ceil(total / limit) if total else 0
    return UsersPage(
        items=[UserResponse.model_validate(u) for u in items],
        total=total,
        page=page,
        limit=limit,
        pages=pages,
        has_next=page < pages,
        has_prev=page > 1,
    )


async def _get_user(db: AsyncSession, user_id: str, include_deleted: bool = False) -> User:
    """Look up a user by local id or firebase uid."""
    query = select(User).where(or_(User.id == user_id, User.firebase_uid == user_id))
    if not include_deleted:
        query = query.where(User.deleted_at.is_(None))
    result = await db.execute(query)
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFound(user_id=user_id)
    return user


@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get current authenticated user's profile with their active organizations."""
    items, _total = await memberships.list_user_memberships(
        db, user.id, sort_by="name", sort_order="asc", limit=100
    )
    return UserProfile(user=UserResponse.model_validate(user), organizations=[_organization_entry(m) for m in items])


# Admin listing routes
@router.get("/", response_model=UsersPage)
async def list_users(
    _admin: Annotated[User, Depends(require_system_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    system_role: SystemRole | None = Query(None),
    is_active: bool | None = Query(None),
    search: str | None = Query(None, max_length=100),
    include_deleted: bool = Query(False),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|last_login_at|system_role)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    """List users with filters and paging (system admins)."""
    items, total = await service.list_users(
        db,
        system_role=system_role,
        is_active=is_active,
        search=search,
        include_deleted=include_deleted,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return _users_page(items, total, page, limit)


@router.get("/deleted", response_model=UsersPage)
async def list_deleted_users(
    _admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    """List soft-deleted users, most recently deleted first (super admin only)."""
    items, total = await service.list_deleted_users(db, offset=(page - 1) * limit, limit=limit)
    return _users_page(items, total, page, limit)


@router.get("/stats", response_model=UserStats)
async def get_user_stats(
    _admin: Annotated[User, Depends(require_system_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.user_stats(db)


@router.get("/overview", response_model=UsersOverview)
async def get_users_overview(
    _admin: Annotated[User, Depends(require_system_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Dashboard summary: role and status distribution, newest and most recently active users."""
    return await service.users_overview(db)


@router.get("/{user_id}/organizations", response_model=UserOrganizationsPage)
async def get_user_organizations(
    user_id: str,
    _caller: Annotated[User, Depends(require_self_or_system_role("user_id"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    role: OrganizationRole | None = Query(None),
    search: str | None = Query(None, max_length=100),
    include_inactive: bool = Query(False),
    sort_by: str = Query("joined_at", pattern="^(joined_at|name|created_at|role)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    """List a user's organizations (the user themselves, or a super admin)."""
    target = await _get_user(db, user_id)
    items, total = await memberships.list_user_memberships(
        db,
        target.id,
        role=role,
        search=search,
        include_inactive=include_inactive,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return UserOrganizationsPage(
        items=[_organization_entry(m) for m in items],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


# Admin-only routes
@router.put("/{user_id}/system-role", response_model=UserResponse)
async def update_system_role(
    user_id: str,
    role_data: SystemRoleUpdate,
    admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a user's system role (super admin only)."""
    user = await _get_user(db, user_id)

    # Prevent self-demotion
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify your own system role"
        )

    log.info("User %s system role %s -> %s by %s", user.id, user.system_role.value, role_data.system_role.value, admin.id)
    user.system_role = role_data.system_role
    await db.flush()
    await db.refresh(user)
    return user


@router.put("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: str,
    admin: Annotated[User, Depends(require_system_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)]
):
    """Deactivate a user account (system admins; super admins only by super admins)."""
    user = await _get_user(db, user_id)

    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )
    if user.system_role == SystemRole.SUPER_ADMIN and not admin.is_super_admin():
        raise InsufficientSystemRole("Only super admins can deactivate a super admin", user_id=user.id)

    user.is_active = False
    await db.flush()
    await db.refresh(user)
    await provider.set_disabled(user.firebase_uid, True)
    log.info("User %s deactivated by %s", user.id, admin.id)
    return user


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(
    user_id: str,
    admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)]
):
    """Soft-delete a user account and disable its Firebase account (super admin only)."""
    user = await _get_user(db, user_id)

    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    user.soft_delete()
    user.is_active = False
    await db.flush()
    await db.refresh(user)
    await provider.set_disabled(user.firebase_uid, True)
    log.info("User %s soft-deleted by %s", user.id, admin.id)
    return user


@router.post("/{user_id}/restore", response_model=UserResponse)
async def restore_user(
    user_id: str,
    admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)]
):
    """Restore a soft-deleted user account and re-enable it in Firebase (super admin only)."""
    user = await _get_user(db, user_id, include_deleted=True)
    if not user.is_deleted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not deleted"
        )

    user.restore()
    user.is_active = True
    await db.flush()
    await db.refresh(user)
    await provider.set_disabled(user.firebase_uid, False)
    log.info("User %s restored by %s", user.id, admin.id)
    return user


@router.delete("/{user_id}/permanent")
async def permanently_delete_user(
    user_id: str,
    admin: Annotated[User, Depends(require_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)]
):
    """
    Permanently delete a user, their memberships and their Firebase account
    (super admin only). Soft-deleted users can be purged too.
    """
    user = await _get_user(db, user_id, include_deleted=True)

    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    firebase_uid = user.firebase_uid
    await service.purge_user(db, user)
    await provider.delete_account(firebase_uid)
    log.warning("User %s permanently deleted by %s", user_id, admin.id)
    return {"message": "User permanently deleted"}
