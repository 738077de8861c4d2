"""
Membership lifecycle.

Defaulting, role changes, permission overrides and removal are explicit
steps here, called by the routes inside the request transaction:

    build_membership      pre-commit: default role and permission map
    change_role           pre-commit: last-owner check, then recompute permissions
    set_permission        pre-commit: flip one cell and record the override
    remove_membership     pre-commit: last-owner check, then delete
"""
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import case, select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import LastOwnerViolation, MembershipExists, MembershipNotFound, UserNotFound
from app.features.organizations.models import Membership, Organization
from app.features.permissions import matrix
from app.features.permissions.matrix import OrganizationRole
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


MEMBERSHIP_SORT_FIELDS = ("joined_at", "name", "created_at", "role")


def build_membership(
    user_id: str,
    organization_id: str,
    role: Any = None,
    permissions: Optional[dict] = None,
    invited_by_id: Optional[str] = None,
) -> Membership:
    """
    Create an unsaved membership with its permission map populated.

    Without explicit permissions the map comes from the role defaults
    (role defaults to employee). Explicit permissions are normalized to the
    full grid and the difference from the role defaults is kept as overrides.
    """
    role = matrix.DEFAULT_ROLE if role is None else matrix.coerce_role(role)
    if permissions:
        effective = matrix.normalize_permissions(permissions)
        overrides = matrix.custom_overrides(role, effective)
    else:
        effective = matrix.role_permissions(role)
        overrides = {}

    now = utcnow()
    return Membership(
        user_id=user_id,
        organization_id=organization_id,
        role=role,
        permissions=effective,
        custom_permissions=overrides,
        is_active=True,
        invited_by_id=invited_by_id,
        invited_at=now if invited_by_id else None,
        joined_at=now,
    )


async def find_active_membership(db: AsyncSession, user_id: str, organization_id: str) -> Optional[Membership]:
    result = await db.execute(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.organization_id == organization_id,
            Membership.is_active == True,  # noqa: E712
        )
    )
    return result.scalar_one_or_none()


async def get_membership(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    for_update: bool = False,
) -> Membership:
    """
    Get a membership (active or not) or raise MembershipNotFound.
    """
    stmt = select(Membership).where(
        Membership.user_id == user_id,
        Membership.organization_id == organization_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    membership = result.scalar_one_or_none()
    if membership is None:
        raise MembershipNotFound(organization_id=organization_id, user_id=user_id)
    return membership


async def add_member(
    db: AsyncSession,
    organization: Organization,
    user_id: str,
    role: Any = None,
    permissions: Optional[dict] = None,
    invited_by: Optional[User] = None,
) -> Membership:
    """Add a user to an organization; one membership per (user, organization)."""
    result = await db.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFound(user_id=user_id)

    existing = await db.execute(
        select(Membership.id).where(
            Membership.user_id == user_id,
            Membership.organization_id == organization.id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise MembershipExists(organization_id=organization.id, user_id=user_id)

    membership = build_membership(
        user_id=user_id,
        organization_id=organization.id,
        role=role,
        permissions=permissions,
        invited_by_id=invited_by.id if invited_by else None,
    )
    db.add(membership)
    await db.flush()
    await db.refresh(membership)
    log.info("User %s joined organization %s as %s", user_id, organization.id, membership.role.value)
    return membership


async def count_other_active_owners(db: AsyncSession, membership: Membership) -> int:
    """
    Count active owners of the membership's organization, excluding it.

    The owner rows are locked so concurrent removals serialize on PostgreSQL.
    """
    result = await db.execute(
        select(Membership.id)
        .where(
            Membership.organization_id == membership.organization_id,
            Membership.role == OrganizationRole.OWNER,
            Membership.is_active == True,  # noqa: E712
            Membership.id != membership.id,
        )
        .with_for_update()
    )
    return len(result.scalars().all())


def _holds_ownership(membership: Membership) -> bool:
    return membership.role == OrganizationRole.OWNER and membership.is_active


async def ensure_owner_remains(db: AsyncSession, membership: Membership) -> None:
    """
    Raise LastOwnerViolation if this membership is the organization's only active owner.
    """
    if not _holds_ownership(membership):
        return
    if await count_other_active_owners(db, membership) == 0:
        log.info("Refused to drop last owner %s of organization %s", membership.user_id, membership.organization_id)
        raise LastOwnerViolation(organization_id=membership.organization_id, user_id=membership.user_id)


async def change_role(db: AsyncSession, membership: Membership, new_role: Any) -> Membership:
    new_role = matrix.coerce_role(new_role)
    if new_role == membership.role:
        return membership
    if new_role != OrganizationRole.OWNER:
        await ensure_owner_remains(db, membership)
    previous = membership.role
    membership.apply_role_change(new_role)
    await db.flush()
    log.info(
        "Membership %s role changed %s -> %s", membership.id, previous.value, new_role.value
    )
    return membership


async def set_permission(
    db: AsyncSession,
    membership: Membership,
    resource: str,
    action: str,
    granted: bool,
) -> Membership:
    if granted:
        membership.grant_permission(resource, action)
    else:
        membership.revoke_permission(resource, action)
    await db.flush()
    log.info(
        "Membership %s %s %s.%s", membership.id, "granted" if granted else "revoked", resource, action
    )
    return membership


async def set_active(db: AsyncSession, membership: Membership, is_active: bool) -> Membership:
    if not is_active:
        await ensure_owner_remains(db, membership)
    membership.is_active = is_active
    await db.flush()
    return membership


async def remove_membership(db: AsyncSession, membership: Membership) -> None:
    await ensure_owner_remains(db, membership)
    await db.delete(membership)
    await db.flush()
    log.info("User %s removed from organization %s", membership.user_id, membership.organization_id)


async def touch_last_access(db: AsyncSession, membership_id: str, when: Optional[datetime] = None) -> None:
    membership = await db.get(Membership, membership_id)
    if membership is not None:
        membership.last_access_at = when or utcnow()


async def list_members(
    db: AsyncSession,
    organization_id: str,
    include_inactive: bool = False,
) -> list[Membership]:
    stmt = (
        select(Membership)
        .join(User, User.id == Membership.user_id)
        .where(Membership.organization_id == organization_id, User.deleted_at.is_(None))
    )
    if not include_inactive:
        stmt = stmt.where(Membership.is_active == True, User.is_active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(Membership.joined_at.asc()))
    return list(result.scalars().all())


async def list_org_admins(db: AsyncSession, organization_id: str) -> list[Membership]:
    result = await db.execute(
        select(Membership)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.organization_id == organization_id,
            Membership.role.in_([OrganizationRole.OWNER, OrganizationRole.ADMIN]),
            Membership.is_active == True,  # noqa: E712
            User.is_active == True,  # noqa: E712
            User.deleted_at.is_(None),
        )
        .order_by(Membership.joined_at.asc())
    )
    return list(result.scalars().all())


async def list_user_memberships(
    db: AsyncSession,
    user_id: str,
    role: Optional[OrganizationRole] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    sort_by: str = "joined_at",
    sort_order: str = "desc",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Membership], int]:
    """
    Memberships of one user in available organizations, with paging.

    Returns:
        (memberships for the page, total matching count)
    """
    stmt = (
        select(Membership)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(
            Membership.user_id == user_id,
            Organization.is_active == True,  # noqa: E712
            Organization.deleted_at.is_(None),
        )
    )
    if not include_inactive:
        stmt = stmt.where(Membership.is_active == True)  # noqa: E712
    if role is not None:
        stmt = stmt.where(Membership.role == role)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Organization.name).like(pattern),
                func.lower(Organization.slug).like(pattern),
                func.lower(func.coalesce(Organization.description, "")).like(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    sort_columns = {
        "joined_at": Membership.joined_at,
        "name": Organization.name,
        "created_at": Organization.created_at,
        "role": case({role: role.rank for role in OrganizationRole}, value=Membership.role, else_=0),
    }
    column = sort_columns.get(sort_by, Membership.joined_at)
    stmt = stmt.order_by(column.asc() if sort_order.lower() == "asc" else column.desc())

    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all()), total
