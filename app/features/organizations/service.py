"""
Organization lifecycle.

Creation, parent reassignment and deletion run as explicit steps inside the
request transaction:

    create_organization   slug allocation, parent validation, owner membership
    set_parent            cycle check on every reassignment
    soft_delete           cascades to children one level at a time
"""
from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AccessDenied, OrganizationNotFound
from app.features.organizations import memberships
from app.features.organizations.hierarchy import OrganizationHierarchy
from app.features.organizations.models import Organization, default_settings
from app.features.organizations.schemas import OrganizationCreate, OrganizationUpdate
from app.features.organizations.slugs import slugify, unique_slug
from app.features.permissions.matrix import OrganizationRole
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def _require_parent_admin(db: AsyncSession, user: User, parent: Organization) -> None:
    """Only owners/admins of the parent (or a super admin) may attach sub-organizations."""
    if user.bypasses_membership():
        return
    membership = await memberships.find_active_membership(db, user.id, parent.id)
    if membership is None or not membership.is_owner_or_admin():
        raise AccessDenied(
            "Only owners and admins of the parent organization can attach sub-organizations",
            parent_id=parent.id,
        )


async def create_organization(db: AsyncSession, owner: User, data: OrganizationCreate) -> Organization:
    """Create an organization and make ``owner`` its first member with role owner."""
    slug = await unique_slug(db, data.slug or slugify(data.name))

    parent: Optional[Organization] = None
    if data.parent_id:
        hierarchy = OrganizationHierarchy(db)
        parent = await hierarchy.get(data.parent_id)
        if parent is None or not parent.is_available:
            raise OrganizationNotFound("Parent organization not found", parent_id=data.parent_id)
        await _require_parent_admin(db, owner, parent)

    organization = Organization(
        name=data.name,
        slug=slug,
        description=data.description,
        parent_id=parent.id if parent else None,
        settings=default_settings(),
        contact_info=dict(data.contact_info),
        is_active=True,
    )
    db.add(organization)
    await db.flush()

    owner_membership = memberships.build_membership(owner.id, organization.id, role=OrganizationRole.OWNER)
    db.add(owner_membership)
    await db.flush()
    await db.refresh(owner_membership)
    await db.refresh(organization)

    log.info("Organization %s (%s) created by %s", organization.id, organization.slug, owner.id)
    return organization


async def update_organization(db: AsyncSession, organization: Organization, data: OrganizationUpdate) -> Organization:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(organization, field, value)
    await db.flush()
    await db.refresh(organization)
    return organization


async def get_by_slug(db: AsyncSession, slug: str) -> Organization:
    """Look up a non-deleted organization by slug, active or not."""
    result = await db.execute(
        select(Organization).where(Organization.slug == slug, Organization.deleted_at.is_(None))
    )
    organization = result.scalar_one_or_none()
    if organization is None:
        raise OrganizationNotFound(slug=slug)
    return organization


async def set_active(db: AsyncSession, organization: Organization, is_active: bool) -> Organization:
    """
    Switch an organization on or off.

    An inactive organization is invisible to tenant resolution, so only a
    super admin can reach it again to reactivate it.
    """
    organization.is_active = is_active
    await db.flush()
    await db.refresh(organization)
    log.info("Organization %s %s", organization.id, "activated" if is_active else "deactivated")
    return organization


async def update_settings(db: AsyncSession, organization: Organization, new_settings: Dict[str, Any]) -> Organization:
    """Shallow merge: top-level keys in ``new_settings`` replace the stored ones."""
    organization.settings = {**(organization.settings or {}), **new_settings}
    await db.flush()
    await db.refresh(organization)
    return organization


async def set_parent(
    db: AsyncSession,
    user: User,
    organization: Organization,
    parent_id: Optional[str],
) -> Organization:
    """
    Reassign (or clear) an organization's parent.

    Raises:
        HierarchyCycle, OrganizationNotFound, AccessDenied
    """
    if parent_id is None:
        organization.parent_id = None
    else:
        parent = await OrganizationHierarchy(db).validate_new_parent(parent_id, organization.id)
        await _require_parent_admin(db, user, parent)
        organization.parent_id = parent.id
    await db.flush()
    await db.refresh(organization)
    log.info("Organization %s parent set to %s", organization.id, organization.parent_id)
    return organization


async def soft_delete(db: AsyncSession, organization: Organization) -> list[str]:
    """
    Soft-delete an organization and, recursively, its children.

    Returns:
        IDs of every organization deleted, the target first
    """
    hierarchy = OrganizationHierarchy(db)
    deleted: list[str] = []
    level = [organization]
    depth = 0
    while level:
        if depth > hierarchy.max_depth:
            raise hierarchy.corruption_error(organization.id, "deletion cascade exceeds maximum depth")
        next_level: list[Organization] = []
        for org in level:
            if org.is_deleted:
                continue
            org.soft_delete()
            org.is_active = False
            deleted.append(org.id)
            next_level.extend(await hierarchy.children(org.id, include_inactive=True))
        await db.flush()
        level = next_level
        depth += 1
    log.info("Soft-deleted organization %s and %d descendants", organization.id, len(deleted) - 1)
    return deleted


async def list_root_organizations(db: AsyncSession) -> list[Organization]:
    result = await db.execute(
        select(Organization)
        .where(
            Organization.parent_id.is_(None),
            Organization.is_active == True,  # noqa: E712
            Organization.deleted_at.is_(None),
        )
        .order_by(Organization.name)
    )
    return list(result.scalars().all())
