"""
User administration queries.

Listing, statistics, dashboard summaries and permanent deletion for system
admins. Soft-deleted users are excluded unless asked for explicitly.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.features.organizations import memberships
from app.features.organizations.models import Membership
from app.features.permissions.matrix import OrganizationRole
from app.features.users.models import SystemRole, User
from app.utils import get_logger


log = get_logger(__name__)

ADMIN_ROLES = (SystemRole.SUPER_ADMIN, SystemRole.SYSTEM_ADMIN)
SYSTEM_ROLE_RANK = {SystemRole.USER: 1, SystemRole.SYSTEM_ADMIN: 2, SystemRole.SUPER_ADMIN: 3}
STATS_RECENT_DAYS = 30
OVERVIEW_RECENT_DAYS = 7
OVERVIEW_LIST_SIZE = 10


async def _count(db: AsyncSession, *conditions) -> int:
    result = await db.execute(select(func.count(User.id)).where(*conditions))
    return result.scalar_one()


async def list_users(
    db: AsyncSession,
    *,
    system_role: Optional[SystemRole] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    include_deleted: bool = False,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[User], int]:
    """
    Filtered, sorted page of users.

    ``search`` matches email, display name or Firebase uid (case-insensitive).
    ``date_from`` and ``date_to`` bound the creation time, both inclusive.

    Returns:
        (page of users, total matching count)
    """
    stmt = select(User)
    if not include_deleted:
        stmt = stmt.where(User.deleted_at.is_(None))
    if system_role is not None:
        stmt = stmt.where(User.system_role == system_role)
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    if search:
        term = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(User.email).like(term),
                func.lower(User.display_name).like(term),
                func.lower(User.firebase_uid).like(term),
            )
        )
    if date_from is not None:
        stmt = stmt.where(User.created_at >= date_from)
    if date_to is not None:
        stmt = stmt.where(User.created_at <= date_to)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    sort_columns = {
        "created_at": User.created_at,
        "updated_at": User.updated_at,
        "last_login_at": User.last_login_at,
        "system_role": case(SYSTEM_ROLE_RANK, value=User.system_role, else_=0),
    }
    column = sort_columns.get(sort_by, User.created_at)
    order = column.asc() if sort_order.lower() == "asc" else column.desc()
    stmt = stmt.order_by(order, User.id)

    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all()), total


async def list_deleted_users(db: AsyncSession, offset: int = 0, limit: int = 20) -> tuple[list[User], int]:
    """Soft-deleted users, most recently deleted first."""
    total = await _count(db, User.deleted_at.is_not(None))
    result = await db.execute(
        select(User)
        .where(User.deleted_at.is_not(None))
        .order_by(User.deleted_at.desc(), User.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def user_stats(db: AsyncSession) -> Dict[str, Any]:
    """Headline counts for the admin dashboard."""
    live = User.deleted_at.is_(None)
    since = utcnow() - timedelta(days=STATS_RECENT_DAYS)

    total_users = await _count(db, live)
    active_users = await _count(db, live, User.is_active == True)  # noqa: E712
    inactive_users = total_users - active_users
    system_admins = await _count(db, live, User.system_role.in_(ADMIN_ROLES))
    recent_users = await _count(db, live, User.created_at >= since)
    deleted_users = await _count(db, User.deleted_at.is_not(None))
    total_with_deleted = total_users + deleted_users

    return {
        "total_users": total_users,
        "active_users": active_users,
        "inactive_users": inactive_users,
        "system_admins": system_admins,
        "recent_users": recent_users,
        "deleted_users": deleted_users,
        "total_with_deleted": total_with_deleted,
        "inactive_percentage": round(inactive_users * 100 / total_users) if total_users else 0,
        "deleted_percentage": round(deleted_users * 100 / total_with_deleted) if total_with_deleted else 0,
    }


async def users_overview(db: AsyncSession) -> Dict[str, Any]:
    """Role and status distribution plus the newest and most recently active users."""
    live = User.deleted_at.is_(None)

    role_rows = await db.execute(
        select(User.system_role, func.count(User.id)).where(live).group_by(User.system_role)
    )
    role_distribution = {role.value: count for role, count in role_rows.all()}

    status_rows = await db.execute(
        select(User.is_active, func.count(User.id)).where(live).group_by(User.is_active)
    )
    status_distribution = {("active" if active else "inactive"): count for active, count in status_rows.all()}

    since = utcnow() - timedelta(days=OVERVIEW_RECENT_DAYS)
    recent = await db.execute(
        select(User)
        .where(live, User.created_at >= since)
        .order_by(User.created_at.desc())
        .limit(OVERVIEW_LIST_SIZE)
    )
    recent_users = list(recent.scalars().all())

    active = await db.execute(
        select(User)
        .where(live, User.last_login_at.is_not(None))
        .order_by(User.last_login_at.desc())
        .limit(OVERVIEW_LIST_SIZE)
    )

    return {
        "overview": {
            "total_users": sum(role_distribution.values()),
            "active_users": status_distribution.get("active", 0),
            "inactive_users": status_distribution.get("inactive", 0),
            "recent_signups": len(recent_users),
        },
        "role_distribution": role_distribution,
        "status_distribution": status_distribution,
        "recent_users": recent_users,
        "active_users": list(active.scalars().all()),
    }


async def purge_user(db: AsyncSession, user: User) -> None:
    """
    Permanently delete a user and their memberships.

    Live organizations the user solely owns block the deletion: another
    owner has to be appointed first.

    Raises:
        LastOwnerViolation
    """
    result = await db.execute(
        select(Membership).where(
            Membership.user_id == user.id,
            Membership.role == OrganizationRole.OWNER,
            Membership.is_active == True,  # noqa: E712
        )
    )
    for membership in result.scalars().all():
        if membership.organization is None or membership.organization.is_deleted:
            continue
        await memberships.ensure_owner_remains(db, membership)

    await db.execute(
        update(Membership).where(Membership.invited_by_id == user.id).values(invited_by_id=None)
    )
    await db.execute(delete(Membership).where(Membership.user_id == user.id))
    await db.delete(user)
    await db.flush()
    log.warning("User %s (%s) permanently deleted", user.id, user.firebase_uid)
