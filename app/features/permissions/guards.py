"""
Access guards over a resolved AuthorizationContext.

Each check returns None when it passes and a Denied result otherwise. The
FastAPI dependencies in ``dependencies.py`` turn a Denied into its error.
"""
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DenialReason
from app.features.organizations import memberships
from app.features.organizations.models import Membership
from app.features.permissions.matrix import OrganizationRole
from app.features.tenancy.context import AuthorizationContext, Denied
from app.features.users.models import SystemRole, User


def check_role(context: AuthorizationContext, allowed_roles: Iterable[OrganizationRole | str]) -> Optional[Denied]:
    """
    Pass on bypass, or when the membership role is in ``allowed_roles``.

    Exact membership only: roles are not ordered here, so an admin does not
    satisfy a set that lists only owner.
    """
    if context.is_bypass:
        return None
    allowed = {OrganizationRole(role) for role in allowed_roles}
    if context.role in allowed:
        return None
    return Denied(
        DenialReason.INSUFFICIENT_ROLE,
        f"Required roles: {', '.join(sorted(r.value for r in allowed))}, "
        f"current role: {context.role.value if context.role else 'none'}",
    )


def check_permission(context: AuthorizationContext, resource: str, action: str) -> Optional[Denied]:
    if context.is_bypass:
        return None
    if context.membership is not None and context.membership.has_permission(resource, action):
        return None
    return Denied(DenialReason.INSUFFICIENT_PERMISSION, f"Required permission: {resource}.{action}")


def check_system_role(user: User, allowed_roles: Iterable[SystemRole]) -> Optional[Denied]:
    allowed = set(allowed_roles)
    if user.system_role in allowed:
        return None
    return Denied(
        DenialReason.INSUFFICIENT_SYSTEM_ROLE,
        f"Required system roles: {', '.join(sorted(r.value for r in allowed))}",
    )


def check_self_or_system_role(
    user: User,
    target_subject: str,
    allowed_roles: Iterable[SystemRole] = (SystemRole.SUPER_ADMIN,),
) -> Optional[Denied]:
    """Pass when acting on oneself (local id or firebase uid), or with an elevated system role."""
    if target_subject in (user.id, user.firebase_uid):
        return None
    return check_system_role(user, allowed_roles)


async def check_not_last_owner(db: AsyncSession, membership: Membership) -> Optional[Denied]:
    """
    Pre-check for removals, demotions and deactivations of an owner.

    Lets handlers surface a clean error before attempting the mutation.
    """
    if membership.role != OrganizationRole.OWNER or not membership.is_active:
        return None
    if await memberships.count_other_active_owners(db, membership) > 0:
        return None
    return Denied(DenialReason.LAST_OWNER_VIOLATION, "Cannot remove the last owner of an organization")
