"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations import memberships
from app.features.organizations.hierarchy import OrganizationHierarchy
from app.features.organizations.models import Membership
from app.features.tenancy.context import AuthorizationContext
from app.features.tenancy.dependencies import get_tenant_context


def get_hierarchy(db: Annotated[AsyncSession, Depends(get_db)]) -> OrganizationHierarchy:
    return OrganizationHierarchy(db)


async def get_target_membership(
    user_id: str,
    context: Annotated[AuthorizationContext, Depends(get_tenant_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Membership:
    """
    Get the membership named by the ``user_id`` path parameter in the
    current tenant, locked for update.

    Raises:
        MembershipNotFound: 404 if the user is not a member
    """
    return await memberships.get_membership(db, context.organization.id, user_id, for_update=True)
