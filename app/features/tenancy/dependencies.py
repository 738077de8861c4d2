"""
FastAPI dependencies for tenant context.

The resolved context is cached on ``request.state`` so stacked guards on one
route resolve the organization and membership only once.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, get_db
from app.features.tenancy.context import (
    AccessStamper,
    AuthorizationContext,
    AuthorizationContextBuilder,
    Denied,
)
from app.features.tenancy.resolver import TenantSignals
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


_CACHE_ATTR = "authorization"
_OPTIONAL_CACHE_ATTR = "optional_authorization"

access_stamper = AccessStamper(AsyncSessionLocal)


def get_access_stamper() -> AccessStamper:
    return access_stamper


def get_context_builder(
    db: Annotated[AsyncSession, Depends(get_db)],
    stamper: Annotated[AccessStamper, Depends(get_access_stamper)],
) -> AuthorizationContextBuilder:
    return AuthorizationContextBuilder(db, stamper)


async def get_tenant_context(
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    builder: Annotated[AuthorizationContextBuilder, Depends(get_context_builder)],
) -> AuthorizationContext:
    """
    Require a tenant context for the request.

    Usage:
        @router.get("/{org_slug}/reports")
        async def reports(ctx: AuthorizationContext = Depends(get_tenant_context)):
            ...

    Raises:
        TenantRequired, OrganizationNotFound, AccessDenied
    """
    cached = getattr(request.state, _CACHE_ATTR, None)
    if cached is not None:
        return cached

    result = await builder.build(user, TenantSignals.from_request(request))
    if isinstance(result, Denied):
        raise result.to_error()

    setattr(request.state, _CACHE_ATTR, result.context)
    return result.context


async def get_optional_tenant_context(
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    builder: Annotated[AuthorizationContextBuilder, Depends(get_context_builder)],
) -> Optional[AuthorizationContext]:
    """Tenant context when the request names an accessible organization, else None."""
    cached = getattr(request.state, _CACHE_ATTR, None)
    if cached is not None:
        return cached
    if getattr(request.state, _OPTIONAL_CACHE_ATTR, False):
        return None

    result = await builder.build_optional(user, TenantSignals.from_request(request))
    if isinstance(result, Denied):
        raise result.to_error()
    if result is None:
        setattr(request.state, _OPTIONAL_CACHE_ATTR, True)
        return None

    setattr(request.state, _CACHE_ATTR, result.context)
    return result.context
