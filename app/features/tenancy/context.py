"""
Per-request authorization context.

AuthorizationContextBuilder turns (user, tenant signals) into either an
Authorized context or a Denied result with a reason code:

    no user                          -> Denied(AUTHENTICATION_REQUIRED)
    no tenant slug                   -> Denied(TENANT_REQUIRED)
    no active organization for slug  -> Denied(ORGANIZATION_NOT_FOUND)
    super admin                      -> Authorized, no membership (bypass)
    no active membership             -> Denied(ACCESS_DENIED)
    otherwise                        -> Authorized with the membership

An Authorized membership gets its last_access_at stamped in the background.
"""
import asyncio
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import AppError, DENIAL_ERRORS, DenialReason
from app.features.organizations import memberships
from app.features.organizations.models import Membership, Organization
from app.features.permissions import matrix
from app.features.permissions.matrix import OrganizationRole
from app.features.tenancy.resolver import TenantSignals, resolve_tenant_slug
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _freeze(permissions: Mapping[str, Mapping[str, bool]]) -> Mapping[str, Mapping[str, bool]]:
    return MappingProxyType({
        resource: MappingProxyType(dict(actions))
        for resource, actions in matrix.normalize_permissions(permissions).items()
    })


@dataclass(frozen=True)
class AuthorizationContext:
    """
    Resolved tenant context for one request.

    ``membership`` is None when access was granted by system-role bypass.
    """
    user: User
    organization: Organization
    membership: Optional[Membership]
    role: Optional[OrganizationRole]
    permissions: Mapping[str, Mapping[str, bool]]

    @property
    def is_bypass(self) -> bool:
        return self.membership is None

    def has_permission(self, resource: str, action: str) -> bool:
        return matrix.has_permission(self.permissions, resource, action)

    @classmethod
    def for_membership(cls, user: User, organization: Organization, membership: Membership) -> "AuthorizationContext":
        return cls(
            user=user,
            organization=organization,
            membership=membership,
            role=membership.role,
            permissions=_freeze(membership.permissions),
        )

    @classmethod
    def for_bypass(cls, user: User, organization: Organization) -> "AuthorizationContext":
        # Bypass carries the full grant set and no organization role
        return cls(
            user=user,
            organization=organization,
            membership=None,
            role=None,
            permissions=_freeze(matrix.role_permissions(OrganizationRole.OWNER)),
        )


@dataclass(frozen=True)
class Authorized:
    context: AuthorizationContext


@dataclass(frozen=True)
class Denied:
    reason: DenialReason
    detail: Optional[str] = None

    def to_error(self, **details: Any) -> AppError:
        error_class = DENIAL_ERRORS[self.reason]
        return error_class(self.detail, **details)


AuthorizationResult = Union[Authorized, Denied]


class AccessStamper:
    """
    Fire-and-forget last_access_at updates.

    Each stamp runs in its own session and task so it never blocks or fails
    the request that triggered it. Failures are logged and dropped.
    """

    def __init__(self, session_factory: Callable[[], Any]):
        self.session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    def schedule(self, membership_id: str) -> Optional[asyncio.Task]:
        try:
            task = asyncio.get_running_loop().create_task(self._stamp(membership_id, utcnow()))
        except RuntimeError:
            log.warning("No running event loop; skipped access stamp for membership %s", membership_id)
            return None
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _stamp(self, membership_id: str, when) -> None:
        try:
            async with self.session_factory() as session:
                await memberships.touch_last_access(session, membership_id, when)
                await session.commit()
        except Exception as e:
            log.warning("Failed to update last access for membership %s: %s", membership_id, e)

    async def drain(self) -> None:
        """Wait for outstanding stamps (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class AuthorizationContextBuilder:
    """
    Resolve the authorization context for a request.

    Usage:
        builder = AuthorizationContextBuilder(db, stamper)
        result = await builder.build(user, TenantSignals.from_request(request))
        if isinstance(result, Denied):
            raise result.to_error()
    """

    def __init__(self, db: AsyncSession, stamper: Optional[AccessStamper] = None):
        self.db = db
        self.stamper = stamper

    async def find_organization(self, slug: str) -> Optional[Organization]:
        result = await self.db.execute(
            select(Organization).where(
                Organization.slug == slug,
                Organization.is_active == True,  # noqa: E712
                Organization.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def build(self, user: Optional[User], signals: TenantSignals) -> AuthorizationResult:
        if user is None:
            return Denied(DenialReason.AUTHENTICATION_REQUIRED, "Authentication required before tenant context")

        slug = resolve_tenant_slug(signals)
        if not slug:
            return Denied(
                DenialReason.TENANT_REQUIRED,
                "Provide organization via URL parameter, header, or subdomain",
            )

        organization = await self.find_organization(slug)
        if organization is None:
            log.info("Tenant %r not found or inactive (user %s)", slug, user.id)
            return Denied(
                DenialReason.ORGANIZATION_NOT_FOUND,
                f"Organization '{slug}' does not exist or is inactive",
            )

        if user.bypasses_membership():
            log.debug("System role bypass for user %s on organization %s", user.id, organization.id)
            return Authorized(AuthorizationContext.for_bypass(user, organization))

        membership = await memberships.find_active_membership(self.db, user.id, organization.id)
        if membership is None:
            log.info("User %s has no active membership in %s", user.id, organization.slug)
            return Denied(
                DenialReason.ACCESS_DENIED,
                f"User does not have access to organization '{slug}'",
            )

        if self.stamper is not None:
            self.stamper.schedule(membership.id)

        log.debug(
            "Tenant context established user=%s organization=%s role=%s",
            user.id, organization.slug, membership.role.value,
        )
        return Authorized(AuthorizationContext.for_membership(user, organization, membership))

    async def build_optional(self, user: Optional[User], signals: TenantSignals) -> Union[Authorized, Denied, None]:
        """
        Same resolution, but tenant failures degrade to None.

        A missing identity is still returned as Denied.
        """
        result = await self.build(user, signals)
        if isinstance(result, Denied):
            if result.reason == DenialReason.AUTHENTICATION_REQUIRED:
                return result
            return None
        return result
