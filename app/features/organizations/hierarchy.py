"""
Organization hierarchy resolution.

Walks parent/child references with an explicit depth bound. A walk that
exceeds the bound, or revisits an organization, means the stored parent
chain is malformed and raises HierarchyCorruption instead of looping.
"""
from collections import deque
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import HierarchyCorruption, HierarchyCycle, OrganizationNotFound
from app.features.organizations.models import Organization
from app.utils import get_logger


log = get_logger(__name__)


class OrganizationHierarchy:
    """
    Parent/child traversal over the organizations table.

    Lookups are issued one at a time: each step depends on the previous one.

    Usage:
        hierarchy = OrganizationHierarchy(db)
        chain = await hierarchy.ancestor_chain(org)   # [root, ..., org]
        await hierarchy.validate_new_parent(parent_id, org.id)
    """

    def __init__(self, db: AsyncSession, max_depth: Optional[int] = None):
        self.db = db
        self.max_depth = max_depth if max_depth is not None else config.ORG_HIERARCHY_MAX_DEPTH

    async def get(self, organization_id: str, for_update: bool = False) -> Optional[Organization]:
        stmt = select(Organization).where(Organization.id == organization_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def corruption_error(self, organization_id: str, reason: str) -> HierarchyCorruption:
        log.error("Hierarchy corruption at organization %s: %s", organization_id, reason)
        return HierarchyCorruption(
            f"Organization hierarchy is corrupted: {reason}",
            organization_id=organization_id,
            max_depth=self.max_depth,
        )

    async def ancestor_chain(self, organization: Organization) -> list[Organization]:
        """
        Return the chain from the root down to ``organization`` (inclusive).

        A dangling parent reference ends the chain at the last organization found.

        Raises:
            HierarchyCorruption: if the chain is longer than max_depth or loops
        """
        chain = [organization]
        seen = {organization.id}
        current = organization
        while current.parent_id is not None:
            if len(chain) > self.max_depth:
                raise self.corruption_error(organization.id, "ancestor chain exceeds maximum depth")
            if current.parent_id in seen:
                raise self.corruption_error(organization.id, f"parent cycle through {current.parent_id}")
            parent = await self.get(current.parent_id)
            if parent is None:
                log.warning("Organization %s references missing parent %s", current.id, current.parent_id)
                break
            chain.append(parent)
            seen.add(parent.id)
            current = parent
        chain.reverse()
        return chain

    async def children(self, organization_id: str, include_inactive: bool = False) -> list[Organization]:
        stmt = select(Organization).where(
            Organization.parent_id == organization_id,
            Organization.deleted_at.is_(None),
        )
        if not include_inactive:
            stmt = stmt.where(Organization.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt.order_by(Organization.name))
        return list(result.scalars().all())

    async def descendants(self, organization: Organization, include_inactive: bool = False) -> list[Organization]:
        """
        Breadth-first list of every organization below ``organization``.

        An organization with no children yields an empty list.

        Raises:
            HierarchyCorruption: if the tree is deeper than max_depth or loops
        """
        found: list[Organization] = []
        seen = {organization.id}
        queue = deque([(organization.id, 0)])
        while queue:
            parent_id, depth = queue.popleft()
            for child in await self.children(parent_id, include_inactive=include_inactive):
                if child.id in seen:
                    raise self.corruption_error(organization.id, f"descendant cycle through {child.id}")
                if depth + 1 > self.max_depth:
                    raise self.corruption_error(organization.id, "descendant tree exceeds maximum depth")
                seen.add(child.id)
                found.append(child)
                queue.append((child.id, depth + 1))
        return found

    async def is_descendant_of(self, organization: Organization, candidate_ancestor_id: str) -> bool:
        """True if ``candidate_ancestor_id`` is a strict ancestor of ``organization``."""
        chain = await self.ancestor_chain(organization)
        return any(ancestor.id == candidate_ancestor_id for ancestor in chain[:-1])

    async def validate_new_parent(self, parent_id: str, child_id: str) -> Organization:
        """
        Check that ``parent_id`` may become the parent of ``child_id``.

        Must run on every reassignment. The parent row is locked for the rest
        of the transaction.

        Returns:
            The parent organization

        Raises:
            HierarchyCycle: self-parenting, or the parent is below the child
            OrganizationNotFound: the parent does not exist or is deleted
        """
        if not parent_id or not child_id:
            raise HierarchyCycle("Both parent and child organizations are required")
        if parent_id == child_id:
            raise HierarchyCycle("An organization cannot be its own parent", organization_id=child_id)

        parent = await self.get(parent_id, for_update=True)
        if parent is None or parent.is_deleted:
            raise OrganizationNotFound("Parent organization not found", parent_id=parent_id)

        if await self.is_descendant_of(parent, child_id):
            log.info("Rejected parent %s for %s: would create a cycle", parent_id, child_id)
            raise HierarchyCycle(
                "Parent organization is a descendant of this organization",
                parent_id=parent_id,
                organization_id=child_id,
            )
        return parent

    async def breadcrumbs(self, organization: Organization) -> list[dict]:
        return [
            {"id": org.id, "name": org.name, "slug": org.slug}
            for org in await self.ancestor_chain(organization)
        ]
