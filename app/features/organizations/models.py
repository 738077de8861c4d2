"""
Organization and membership models.

Organizations form a forest through an optional parent reference and are
addressed by a unique URL-safe slug. A Membership ties one user to one
organization with a role and a fully populated permission map.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Boolean, JSON, DateTime, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow
from app.features.permissions import matrix
from app.features.permissions.matrix import OrganizationRole


def default_settings() -> Dict[str, Any]:
    return {
        "features": {"user_management": True, "reporting": True, "api_access": False},
        "branding": {"primary_color": "#007bff", "logo": None},
        "limits": {"max_users": 100, "max_sub_orgs": 10},
        "notifications": {"email": True, "slack": False},
    }


class Organization(Base, TimestampMixin, SoftDeleteMixin):
    """
    Tenant unit.

    The parent chain must stay acyclic; every reassignment goes through
    OrganizationHierarchy.validate_new_parent before it is written.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Hierarchy: self-referential parent, null for roots
    parent_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Opaque to the authorization core
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=default_settings)
    contact_info: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership",
        back_populates="organization",
        lazy="noload",
        passive_deletes=True,
    )

    @property
    def is_available(self) -> bool:
        """Active and not soft-deleted."""
        return self.is_active and not self.is_deleted

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r}, parent_id={self.parent_id})>"


class Membership(Base, TimestampMixin):
    """
    One user's relationship to one organization.

    ``permissions`` is always the full resource/action grid. ``custom_permissions``
    is the sparse set of explicit grants and revokes layered over the role
    defaults; only its grants survive a role change.
    """
    __tablename__ = "organization_memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    role: Mapped[OrganizationRole] = mapped_column(
        SQLEnum(OrganizationRole, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        default=matrix.DEFAULT_ROLE,
        nullable=False,
        index=True,
    )
    permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=matrix.empty_permissions)
    custom_permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    invited_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    last_access_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(100), nullable=True)

    user: Mapped["User"] = relationship(  # type: ignore
        "User", foreign_keys=[user_id], back_populates="memberships", lazy="selectin"
    )
    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="memberships", lazy="selectin"
    )

    def has_permission(self, resource: str, action: str) -> bool:
        """Absent keys are a denial, never an error."""
        return matrix.has_permission(self.permissions, resource, action)

    def grant_permission(self, resource: str, action: str) -> Dict[str, Dict[str, bool]]:
        return self._set_permission(resource, action, True)

    def revoke_permission(self, resource: str, action: str) -> Dict[str, Dict[str, bool]]:
        return self._set_permission(resource, action, False)

    def _set_permission(self, resource: str, action: str, granted: bool) -> Dict[str, Dict[str, bool]]:
        # JSON columns only track reassignment, so always assign new dicts
        self.permissions = matrix.with_permission(self.permissions, resource, action, granted)
        self.custom_permissions = matrix.with_override(self.custom_permissions, resource, action, granted)
        return self.permissions

    def apply_role_change(self, new_role: OrganizationRole) -> None:
        """Switch role and recompute permissions from the new defaults plus custom grants."""
        if new_role == self.role:
            return
        self.role = new_role
        self.custom_permissions = matrix.widening_overrides(self.custom_permissions)
        self.permissions = matrix.merge_for_role_change(new_role, self.custom_permissions)

    def is_owner_or_admin(self) -> bool:
        return self.role in (OrganizationRole.OWNER, OrganizationRole.ADMIN)

    def can_manage_users(self) -> bool:
        return self.role in (OrganizationRole.OWNER, OrganizationRole.ADMIN, OrganizationRole.MANAGER) or \
            self.has_permission("users", "write")

    def can_manage_organization(self) -> bool:
        return self.is_owner_or_admin() or self.has_permission("organizations", "write")

    def __repr__(self) -> str:
        return f"<Membership(id={self.id}, user_id={self.user_id}, org_id={self.organization_id}, role={self.role})>"
