"""
User model linked to a Firebase identity.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Boolean, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid


class SystemRole(str, enum.Enum):
    """Platform-wide privilege tier, independent of any organization."""
    SUPER_ADMIN = "super_admin"
    SYSTEM_ADMIN = "system_admin"
    USER = "user"


# Roles that bypass organization membership entirely
BYPASS_SYSTEM_ROLES = frozenset({SystemRole.SUPER_ADMIN})


class User(Base, TimestampMixin, SoftDeleteMixin):
    """
    Application user.

    Credentials live in Firebase; this row holds the local account state and
    the system role. The firebase_uid is the stable subject identifier.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Firebase user ID (subject of verified ID tokens)
    firebase_uid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    system_role: Mapped[SystemRole] = mapped_column(
        SQLEnum(SystemRole, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        default=SystemRole.USER,
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    memberships: Mapped[list["Membership"]] = relationship(  # type: ignore
        "Membership",
        back_populates="user",
        foreign_keys="Membership.user_id",
        lazy="noload",
        passive_deletes=True,
    )

    def is_super_admin(self) -> bool:
        return self.system_role == SystemRole.SUPER_ADMIN

    def is_system_admin(self) -> bool:
        """Super admins count as system admins."""
        return self.system_role in (SystemRole.SUPER_ADMIN, SystemRole.SYSTEM_ADMIN)

    def bypasses_membership(self) -> bool:
        return self.system_role in BYPASS_SYSTEM_ROLES

    @property
    def can_sign_in(self) -> bool:
        return self.is_active and not self.is_deleted

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, system_role={self.system_role})>"
