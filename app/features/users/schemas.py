"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.users.models import SystemRole


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    firebase_uid: str
    email: EmailStr | None = None
    display_name: str | None = None
    email_verified: bool
    system_role: SystemRole
    is_active: bool
    last_login_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    display_name: str | None = None
    email: EmailStr | None = None

    model_config = {"from_attributes": True}


class UserProfile(BaseModel):
    """Current user's profile with their active organizations."""
    user: UserResponse
    organizations: list["UserOrganizationEntry"] = Field(default_factory=list)


class SystemRoleUpdate(BaseModel):
    """Schema for changing a user's system role (super admin only)."""
    system_role: SystemRole


class UserOrganizationEntry(BaseModel):
    """One organization membership in a user's organization list."""
    organization_id: str
    organization_name: str
    organization_slug: str
    parent_id: str | None = None
    role: str
    permissions: dict[str, dict[str, bool]]
    is_active: bool
    joined_at: datetime
    last_access_at: datetime | None = None


class UserOrganizationsPage(BaseModel):
    items: list[UserOrganizationEntry]
    total: int
    page: int
    limit: int
    pages: int



class UsersPage(BaseModel):
    """One page of the admin user listing."""
    items: list[UserResponse]
    total: int
    page: int
    limit: int
    pages: int
    has_next: bool
    has_prev: bool


class UserStats(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int
    system_admins: int
    recent_users: int
    deleted_users: int
    total_with_deleted: int
    inactive_percentage: int
    deleted_percentage: int


class UserSummary(BaseModel):
    """Compact user row for dashboard lists."""
    id: str
    firebase_uid: str
    display_name: str | None = None
    system_role: SystemRole
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class OverviewCounts(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int
    recent_signups: int


class UsersOverview(BaseModel):
    overview: OverviewCounts
    role_distribution: dict[str, int]
    status_distribution: dict[str, int]
    recent_users: list[UserSummary]
    active_users: list[UserSummary]


UserProfile.model_rebuild()
