"""
Pydantic schemas for organization and membership requests and responses.
"""
from datetime import datetime
from typing import Any, Dict
from pydantic import BaseModel, Field

from app.features.permissions.matrix import OrganizationRole


SLUG_PATTERN = "^[a-z0-9-]+$"


# Organization Schemas
class OrganizationCreate(BaseModel):
    """Schema for creating a new organization. The creator becomes its owner."""
    name: str = Field(..., min_length=2, max_length=255)
    slug: str | None = Field(None, min_length=2, max_length=50, pattern=SLUG_PATTERN,
                             description="Derived from the name when omitted")
    description: str | None = Field(None, max_length=2000)
    parent_id: str | None = Field(None, description="Parent organization ID for sub-organizations")
    contact_info: Dict[str, Any] = Field(default_factory=dict)


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=2, max_length=255)
    description: str | None = Field(None, max_length=2000)
    contact_info: Dict[str, Any] | None = None


class SettingsUpdate(BaseModel):
    """Top-level settings keys to replace; other keys are kept."""
    settings: Dict[str, Any]


class ParentUpdate(BaseModel):
    parent_id: str | None = Field(None, description="New parent organization ID, or null to make a root")


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""
    id: str
    name: str
    slug: str
    description: str | None = None
    parent_id: str | None = None
    settings: Dict[str, Any]
    contact_info: Dict[str, Any]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrganizationPublic(BaseModel):
    """Public organization information (limited fields)."""
    id: str
    name: str
    slug: str
    parent_id: str | None = None

    model_config = {"from_attributes": True}


class HierarchyEntry(BaseModel):
    id: str
    name: str
    slug: str


# Membership Schemas
class MemberCreate(BaseModel):
    """Schema for adding a user to an organization."""
    user_id: str = Field(..., description="ID of the user to add")
    role: OrganizationRole = Field(default=OrganizationRole.EMPLOYEE)
    permissions: Dict[str, Dict[str, bool]] | None = Field(
        None, description="Explicit permission map; role defaults apply when omitted"
    )


class MemberUpdate(BaseModel):
    """Schema for updating a membership."""
    role: OrganizationRole | None = None
    is_active: bool | None = None
    department: str | None = Field(None, max_length=100)
    job_title: str | None = Field(None, max_length=100)


class MembershipResponse(BaseModel):
    """Schema for membership responses."""
    id: str
    user_id: str
    organization_id: str
    role: OrganizationRole
    permissions: Dict[str, Dict[str, bool]]
    custom_permissions: Dict[str, Dict[str, bool]]
    is_active: bool
    invited_by_id: str | None = None
    invited_at: datetime | None = None
    joined_at: datetime
    last_access_at: datetime | None = None
    department: str | None = None
    job_title: str | None = None

    model_config = {"from_attributes": True}


class MemberResponse(MembershipResponse):
    """Membership with public user information."""
    user: "UserPublic"


# Import at the end to avoid circular dependency issues
from app.features.users.schemas import UserPublic  # noqa: E402
MemberResponse.model_rebuild()
