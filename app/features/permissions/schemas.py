"""
Pydantic schemas for permission matrix and permission checks.
"""
from typing import Dict
from pydantic import BaseModel, Field

from app.features.permissions.matrix import OrganizationRole


class RolePermissionsResponse(BaseModel):
    """Default permission table for one organization role."""
    role: OrganizationRole
    rank: int
    permissions: Dict[str, Dict[str, bool]]


class TenantContextResponse(BaseModel):
    """Effective authorization context of the caller for the requested tenant."""
    organization_id: str | None = None
    organization_slug: str | None = None
    role: OrganizationRole | None = None
    bypass: bool = False
    permissions: Dict[str, Dict[str, bool]] = Field(default_factory=dict)


class PermissionCheckRequest(BaseModel):
    """Schema for checking a permission in an organization."""
    organization_slug: str = Field(..., min_length=1, max_length=50)
    resource: str = Field(..., min_length=1, max_length=50)
    action: str = Field(..., min_length=1, max_length=50)


class PermissionCheckResponse(BaseModel):
    has_permission: bool
    organization_slug: str
    resource: str
    action: str
