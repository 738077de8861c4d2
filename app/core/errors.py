"""
Application error taxonomy.

Every authorization failure maps to one of these exceptions. Each carries a
machine-readable ``code`` and an HTTP status so the exception handler in
``app.main`` can render a consistent response. None of them are fatal to the
process.
"""
import enum
from typing import Any, Dict, Optional


class DenialReason(str, enum.Enum):
    """Machine-readable reason codes for denied requests."""
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    TENANT_REQUIRED = "TENANT_REQUIRED"
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    ACCESS_DENIED = "ORGANIZATION_ACCESS_DENIED"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ORG_ROLE"
    INSUFFICIENT_PERMISSION = "INSUFFICIENT_ORG_PERMISSIONS"
    INSUFFICIENT_SYSTEM_ROLE = "INSUFFICIENT_SYSTEM_ROLE"
    LAST_OWNER_VIOLATION = "LAST_OWNER_VIOLATION"


class AppError(Exception):
    """
    Base class for all application errors.

    Attributes:
        status_code: HTTP status used at the boundary
        code: Machine-readable reason code
        message: Human-readable message
        details: Extra context included in the response body
    """
    status_code: int = 400
    code: str = "APP_ERROR"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details or None,
        }


class AuthenticationRequired(AppError):
    status_code = 401
    code = DenialReason.AUTHENTICATION_REQUIRED.value
    default_message = "Authentication required"


class TenantRequired(AppError):
    status_code = 400
    code = DenialReason.TENANT_REQUIRED.value
    default_message = "Organization context required"


class OrganizationNotFound(AppError):
    status_code = 404
    code = DenialReason.ORGANIZATION_NOT_FOUND.value
    default_message = "Organization not found or inactive"


class AccessDenied(AppError):
    status_code = 403
    code = DenialReason.ACCESS_DENIED.value
    default_message = "Access denied to this organization"


class InsufficientRole(AppError):
    status_code = 403
    code = DenialReason.INSUFFICIENT_ROLE.value
    default_message = "Insufficient organization role"


class InsufficientPermission(AppError):
    status_code = 403
    code = DenialReason.INSUFFICIENT_PERMISSION.value
    default_message = "Insufficient organization permissions"


class InsufficientSystemRole(AppError):
    status_code = 403
    code = DenialReason.INSUFFICIENT_SYSTEM_ROLE.value
    default_message = "Insufficient system privileges"


class LastOwnerViolation(AppError):
    status_code = 409
    code = DenialReason.LAST_OWNER_VIOLATION.value
    default_message = "Cannot remove the last owner of an organization"


class HierarchyCorruption(AppError):
    """Raised when a hierarchy walk exceeds its depth bound or revisits a node."""
    status_code = 409
    code = "HIERARCHY_CORRUPTION"
    default_message = "Organization hierarchy is corrupted"


class HierarchyCycle(AppError):
    status_code = 409
    code = "HIERARCHY_CYCLE"
    default_message = "Parent assignment would create a cycle"


class SlugUnavailable(AppError):
    status_code = 409
    code = "SLUG_UNAVAILABLE"
    default_message = "Could not allocate a unique organization slug"


class UnknownPermission(AppError):
    status_code = 400
    code = "UNKNOWN_PERMISSION"
    default_message = "Unknown permission"


class MembershipNotFound(AppError):
    status_code = 404
    code = "MEMBERSHIP_NOT_FOUND"
    default_message = "User is not a member of this organization"


class MembershipExists(AppError):
    status_code = 409
    code = "MEMBERSHIP_EXISTS"
    default_message = "User is already a member of this organization"


class UserNotFound(AppError):
    status_code = 404
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class IdentityProviderError(AppError):
    """The identity provider rejected or failed an account change."""
    status_code = 502
    code = "IDENTITY_PROVIDER_ERROR"
    default_message = "Identity provider request failed"


DENIAL_ERRORS: Dict[DenialReason, type[AppError]] = {
    DenialReason.AUTHENTICATION_REQUIRED: AuthenticationRequired,
    DenialReason.TENANT_REQUIRED: TenantRequired,
    DenialReason.ORGANIZATION_NOT_FOUND: OrganizationNotFound,
    DenialReason.ACCESS_DENIED: AccessDenied,
    DenialReason.INSUFFICIENT_ROLE: InsufficientRole,
    DenialReason.INSUFFICIENT_PERMISSION: InsufficientPermission,
    DenialReason.INSUFFICIENT_SYSTEM_ROLE: InsufficientSystemRole,
    DenialReason.LAST_OWNER_VIOLATION: LastOwnerViolation,
}
