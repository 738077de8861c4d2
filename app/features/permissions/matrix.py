"""
Role to permission matrix for organization memberships.

Each organization role maps to a fixed, fully populated table of
resource -> action -> bool grants. The tables are read-only; callers that
need a mutable map get a fresh copy from ``role_permissions``.

Custom grants on a membership are layered on top of these defaults and only
ever widen them (see ``merge_for_role_change``).
"""
import enum
from types import MappingProxyType
from typing import Any, Dict, Mapping

from app.core.errors import UnknownPermission


PermissionMap = Dict[str, Dict[str, bool]]


class OrganizationRole(str, enum.Enum):
    """Role of a user within one organization, most privileged first."""
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    VIEWER = "viewer"
    GUEST = "guest"

    @property
    def rank(self) -> int:
        """Privilege rank; higher is more privileged."""
        return len(_ROLE_ORDER) - _ROLE_ORDER.index(self)


_ROLE_ORDER = tuple(OrganizationRole)

DEFAULT_ROLE = OrganizationRole.EMPLOYEE
FALLBACK_ROLE = OrganizationRole.GUEST


RESOURCE_ACTIONS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "users": ("read", "write", "delete", "invite"),
    "organizations": ("read", "write", "delete", "settings"),
    "reports": ("read", "write", "export"),
    "billing": ("read", "write"),
    "api": ("read", "write"),
})


def _table(**grants: Dict[str, bool]) -> Mapping[str, Mapping[str, bool]]:
    table = {}
    for resource, actions in RESOURCE_ACTIONS.items():
        granted = grants.get(resource, {})
        table[resource] = MappingProxyType({action: bool(granted.get(action, False)) for action in actions})
    return MappingProxyType(table)


ROLE_PERMISSIONS: Mapping[OrganizationRole, Mapping[str, Mapping[str, bool]]] = MappingProxyType({
    OrganizationRole.OWNER: _table(
        users={"read": True, "write": True, "delete": True, "invite": True},
        organizations={"read": True, "write": True, "delete": True, "settings": True},
        reports={"read": True, "write": True, "export": True},
        billing={"read": True, "write": True},
        api={"read": True, "write": True},
    ),
    OrganizationRole.ADMIN: _table(
        users={"read": True, "write": True, "delete": True, "invite": True},
        organizations={"read": True, "write": True, "settings": True},
        reports={"read": True, "write": True, "export": True},
        billing={"read": True},
        api={"read": True, "write": True},
    ),
    OrganizationRole.MANAGER: _table(
        users={"read": True, "write": True, "invite": True},
        organizations={"read": True},
        reports={"read": True, "write": True, "export": True},
        api={"read": True},
    ),
    OrganizationRole.EMPLOYEE: _table(
        users={"read": True},
        organizations={"read": True},
        reports={"read": True},
    ),
    OrganizationRole.VIEWER: _table(
        users={"read": True},
        organizations={"read": True},
        reports={"read": True},
    ),
    OrganizationRole.GUEST: _table(
        organizations={"read": True},
    ),
})


def coerce_role(value: Any) -> OrganizationRole:
    """Map any input to a role; unknown or malformed values fall back to guest."""
    if isinstance(value, OrganizationRole):
        return value
    try:
        return OrganizationRole(str(value).strip().lower())
    except ValueError:
        return FALLBACK_ROLE


def role_permissions(role: Any) -> PermissionMap:
    """Return a fresh, fully populated copy of the default grants for a role."""
    table = ROLE_PERMISSIONS[coerce_role(role)]
    return {resource: dict(actions) for resource, actions in table.items()}


def empty_permissions() -> PermissionMap:
    return {resource: {action: False for action in actions} for resource, actions in RESOURCE_ACTIONS.items()}


def normalize_permissions(raw: Any) -> PermissionMap:
    """
    Coerce a stored or submitted permission map into the full closed shape.

    Missing cells become False, cells outside the closed set are dropped and
    anything that is not literally ``True`` counts as a denial.
    """
    permissions = empty_permissions()
    if not isinstance(raw, Mapping):
        return permissions
    for resource, actions in permissions.items():
        submitted = raw.get(resource)
        if not isinstance(submitted, Mapping):
            continue
        for action in actions:
            actions[action] = submitted.get(action) is True
    return permissions


def is_known_permission(resource: str, action: str) -> bool:
    return action in RESOURCE_ACTIONS.get(resource, ())


def has_permission(permissions: Any, resource: str, action: str) -> bool:
    """Absent resources or actions are a denial, never an error."""
    if not isinstance(permissions, Mapping):
        return False
    actions = permissions.get(resource)
    if not isinstance(actions, Mapping):
        return False
    return actions.get(action) is True


def with_permission(permissions: Any, resource: str, action: str, granted: bool) -> PermissionMap:
    """
    Return a new permission map with one cell set.

    Raises:
        UnknownPermission: if (resource, action) is outside the closed set
    """
    if not is_known_permission(resource, action):
        raise UnknownPermission(f"Unknown permission: {resource}.{action}", resource=resource, action=action)
    updated = normalize_permissions(permissions)
    updated[resource][action] = bool(granted)
    return updated


def custom_overrides(role: Any, permissions: Any) -> PermissionMap:
    """Return the sparse set of cells where ``permissions`` differs from the role defaults."""
    defaults = ROLE_PERMISSIONS[coerce_role(role)]
    effective = normalize_permissions(permissions)
    overrides: PermissionMap = {}
    for resource, actions in effective.items():
        for action, granted in actions.items():
            if defaults[resource][action] != granted:
                overrides.setdefault(resource, {})[action] = granted
    return overrides


def with_override(overrides: Any, resource: str, action: str, granted: bool) -> PermissionMap:
    """Return a new sparse override map recording one explicit grant or revoke."""
    if not is_known_permission(resource, action):
        raise UnknownPermission(f"Unknown permission: {resource}.{action}", resource=resource, action=action)
    updated: PermissionMap = {}
    if isinstance(overrides, Mapping):
        for res, actions in overrides.items():
            if isinstance(actions, Mapping):
                updated[res] = {act: value is True for act, value in actions.items() if is_known_permission(res, act)}
    updated.setdefault(resource, {})[action] = bool(granted)
    return {res: actions for res, actions in updated.items() if actions}


def merge_for_role_change(new_role: Any, overrides: Any) -> PermissionMap:
    """
    Recompute a membership's permissions after a role change.

    Starts from the new role's defaults and re-applies every ``True`` grant
    from the membership's custom overrides whose key exists in the defaults.
    Grants only widen: a cell the new role defaults to True stays True, and
    recorded revokes are not carried over.
    """
    merged = role_permissions(new_role)
    if not isinstance(overrides, Mapping):
        return merged
    for resource, actions in merged.items():
        previous = overrides.get(resource)
        if not isinstance(previous, Mapping):
            continue
        for action in actions:
            if previous.get(action) is True:
                actions[action] = True
    return merged


def widening_overrides(overrides: Any) -> PermissionMap:
    """Keep only the ``True`` cells of an override map."""
    kept: PermissionMap = {}
    if not isinstance(overrides, Mapping):
        return kept
    for resource, actions in overrides.items():
        if not isinstance(actions, Mapping):
            continue
        for action, granted in actions.items():
            if granted is True and is_known_permission(resource, action):
                kept.setdefault(resource, {})[action] = True
    return kept
