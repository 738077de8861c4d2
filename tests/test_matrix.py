import pytest

from app.core.errors import UnknownPermission
from app.features.organizations.memberships import build_membership
from app.features.permissions import matrix
from app.features.permissions.matrix import OrganizationRole, RESOURCE_ACTIONS, ROLE_PERMISSIONS


@pytest.mark.parametrize("role", list(OrganizationRole))
def test_every_role_table_is_fully_populated(role):
    table = matrix.role_permissions(role)
    assert set(table) == set(RESOURCE_ACTIONS)
    for resource, actions in RESOURCE_ACTIONS.items():
        assert set(table[resource]) == set(actions)
        assert all(isinstance(value, bool) for value in table[resource].values())


def test_role_tables_are_read_only():
    with pytest.raises(TypeError):
        ROLE_PERMISSIONS[OrganizationRole.GUEST]["users"]["read"] = True  # type: ignore[index]


def test_role_permissions_returns_independent_copies():
    first = matrix.role_permissions("viewer")
    first["billing"]["write"] = True
    assert matrix.role_permissions("viewer")["billing"]["write"] is False


def test_role_ranks_descend_from_owner():
    ranks = [role.rank for role in OrganizationRole]
    assert ranks == sorted(ranks, reverse=True)
    assert OrganizationRole.OWNER.rank > OrganizationRole.GUEST.rank


@pytest.mark.parametrize("value", ["superuser", "", None, 42])
def test_unknown_role_falls_back_to_guest(value):
    assert matrix.coerce_role(value) == OrganizationRole.GUEST
    assert matrix.role_permissions(value) == matrix.role_permissions(OrganizationRole.GUEST)


def test_coerce_role_accepts_loose_strings():
    assert matrix.coerce_role(" Admin ") == OrganizationRole.ADMIN


def test_owner_has_everything_guest_only_reads_organizations():
    owner = matrix.role_permissions("owner")
    assert all(all(actions.values()) for actions in owner.values())

    guest = matrix.role_permissions("guest")
    granted = {(r, a) for r, actions in guest.items() for a, v in actions.items() if v}
    assert granted == {("organizations", "read")}


def test_only_owner_may_delete_organizations():
    allowed = [role for role in OrganizationRole if ROLE_PERMISSIONS[role]["organizations"]["delete"]]
    assert allowed == [OrganizationRole.OWNER]


def test_absent_keys_are_denials():
    permissions = {"reports": {"read": True}}
    assert matrix.has_permission(permissions, "reports", "read") is True
    assert matrix.has_permission(permissions, "reports", "export") is False
    assert matrix.has_permission(permissions, "warehouse", "read") is False
    assert matrix.has_permission(None, "reports", "read") is False


def test_normalize_fills_missing_and_drops_unknown():
    normalized = matrix.normalize_permissions({"users": {"read": True, "fly": True}, "extra": {"x": True}})
    assert normalized["users"] == {"read": True, "write": False, "delete": False, "invite": False}
    assert "extra" not in normalized
    assert "fly" not in normalized["users"]


def test_normalize_treats_truthy_non_bools_as_denial():
    normalized = matrix.normalize_permissions({"users": {"read": "yes"}})
    assert normalized["users"]["read"] is False


def test_with_permission_rejects_unknown_cells():
    with pytest.raises(UnknownPermission):
        matrix.with_permission(matrix.empty_permissions(), "warehouse", "read", True)


def test_role_change_keeps_custom_grants_and_drops_old_defaults():
    membership = build_membership("user-1", "org-1", role=OrganizationRole.VIEWER)

    membership.apply_role_change(OrganizationRole.MANAGER)
    assert membership.has_permission("reports", "write") is True

    membership.grant_permission("reports", "export")
    membership.apply_role_change(OrganizationRole.VIEWER)

    assert membership.has_permission("reports", "export") is True
    assert membership.has_permission("reports", "write") is False


def test_role_change_does_not_carry_revokes():
    membership = build_membership("user-1", "org-1", role=OrganizationRole.ADMIN)
    membership.revoke_permission("users", "delete")
    assert membership.has_permission("users", "delete") is False

    membership.apply_role_change(OrganizationRole.OWNER)
    assert membership.has_permission("users", "delete") is True
    assert membership.custom_permissions == {}


def test_build_membership_defaults_to_employee():
    membership = build_membership("user-1", "org-1")
    assert membership.role == OrganizationRole.EMPLOYEE
    assert membership.permissions == matrix.role_permissions("employee")
    assert membership.custom_permissions == {}


def test_build_membership_records_explicit_permissions_as_overrides():
    permissions = matrix.role_permissions("viewer")
    permissions["billing"]["read"] = True
    membership = build_membership("user-1", "org-1", role="viewer", permissions=permissions)
    assert membership.has_permission("billing", "read") is True
    assert membership.custom_permissions == {"billing": {"read": True}}
