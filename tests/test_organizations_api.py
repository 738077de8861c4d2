from app.features.permissions.matrix import OrganizationRole
from app.features.users.models import SystemRole


def auth(token: str, **headers: str) -> dict:
    return {"Authorization": f"Bearer {token}", **headers}


async def create_org(client, token, **payload):
    response = await client.post("/organizations/", json=payload, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_organization_makes_creator_owner(client):
    org = await create_org(client, "alice", name="Acme Corp!!")
    assert org["slug"] == "acme-corp"
    assert org["settings"]["limits"]["max_users"] == 100

    response = await client.get("/organizations/acme-corp/members", headers=auth("alice"))
    assert response.status_code == 200
    members = response.json()
    assert len(members) == 1
    assert members[0]["role"] == "owner"
    assert members[0]["user"]["email"] == "alice@acme.io"


async def test_duplicate_names_get_numbered_slugs(client):
    await create_org(client, "alice", name="Acme Corp")
    second = await create_org(client, "alice", name="Acme Corp")
    assert second["slug"] == "acme-corp-1"


async def test_create_requires_authentication(client, identity_provider):
    response = await client.post("/organizations/", json={"name": "Acme"})
    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_REQUIRED"

    identity_provider.rejected.add("forged")
    response = await client.post("/organizations/", json={"name": "Acme"}, headers=auth("forged"))
    assert response.status_code == 401


async def test_disabled_identity_is_rejected(client, identity_provider):
    identity_provider.disabled.add("alice")
    response = await client.get("/organizations/my", headers=auth("alice"))
    assert response.status_code == 401


async def test_tenant_denials(client, make_user):
    await create_org(client, "alice", name="Acme")
    await make_user("bob")

    response = await client.get("/organizations/acme", headers=auth("bob"))
    assert response.status_code == 403
    assert response.json()["code"] == "ORGANIZATION_ACCESS_DENIED"

    response = await client.get("/organizations/missing", headers=auth("alice"))
    assert response.status_code == 404
    assert response.json()["code"] == "ORGANIZATION_NOT_FOUND"


async def test_super_admin_reads_without_membership(client, make_user, stamper):
    await create_org(client, "alice", name="Acme")
    await make_user("root", system_role=SystemRole.SUPER_ADMIN)
    stamper.scheduled.clear()

    response = await client.get("/organizations/acme", headers=auth("root"))
    assert response.status_code == 200
    assert response.json()["slug"] == "acme"
    assert stamper.scheduled == []


async def test_member_access_is_stamped(client, stamper):
    await create_org(client, "alice", name="Acme")
    response = await client.get("/organizations/acme", headers=auth("alice"))
    assert response.status_code == 200
    assert len(stamper.scheduled) == 1


async def test_member_management_flow(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")

    response = await client.post(
        "/organizations/acme/members", json={"user_id": bob.id, "role": "viewer"}, headers=auth("alice")
    )
    assert response.status_code == 201, response.text
    assert response.json()["permissions"]["reports"]["write"] is False

    response = await client.patch("/organizations/acme", json={"name": "Renamed"}, headers=auth("bob"))
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ORG_PERMISSIONS"

    response = await client.patch(
        f"/organizations/acme/members/{bob.id}", json={"role": "manager"}, headers=auth("alice")
    )
    assert response.status_code == 200
    assert response.json()["permissions"]["reports"]["write"] is True

    response = await client.put(
        f"/organizations/acme/members/{bob.id}/permissions/reports/export", headers=auth("alice")
    )
    assert response.status_code == 200

    response = await client.patch(
        f"/organizations/acme/members/{bob.id}", json={"role": "viewer"}, headers=auth("alice")
    )
    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "viewer"
    assert body["permissions"]["reports"]["export"] is True
    assert body["permissions"]["reports"]["write"] is False


async def test_duplicate_membership_conflicts(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    payload = {"user_id": bob.id}

    assert (await client.post("/organizations/acme/members", json=payload, headers=auth("alice"))).status_code == 201
    response = await client.post("/organizations/acme/members", json=payload, headers=auth("alice"))
    assert response.status_code == 409
    assert response.json()["code"] == "MEMBERSHIP_EXISTS"


async def test_unknown_permission_cell(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    await client.post("/organizations/acme/members", json={"user_id": bob.id}, headers=auth("alice"))

    response = await client.put(
        f"/organizations/acme/members/{bob.id}/permissions/warehouse/read", headers=auth("alice")
    )
    assert response.status_code == 400
    assert response.json()["code"] == "UNKNOWN_PERMISSION"


async def test_admin_cannot_grant_owner(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    carol = await make_user("carol")
    await client.post("/organizations/acme/members", json={"user_id": bob.id, "role": "admin"}, headers=auth("alice"))

    response = await client.post(
        "/organizations/acme/members", json={"user_id": carol.id, "role": "owner"}, headers=auth("bob")
    )
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ORG_ROLE"


async def test_last_owner_cannot_leave(client):
    org = await create_org(client, "alice", name="Acme")
    me = (await client.get("/users/me", headers=auth("alice"))).json()["user"]

    response = await client.delete(f"/organizations/acme/members/{me['id']}", headers=auth("alice"))
    assert response.status_code == 409
    assert response.json()["code"] == "LAST_OWNER_VIOLATION"
    assert response.json()["details"]["organization_id"] == org["id"]

    response = await client.patch(
        f"/organizations/acme/members/{me['id']}", json={"role": "admin"}, headers=auth("alice")
    )
    assert response.status_code == 409


async def test_second_owner_allows_leaving(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    await client.post("/organizations/acme/members", json={"user_id": bob.id, "role": "owner"}, headers=auth("alice"))

    response = await client.delete(f"/organizations/acme/members/{bob.id}", headers=auth("bob"))
    assert response.status_code == 204

    response = await client.get("/organizations/acme", headers=auth("bob"))
    assert response.status_code == 403


async def test_employee_may_leave_but_not_remove_others(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    carol = await make_user("carol")
    for user in (bob, carol):
        await client.post("/organizations/acme/members", json={"user_id": user.id}, headers=auth("alice"))

    response = await client.delete(f"/organizations/acme/members/{carol.id}", headers=auth("bob"))
    assert response.status_code == 403

    response = await client.delete(f"/organizations/acme/members/{bob.id}", headers=auth("bob"))
    assert response.status_code == 204


async def test_only_owner_deletes_and_deletion_cascades(client, make_user):
    parent = await create_org(client, "alice", name="Parent")
    child = await create_org(client, "alice", name="Child", parent_id=parent["id"])
    bob = await make_user("bob")
    await client.post("/organizations/parent/members", json={"user_id": bob.id, "role": "admin"}, headers=auth("alice"))

    response = await client.delete("/organizations/parent", headers=auth("bob"))
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ORG_ROLE"

    response = await client.delete("/organizations/parent", headers=auth("alice"))
    assert response.status_code == 200
    assert set(response.json()["deleted_ids"]) == {parent["id"], child["id"]}

    for slug in ("parent", "child"):
        response = await client.get(f"/organizations/{slug}", headers=auth("alice"))
        assert response.status_code == 404


async def test_only_owner_deactivates_and_super_admin_reactivates(client, make_user):
    await create_org(client, "alice", name="Acme")
    bob = await make_user("bob")
    await make_user("root", SystemRole.SUPER_ADMIN)
    await client.post("/organizations/acme/members", json={"user_id": bob.id, "role": "admin"}, headers=auth("alice"))

    response = await client.patch("/organizations/acme", json={"is_active": False}, headers=auth("bob"))
    assert response.status_code == 200
    assert response.json()["is_active"] is True

    response = await client.put("/organizations/acme/deactivate", headers=auth("bob"))
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_ORG_ROLE"

    response = await client.put("/organizations/acme/deactivate", headers=auth("alice"))
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.get("/organizations/acme", headers=auth("alice"))
    assert response.status_code == 404

    response = await client.put("/organizations/acme/activate", headers=auth("alice"))
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_SYSTEM_ROLE"

    response = await client.put("/organizations/acme/activate", headers=auth("root"))
    assert response.status_code == 200
    assert response.json()["is_active"] is True

    response = await client.get("/organizations/acme", headers=auth("alice"))
    assert response.status_code == 200


async def test_deleted_organization_cannot_be_reactivated(client, make_user):
    await create_org(client, "alice", name="Acme")
    await make_user("root", SystemRole.SUPER_ADMIN)
    await client.delete("/organizations/acme", headers=auth("alice"))

    response = await client.put("/organizations/acme/activate", headers=auth("root"))
    assert response.status_code == 404
    assert response.json()["code"] == "ORGANIZATION_NOT_FOUND"


async def test_hierarchy_endpoints(client):
    root = await create_org(client, "alice", name="Root")
    child = await create_org(client, "alice", name="Child", parent_id=root["id"])
    await create_org(client, "alice", name="Leaf", parent_id=child["id"])

    response = await client.get("/organizations/leaf/hierarchy", headers=auth("alice"))
    assert [entry["slug"] for entry in response.json()] == ["root", "child", "leaf"]

    response = await client.get("/organizations/root/children", headers=auth("alice"))
    assert [org["slug"] for org in response.json()] == ["child"]

    response = await client.get("/organizations/root/descendants", headers=auth("alice"))
    assert {org["slug"] for org in response.json()} == {"child", "leaf"}

    response = await client.get("/organizations/roots", headers=auth("alice"))
    assert [org["slug"] for org in response.json()] == ["root"]


async def test_parent_reassignment_rejects_cycles(client):
    root = await create_org(client, "alice", name="Root")
    child = await create_org(client, "alice", name="Child", parent_id=root["id"])

    response = await client.put("/organizations/root/parent", json={"parent_id": child["id"]}, headers=auth("alice"))
    assert response.status_code == 409
    assert response.json()["code"] == "HIERARCHY_CYCLE"

    response = await client.put("/organizations/root/parent", json={"parent_id": root["id"]}, headers=auth("alice"))
    assert response.status_code == 409

    response = await client.put("/organizations/child/parent", json={"parent_id": None}, headers=auth("alice"))
    assert response.status_code == 200
    assert response.json()["parent_id"] is None


async def test_sub_organization_needs_parent_admin(client, make_user):
    parent = await create_org(client, "alice", name="Parent")
    await make_user("bob")

    response = await client.post(
        "/organizations/", json={"name": "Rogue", "parent_id": parent["id"]}, headers=auth("bob")
    )
    assert response.status_code == 403


async def test_settings_merge(client, make_user):
    await create_org(client, "alice", name="Acme")
    response = await client.patch(
        "/organizations/acme/settings",
        json={"settings": {"branding": {"primary_color": "#000000"}, "custom": 1}},
        headers=auth("alice"),
    )
    assert response.status_code == 200
    settings = response.json()["settings"]
    assert settings["branding"] == {"primary_color": "#000000"}
    assert settings["custom"] == 1
    assert settings["limits"]["max_sub_orgs"] == 10

    viewer = await make_user("bob")
    await client.post("/organizations/acme/members", json={"user_id": viewer.id, "role": "viewer"}, headers=auth("alice"))
    response = await client.patch("/organizations/acme/settings", json={"settings": {}}, headers=auth("bob"))
    assert response.status_code == 403


async def test_my_organizations_and_admins(client, make_user):
    await create_org(client, "alice", name="Beta")
    await create_org(client, "alice", name="Alpha")
    bob = await make_user("bob")
    await client.post("/organizations/alpha/members", json={"user_id": bob.id, "role": "manager"}, headers=auth("alice"))

    response = await client.get("/organizations/my", headers=auth("alice"))
    assert [org["slug"] for org in response.json()] == ["alpha", "beta"]

    response = await client.get("/organizations/alpha/admins", headers=auth("bob"))
    assert [m["role"] for m in response.json()] == [OrganizationRole.OWNER.value]
