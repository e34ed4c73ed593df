from localspotlight.models import AuditLog, Org, OrgMember, User
from localspotlight.tests.factories import add_org, add_user, auth_headers


def test_create_org_makes_caller_owner(client, db):
    """Creating an org also mirrors the hosted auth user into `users`."""
    user_id = "0a8c5c3e-6a0e-4f55-9f1e-4a4b5f0b9c11"
    res = client.post("/orgs", data={"name": "  Harbor Coffee  "}, headers=auth_headers(user_id))

    assert res.status_code == 303
    org = db.query(Org).one()
    assert org.name == "Harbor Coffee"
    assert org.plan == "free"
    assert res.headers["location"] == f"/orgs/{org.id}?status=org_created"

    member = db.query(OrgMember).one()
    assert (member.org_id, member.user_id, member.role) == (org.id, user_id, "owner")
    assert db.get(User, user_id).email == "owner@example.com"
    assert db.query(AuditLog).filter(AuditLog.action == "org.create").count() == 1


def test_create_org_rejects_short_name(client, db):
    res = client.post("/orgs", data={"name": " x "}, headers=auth_headers("user-1"))
    assert res.headers["location"] == "/orgs?status=invalid_name"
    assert db.query(Org).count() == 0


def test_org_detail_hidden_from_non_members(client, db):
    owner = add_user(db)
    stranger = add_user(db, "stranger@example.com")
    org = add_org(db, owner)

    res = client.get(f"/orgs/{org.id}", headers=auth_headers(stranger.id))
    assert res.status_code == 303
    assert res.headers["location"].startswith("/orgs")

    res = client.get(f"/orgs/{org.id}", headers=auth_headers(owner.id))
    assert res.status_code == 200
    assert "Corner Bakery" in res.text


def test_rename_requires_owner(client, db):
    user = add_user(db)
    org = add_org(db, user, role="editor")

    res = client.post("/settings/org", data={"orgId": org.id, "name": "New Name"}, headers=auth_headers(user.id))
    assert "status=not_owner" in res.headers["location"]
    db.refresh(org)
    assert org.name == "Corner Bakery"


def test_rename_by_owner(client, db):
    user = add_user(db)
    org = add_org(db, user)

    res = client.post("/settings/org", data={"orgId": org.id, "name": "Corner Bakery & Cafe"},
                      headers=auth_headers(user.id))
    assert "status=org_updated" in res.headers["location"]
    db.refresh(org)
    assert org.name == "Corner Bakery & Cafe"


def test_orgs_page_lists_memberships(client, db):
    user = add_user(db)
    add_org(db, user, name="First Shop")
    add_org(db, user, role="viewer", name="Second Shop")

    res = client.get("/orgs", headers=auth_headers(user.id))
    assert res.status_code == 200
    assert "First Shop" in res.text
    assert "Second Shop" in res.text
