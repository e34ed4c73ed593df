from localspotlight.models import AiGeneration
from localspotlight.tests.factories import add_connected_location, add_org, add_user, auth_headers


def _generation(db, location):
    generation = AiGeneration(org_id=location.org_id, location_id=location.id, kind="post",
                              input={"org": {"name": "Corner Bakery"}}, status="completed",
                              model="gpt-4o-mini", output={"headline": "Fresh bread"}, risk_score=0.1)
    db.add(generation)
    db.commit()
    return generation


def test_missing_id(client, db):
    user = add_user(db)
    res = client.get("/api/generation-status", headers=auth_headers(user.id))
    assert res.status_code == 400
    assert res.json() == {"error": "Missing generation id"}


def test_unknown_generation(client, db):
    user = add_user(db)
    res = client.get("/api/generation-status?gen=nope", headers=auth_headers(user.id))
    assert res.status_code == 404


def test_snapshot_for_member(client, db):
    user = add_user(db)
    org = add_org(db, user, role="viewer")
    generation = _generation(db, add_connected_location(db, org))

    res = client.get(f"/api/generation-status?gen={generation.id}", headers=auth_headers(user.id))
    assert res.status_code == 200
    data = res.json()
    assert data["snapshot"]["id"] == generation.id
    assert data["snapshot"]["status"] == "completed"
    assert data["snapshot"]["output"] == {"headline": "Fresh bread"}
    assert data["events"] == []


def test_other_orgs_generation_is_not_found(client, db):
    owner = add_user(db)
    stranger = add_user(db, "stranger@example.com")
    generation = _generation(db, add_connected_location(db, add_org(db, owner)))

    res = client.get(f"/api/generation-status?gen={generation.id}", headers=auth_headers(stranger.id))
    assert res.status_code == 404
