from localspotlight.tests.factories import add_org, add_user, auth_headers


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_request_id_round_trips(client):
    res = client.get("/health", headers={"X-Request-Id": "abc-123"})
    assert res.headers["X-Request-Id"] == "abc-123"
    assert client.get("/health").headers["X-Request-Id"]


def test_dashboard_without_org_redirects_to_orgs(client, db):
    user = add_user(db)
    res = client.get("/", headers=auth_headers(user.id))
    assert res.status_code == 303
    assert res.headers["location"].startswith("/orgs")


def test_selected_org_cookie_is_set_from_query(client, db):
    user = add_user(db)
    add_org(db, user, name="First Shop")
    second = add_org(db, user, name="Second Shop")

    res = client.get(f"/?orgId={second.id}", headers=auth_headers(user.id))

    assert res.status_code == 200
    assert "Second Shop" in res.text
    assert res.cookies.get("selected-org-id") == second.id


def test_theme_toggle_redirects_back(client):
    res = client.post("/theme", data={"redirect": "/reviews"})
    assert res.status_code == 303
    assert res.headers["location"] == "/reviews"
