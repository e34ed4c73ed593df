import pytest

from localspotlight.models import Schedule, utcnow
from localspotlight.security.rbac import (
    EDITOR_ROLES,
    OWNER_ROLES,
    PermissionDenied,
    has_role,
    require_role,
)
from localspotlight.tests.factories import add_connected_location, add_org, add_user, auth_headers


def test_require_role_accepts_allowed_role(db):
    user = add_user(db)
    org = add_org(db, user, role="editor")
    membership = require_role(db, org.id, user.id, EDITOR_ROLES)
    assert membership.role == "editor"


def test_require_role_rejects_lower_role(db):
    user = add_user(db)
    org = add_org(db, user, role="viewer")
    with pytest.raises(PermissionDenied) as exc:
        require_role(db, org.id, user.id, EDITOR_ROLES)
    assert exc.value.status_code == 403


def test_require_role_rejects_non_member(db):
    owner = add_user(db)
    stranger = add_user(db, "stranger@example.com")
    org = add_org(db, owner)
    assert not has_role(db, org.id, stranger.id)
    with pytest.raises(PermissionDenied):
        require_role(db, org.id, stranger.id)


def test_viewer_cannot_create_post(client, db):
    """Viewers are rejected before any Google call is attempted."""
    user = add_user(db)
    org = add_org(db, user, role="viewer")
    location = add_connected_location(db, org)

    res = client.post(
        "/api/posts/create",
        json={"locationId": location.id, "summary": "Fresh sourdough today", "topicType": "STANDARD"},
        headers=auth_headers(user.id),
    )
    assert res.status_code == 403
    assert res.json()["error"] == "Access denied - editor role required"


@pytest.mark.parametrize("role", sorted(EDITOR_ROLES - OWNER_ROLES) + ["viewer"])
def test_sync_posts_requires_owner_or_admin(client, db, role):
    user = add_user(db)
    org = add_org(db, user, role=role)
    add_connected_location(db, org)

    res = client.post("/api/sync/posts", json={"orgId": org.id}, headers=auth_headers(user.id))
    assert res.status_code == 403
    assert res.json()["error"] == "Access denied - owner/admin role required"


def test_publish_now_requires_editor(client, db):
    user = add_user(db)
    org = add_org(db, user, role="viewer")
    location = add_connected_location(db, org)

    schedule = Schedule(org_id=org.id, location_id=location.id, target_type="post_candidate",
                        target_id="c1", publish_at=utcnow())
    db.add(schedule)
    db.commit()

    res = client.post(f"/api/posts/publish?scheduleId={schedule.id}", headers=auth_headers(user.id))
    assert res.status_code == 403
    assert res.json() == {"error": "Insufficient permissions"}
