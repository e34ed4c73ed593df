from unittest.mock import patch

from localspotlight.models import GbpPost, GbpReview, GoogleConnection
from localspotlight.services.sync import sync_all_reviews, sync_org_reviews
from localspotlight.tests.factories import add_connected_location, add_org, add_user, auth_headers

REVIEWS = [
    {"reviewId": "r1", "reviewer": {"displayName": "Sam"}, "starRating": "FIVE", "comment": "Best croissants",
     "createTime": "2026-02-01T09:00:00Z"},
    {"reviewId": "r2", "starRating": "THREE", "reviewReply": {"comment": "Thanks!"}},
    {"comment": "no id, ignored"},
]
POSTS = [{"name": "accounts/111/locations/222/localPosts/1", "summary": "Open late", "topicType": "STANDARD",
          "state": "LIVE", "createTime": "2026-02-03T09:00:00Z"}]


def _patch_google(reviews=REVIEWS, posts=POSTS):
    return (
        patch("localspotlight.services.sync.access_token_for", return_value="access-1"),
        patch("localspotlight.services.sync.list_reviews", return_value=reviews),
        patch("localspotlight.services.sync.list_local_posts", return_value=posts),
    )


def test_review_sync_inserts_then_updates(db):
    user = add_user(db)
    org = add_org(db, user)
    location = add_connected_location(db, org)

    token, reviews, _ = _patch_google()
    with token, reviews as list_reviews:
        first = sync_org_reviews(db, org.id)
        second = sync_org_reviews(db, org.id)

    list_reviews.assert_called_with("access-1", "111", "222")
    assert (first.newItems, first.updatedItems) == (2, 0)
    assert (second.newItems, second.updatedItems) == (0, 2)
    rows = {r.review_id: r for r in db.query(GbpReview).filter(GbpReview.location_id == location.id).all()}
    assert rows["r1"].rating == 5
    assert rows["r1"].author == "Sam"
    assert rows["r2"].reply == "Thanks!"


def test_unmanaged_locations_are_skipped(db):
    user = add_user(db)
    org = add_org(db, user)
    add_connected_location(db, org, is_managed=False)

    token, reviews, _ = _patch_google()
    with token, reviews as list_reviews:
        stats = sync_org_reviews(db, org.id)

    list_reviews.assert_not_called()
    assert stats.locationsProcessed == 0


def test_location_failure_is_collected(db):
    user = add_user(db)
    org = add_org(db, user, name="Bakery")
    add_connected_location(db, org)

    with patch("localspotlight.services.sync.access_token_for", side_effect=RuntimeError("token revoked")):
        stats = sync_all_reviews(db, location_delay=0)

    assert stats.orgsProcessed == 1
    assert stats.failedLocations == 1
    assert stats.errors[0]["error"] == "token revoked"
    assert stats.to_dict("Reviews")["totalErrors"] == 1


def test_sync_posts_endpoint(client, db):
    user = add_user(db)
    org = add_org(db, user, role="admin")
    add_connected_location(db, org)

    token, _, posts = _patch_google()
    with token, posts:
        res = client.post("/api/sync/posts", json={"orgId": org.id}, headers=auth_headers(user.id))

    assert res.status_code == 200
    results = res.json()["results"]
    assert results["newPosts"] == 1
    assert results["updatedPosts"] == 0
    assert db.query(GbpPost).one().summary == "Open late"


def test_sync_posts_needs_connection(client, db):
    user = add_user(db)
    org = add_org(db, user)
    add_connected_location(db, org)
    db.query(GoogleConnection).delete()
    db.commit()

    res = client.post("/api/sync/posts", json={"orgId": org.id}, headers=auth_headers(user.id))
    assert res.status_code == 404


def test_sync_reviews_without_connection_reports_zero(client, db):
    user = add_user(db)
    add_org(db, user)

    res = client.post("/api/sync/reviews", headers=auth_headers(user.id))
    assert res.status_code == 200
    assert res.json()["stats"]["newReviews"] == 0


def test_sync_reviews_cron_requires_secret(client):
    assert client.get("/api/cron/sync-reviews").status_code == 401
