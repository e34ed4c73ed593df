from datetime import timedelta
from unittest.mock import patch

import pytest

from localspotlight.models import AuditLog, GbpPost, PostCandidate, Schedule, as_utc, utcnow
from localspotlight.services.publish_worker import MAX_RETRIES, retry_delay, run_publish_worker
from localspotlight.tests.factories import add_connected_location, add_org, add_user

CREATED = {"name": "accounts/111/locations/222/localPosts/999", "state": "LIVE", "topicType": "STANDARD"}


@pytest.fixture
def due_schedule(db):
    user = add_user(db)
    org = add_org(db, user)
    location = add_connected_location(db, org)
    candidate = PostCandidate(
        org_id=org.id,
        location_id=location.id,
        schema={"type": "WHATS_NEW", "description": "Croissants are back", "cta": {"action": "LEARN_MORE", "url": "https://example.com"}},
        status="approved",
    )
    db.add(candidate)
    db.flush()
    schedule = Schedule(
        org_id=org.id,
        location_id=location.id,
        target_type="post_candidate",
        target_id=candidate.id,
        publish_at=utcnow() - timedelta(minutes=5),
    )
    db.add(schedule)
    db.commit()
    return schedule


def test_retry_delay_is_exponential_and_capped():
    assert retry_delay(0) == timedelta(seconds=1)
    assert retry_delay(2) == timedelta(seconds=4)
    assert retry_delay(10) == timedelta(seconds=60)


def test_publishes_due_schedule(db, due_schedule):
    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", return_value=CREATED) as create:
        summary = run_publish_worker(db)

    assert summary["processed"] == 1
    assert summary["published"] == 1
    assert summary["results"] == [{"scheduleId": due_schedule.id, "success": True, "googlePostName": CREATED["name"]}]

    _, account_id, location_id, body = create.call_args.args
    assert (account_id, location_id) == ("111", "222")
    assert body["summary"] == "Croissants are back"
    assert body["callToAction"] == {"actionType": "LEARN_MORE", "url": "https://example.com"}

    db.refresh(due_schedule)
    assert due_schedule.status == "published"
    assert due_schedule.provider_ref == CREATED["name"]
    assert db.query(GbpPost).filter(GbpPost.google_post_name == CREATED["name"]).count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "post_published").count() == 1


def test_failure_schedules_retry(db, due_schedule):
    now = utcnow()
    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", side_effect=RuntimeError("Google down")):
        summary = run_publish_worker(db, now=now)

    assert summary["failed"] == 1
    assert summary["results"][0]["error"] == "Google down"

    db.refresh(due_schedule)
    assert due_schedule.status == "failed"
    assert due_schedule.retry_count == 1
    assert due_schedule.last_error == "Google down"
    assert as_utc(due_schedule.next_retry_at) == now + timedelta(seconds=1)


def test_retry_is_picked_up_when_due(db, due_schedule):
    now = utcnow()
    due_schedule.status = "failed"
    due_schedule.retry_count = 1
    due_schedule.next_retry_at = now - timedelta(seconds=1)
    db.commit()

    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", return_value=CREATED):
        summary = run_publish_worker(db, now=now)

    assert summary["published"] == 1
    db.refresh(due_schedule)
    assert due_schedule.status == "published"
    assert due_schedule.next_retry_at is None


def test_exhausted_retries_fail_permanently(db, due_schedule):
    now = utcnow()
    due_schedule.retry_count = MAX_RETRIES
    db.commit()

    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", side_effect=RuntimeError("still down")):
        run_publish_worker(db, schedule_id=due_schedule.id, now=now)

    db.refresh(due_schedule)
    assert due_schedule.status == "failed"
    assert due_schedule.retry_count == MAX_RETRIES
    assert due_schedule.next_retry_at is None
    assert db.query(AuditLog).filter(AuditLog.action == "post_publish_failed_permanent").count() == 1


def test_missing_candidate_fails_without_retry(db, due_schedule):
    db.query(PostCandidate).delete()
    db.commit()

    with patch("localspotlight.services.publish_worker.create_local_post") as create:
        summary = run_publish_worker(db)

    create.assert_not_called()
    assert summary["results"][0]["error"] == "Post candidate not found"
    db.refresh(due_schedule)
    assert due_schedule.status == "failed"
    assert due_schedule.retry_count == 0


def test_future_schedules_are_left_alone(db, due_schedule):
    due_schedule.publish_at = utcnow() + timedelta(hours=1)
    db.commit()
    assert run_publish_worker(db) == {"processed": 0, "published": 0, "failed": 0, "results": []}


def test_cron_endpoint_requires_secret(client):
    res = client.post("/api/cron/publish-posts")
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}

    res = client.post("/api/cron/publish-posts", headers={"Authorization": "Bearer wrong"})
    assert res.status_code == 401


def test_cron_endpoint_runs_worker(client, db, due_schedule):
    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", return_value=CREATED):
        res = client.post(
            "/api/cron/publish-posts",
            json={"scheduleId": due_schedule.id, "manualTrigger": True},
            headers={"Authorization": "Bearer publish-secret"},
        )

    assert res.status_code == 200
    assert res.json()["published"] == 1


def test_missing_candidate_stops_a_pending_retry(db, due_schedule):
    now = utcnow()
    due_schedule.status = "failed"
    due_schedule.retry_count = 1
    due_schedule.next_retry_at = now - timedelta(seconds=1)
    db.commit()
    db.query(PostCandidate).delete()
    db.commit()

    processed = [run_publish_worker(db, now=now + timedelta(seconds=i))["processed"] for i in range(3)]

    assert processed == [1, 0, 0]
    db.refresh(due_schedule)
    assert due_schedule.status == "failed"
    assert due_schedule.retry_count == 1
    assert due_schedule.next_retry_at is None
    assert due_schedule.last_error == "Post candidate not found"


def test_last_retry_failure_is_permanent(db, due_schedule):
    now = utcnow()
    due_schedule.status = "failed"
    due_schedule.retry_count = MAX_RETRIES - 1
    due_schedule.next_retry_at = now - timedelta(seconds=1)
    db.commit()

    with patch("localspotlight.services.publish_worker.access_token_for", return_value="access-1"), \
            patch("localspotlight.services.publish_worker.create_local_post", side_effect=RuntimeError("Google down")):
        summary = run_publish_worker(db, now=now)

    assert summary["failed"] == 1
    db.refresh(due_schedule)
    assert due_schedule.status == "failed"
    assert due_schedule.retry_count == MAX_RETRIES
    assert due_schedule.next_retry_at is None
    assert db.query(AuditLog).filter(AuditLog.action == "post_publish_failed_permanent").count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "post_publish_retry_scheduled").count() == 0
