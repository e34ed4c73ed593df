from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from localspotlight.main import app
from localspotlight.models import PostCandidate, Schedule, utcnow
from localspotlight.services.llm import GenerationResult, PostPromptOutput, get_ai_service
from localspotlight.services.post_generation import approve_candidate
from localspotlight.services.publish_worker import run_publish_worker
from localspotlight.tests.factories import add_connected_location, add_org, add_user, auth_headers


@pytest.fixture
def fake_ai():
    ai = MagicMock()
    ai.generate.return_value = GenerationResult(
        output=PostPromptOutput(
            headline="Weekend brunch is here",
            body="Join us Saturday and Sunday for shakshuka, fresh juice and our famous cardamom buns.",
            mediaBrief={"concept": "Brunch table in morning light"},
        ),
        raw_text="{}",
        model="gpt-4o-mini",
        usage=None,
        risk_score=0.2,
        blocked=False,
        retries=0,
    )
    app.dependency_overrides[get_ai_service] = lambda: ai
    yield ai
    app.dependency_overrides.pop(get_ai_service, None)


def _candidate(db, location, status="pending"):
    candidate = PostCandidate(org_id=location.org_id, location_id=location.id, status=status,
                              schema={"title": "Brunch", "description": "Weekend brunch",
                                      "mediaBrief": {"concept": "Brunch table"}})
    db.add(candidate)
    db.commit()
    return candidate


def test_generate_from_location_page(client, db, fake_ai):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user, role="editor"))

    res = client.post(f"/locations/{location.id}/generate", headers=auth_headers(user.id))

    assert res.headers["location"] == f"/locations/{location.id}?tab=posts&status=generation_ready"
    assert db.query(PostCandidate).one().schema["title"] == "Weekend brunch is here"


def test_viewer_cannot_generate(client, db, fake_ai):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user, role="viewer"))

    res = client.post(f"/locations/{location.id}/generate", headers=auth_headers(user.id))

    assert res.headers["location"].endswith("status=insufficient_role")
    fake_ai.generate.assert_not_called()


def test_approve_and_reject(client, db):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user))
    first = _candidate(db, location)
    second = _candidate(db, location)

    res = client.post("/content/approve", data={"candidateId": first.id}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=post_approved"
    assert db.query(Schedule).filter(Schedule.target_id == first.id).count() == 1

    res = client.post("/content/reject", data={"candidateId": second.id}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=post_rejected"
    res = client.post("/content/reject", data={"candidateId": second.id}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=already_rejected"


def test_rejected_post_is_never_published(client, db):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user))
    candidate = _candidate(db, location)
    approve_candidate(db, candidate, publish_at=utcnow() - timedelta(minutes=1))

    res = client.post("/content/reject", data={"candidateId": candidate.id}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=post_rejected"

    with patch("localspotlight.services.publish_worker.create_local_post") as create:
        summary = run_publish_worker(db)

    create.assert_not_called()
    assert summary["processed"] == 0
    assert db.query(Schedule).filter(Schedule.target_id == candidate.id).one().status == "cancelled"


def test_missing_candidate(client, db):
    user = add_user(db)
    res = client.post("/content/approve", data={}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=missing_candidate"
    res = client.post("/content/approve", data={"candidateId": "nope"}, headers=auth_headers(user.id))
    assert res.headers["location"] == "/content?status=candidate_missing"


def test_regenerate_replaces_schema(client, db, fake_ai):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user))
    candidate = _candidate(db, location)

    res = client.post("/content/regenerate", data={"candidateId": candidate.id}, headers=auth_headers(user.id))

    assert res.headers["location"] == "/content?status=regenerate_success"
    db.refresh(candidate)
    assert candidate.schema["title"] == "Weekend brunch is here"
    assert candidate.generation_id is not None


def test_image_is_appended(client, db):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user))
    candidate = _candidate(db, location)

    with patch("localspotlight.services.post_generation.generate_image", return_value="https://img.example/1.png"):
        res = client.post("/content/image", data={"candidateId": candidate.id}, headers=auth_headers(user.id))

    assert res.headers["location"] == "/content?status=image_ready"
    db.refresh(candidate)
    assert candidate.images == ["https://img.example/1.png"]


def test_content_page_lists_pending(client, db):
    user = add_user(db)
    location = add_connected_location(db, add_org(db, user))
    _candidate(db, location)

    res = client.get("/content", headers=auth_headers(user.id))
    assert res.status_code == 200
    assert "Weekend brunch" in res.text
