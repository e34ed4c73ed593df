from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from localspotlight.models import AiGeneration, AutomationPolicy, PostCandidate, Schedule, as_utc
from localspotlight.services.llm import GenerationError, GenerationResult, PostPromptOutput, Usage
from localspotlight.services.post_generation import (
    AUTOPILOT_DELAY,
    ContentActionError,
    approve_candidate,
    build_post_prompt_input,
    generate_candidate_for_location,
    is_within_quiet_hours,
    regenerate_candidate,
    reject_candidate,
    run_post_automation,
)
from localspotlight.tests.factories import add_connected_location, add_org, add_user

NOW = datetime(2026, 4, 14, 12, 0, tzinfo=timezone.utc)


def _result(risk=0.1, blocked=False):
    output = PostPromptOutput(
        headline="Spring pastries have arrived",
        body="Our rhubarb tarts and lemon buns are back on the counter every morning this month.",
        riskScore=risk,
    )
    return GenerationResult(output=output, raw_text="{}", model="gpt-4o-mini", usage=Usage(cost_usd=0.0004),
                            risk_score=risk, blocked=blocked, retries=0)


def _fake_ai(result=None, error=None):
    ai = MagicMock()
    if error:
        ai.generate.side_effect = error
    else:
        ai.generate.return_value = result or _result()
    return ai


@pytest.fixture
def location(db):
    user = add_user(db)
    org = add_org(db, user)
    return add_connected_location(db, org)


@pytest.mark.parametrize("quiet, hour, minute, expected", [
    ({"start": "09:00", "end": "17:00"}, 12, 0, True),
    ({"start": "09:00", "end": "17:00"}, 17, 0, False),
    ({"start": "09:00", "end": "17:00"}, 9, 0, True),
    ({"start": "22:00", "end": "06:00"}, 23, 30, True),
    ({"start": "22:00", "end": "06:00"}, 5, 59, True),
    ({"start": "22:00", "end": "06:00"}, 12, 0, False),
    ({"start": "bad", "end": "06:00"}, 3, 0, False),
    (None, 3, 0, False),
])
def test_quiet_hours(quiet, hour, minute, expected):
    now = datetime(2026, 1, 1, hour, minute, tzinfo=timezone.utc)
    assert is_within_quiet_hours(quiet, now) is expected


def test_prompt_input_uses_location_meta(location):
    location.meta = {**location.meta, "brandVoice": {"tone": "cheerful"}, "focusKeywords": "sourdough"}
    policy = AutomationPolicy(org_id=location.org_id, content_type="post", require_disclaimers=True)

    prompt = build_post_prompt_input("Corner Bakery", location, policy=policy)

    assert prompt.org.brandVoice.tone == "cheerful"
    assert prompt.location.categories == ["Bakery"]
    assert prompt.brief.focusKeywords == ["sourdough"]
    assert prompt.guardrails.disclaimers  # default disclaimer is added


def test_generate_candidate_records_generation(db, location):
    ai = _fake_ai()
    candidate = generate_candidate_for_location(db, ai, location, user_id="user-1")

    assert candidate.status == "pending"
    assert candidate.schema["title"] == "Spring pastries have arrived"
    assert candidate.schema["metadata"]["trigger"] == "manual"
    generation = db.get(AiGeneration, candidate.generation_id)
    assert generation.status == "completed"
    assert generation.costs == pytest.approx(0.0004)


def test_blocked_generation_creates_no_candidate(db, location):
    with pytest.raises(ContentActionError) as exc:
        generate_candidate_for_location(db, _fake_ai(_result(risk=0.9, blocked=True)), location, user_id="u")
    assert exc.value.status == "generation_blocked"
    assert db.query(PostCandidate).count() == 0
    assert db.query(AiGeneration).one().status == "moderated"


def test_unmanaged_location_is_rejected(db, location):
    location.is_managed = False
    db.commit()
    with pytest.raises(ContentActionError) as exc:
        generate_candidate_for_location(db, _fake_ai(), location, user_id="u")
    assert exc.value.status == "not_managed"


def test_approve_creates_pending_schedule(db, location):
    candidate = PostCandidate(org_id=location.org_id, location_id=location.id, schema={"description": "Hi"})
    db.add(candidate)
    db.commit()

    schedule = approve_candidate(db, candidate)

    assert candidate.status == "approved"
    assert schedule.status == "pending"
    assert schedule.target_type == "post_candidate"
    assert schedule.target_id == candidate.id

    with pytest.raises(ContentActionError) as exc:
        approve_candidate(db, candidate)
    assert exc.value.status == "already_approved"


def test_rejected_candidate_cannot_be_approved(db, location):
    candidate = PostCandidate(org_id=location.org_id, location_id=location.id, schema={})
    db.add(candidate)
    db.commit()
    reject_candidate(db, candidate)

    with pytest.raises(ContentActionError) as exc:
        approve_candidate(db, candidate)
    assert exc.value.status == "already_rejected"
    assert db.query(Schedule).count() == 0


def test_regenerating_approved_candidate_cancels_its_schedule(db, location):
    candidate = PostCandidate(org_id=location.org_id, location_id=location.id, schema={"description": "Hi"})
    db.add(candidate)
    db.commit()
    schedule = approve_candidate(db, candidate, publish_at=NOW)

    regenerate_candidate(db, _fake_ai(), candidate, user_id="user-1")

    db.refresh(schedule)
    assert candidate.status == "pending"
    assert schedule.status == "cancelled"

    revived = approve_candidate(db, candidate, publish_at=NOW + timedelta(hours=1))
    assert revived.id == schedule.id
    assert revived.status == "pending"
    assert as_utc(revived.publish_at) == NOW + timedelta(hours=1)


def test_rejecting_approved_candidate_cancels_its_schedule(db, location):
    candidate = PostCandidate(org_id=location.org_id, location_id=location.id, schema={"description": "Hi"})
    db.add(candidate)
    db.commit()
    schedule = approve_candidate(db, candidate, publish_at=NOW)
    schedule.status = "failed"
    schedule.retry_count = 1
    schedule.next_retry_at = NOW
    db.commit()

    reject_candidate(db, candidate)

    db.refresh(schedule)
    assert schedule.status == "cancelled"
    assert schedule.next_retry_at is None


def test_automation_autopilot_schedules_post(db, location):
    db.add(AutomationPolicy(org_id=location.org_id, location_id=location.id, content_type="post", mode="autopilot"))
    db.commit()

    summary = run_post_automation(db, _fake_ai(), now=NOW)

    assert summary["generated"] == 1
    assert summary["autopilot"] == 1
    candidate = db.query(PostCandidate).one()
    assert candidate.status == "approved"
    schedule = db.query(Schedule).one()
    assert as_utc(schedule.publish_at) == NOW + AUTOPILOT_DELAY


def test_automation_auto_create_leaves_candidate_pending(db, location):
    db.add(AutomationPolicy(org_id=location.org_id, location_id=location.id, content_type="post", mode="auto_create"))
    db.commit()

    summary = run_post_automation(db, _fake_ai(), now=NOW)

    assert summary["generated"] == 1
    assert summary["autopilot"] == 0
    assert db.query(PostCandidate).one().status == "pending"
    assert db.query(Schedule).count() == 0


def test_automation_skips_quiet_hours_and_weekly_cap(db, location):
    policy = AutomationPolicy(org_id=location.org_id, location_id=location.id, content_type="post",
                              mode="autopilot", quiet_hours={"start": "11:00", "end": "13:00"})
    db.add(policy)
    db.commit()

    ai = _fake_ai()
    summary = run_post_automation(db, ai, now=NOW)
    assert summary["skipped"] == [{"locationId": location.id, "reason": "quiet_hours"}]
    ai.generate.assert_not_called()

    policy.quiet_hours = None
    policy.max_per_week = 1
    db.add(Schedule(org_id=location.org_id, location_id=location.id, target_type="post_candidate",
                    target_id="old", publish_at=NOW - timedelta(days=2)))
    db.commit()

    summary = run_post_automation(db, ai, now=NOW)
    assert summary["skipped"] == [{"locationId": location.id, "reason": "weekly_cap_reached"}]
    ai.generate.assert_not_called()


def test_automation_collects_generation_errors(db, location):
    db.add(AutomationPolicy(org_id=location.org_id, location_id=location.id, content_type="post", mode="autopilot"))
    db.commit()

    summary = run_post_automation(db, _fake_ai(error=GenerationError("model unavailable")), now=NOW)

    assert summary["errors"] == [{"locationId": location.id, "error": "model unavailable"}]
    assert db.query(AiGeneration).one().status == "failed"


def test_automation_endpoint_requires_secret(client):
    res = client.post("/api/automation/generate-posts", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
