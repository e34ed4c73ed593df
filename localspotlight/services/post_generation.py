# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
Post candidate workflow: build prompt input from a location, run the AI
service, store `ai_generations` / `post_candidates`, approve or reject
candidates, and the automation sweep that does all of this on a cron.
"""
from datetime import datetime, timedelta, time as dtime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import (
    AiGeneration,
    AutomationPolicy,
    GbpLocation,
    GbpReview,
    Org,
    PostCandidate,
    SafetyRule,
    Schedule,
    utcnow,
)
from .llm import (
    AiService,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODEL,
    DEFAULT_RISK_THRESHOLD,
    FALLBACK_MODEL,
    POST_PROMPT_NAME,
    PostPromptInput,
    PostPromptOutput,
    GenerationError,
    generate_image,
)

DEFAULT_DISCLAIMER = "All offers subject to availability. Contact the business for the latest details."
DEFAULT_HEADLINE_GOAL = "Highlight timely news for local customers."
DEFAULT_BODY_GOAL = "Drive discovery with clear value, proof, and a call to action."
DEFAULT_ORG_NAME = "Your business"

AUTOPILOT_DELAY = timedelta(hours=2)
WEEKLY_WINDOW = timedelta(days=7)
RECENT_REVIEW_LIMIT = 3


class ContentActionError(Exception):
    """Carries the `status` code a page redirect reports back to the user."""

    def __init__(self, status: str, message: str | None = None):
        super().__init__(message or status)
        self.status = status


def to_string_list(value) -> list[str]:
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def clean_text(value) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _disclaimers(meta: dict, policy: AutomationPolicy | None) -> list[str]:
    disclaimers = to_string_list(meta.get("disclaimers", meta.get("requiredDisclaimer")))
    if policy is not None and policy.require_disclaimers and not disclaimers:
        return [DEFAULT_DISCLAIMER]
    return disclaimers


def build_post_prompt_input(
    org_name: str,
    location: GbpLocation,
    safety: SafetyRule | None = None,
    recent_reviews: list[GbpReview] | None = None,
    policy: AutomationPolicy | None = None,
) -> PostPromptInput:
    meta = location.meta or {}

    brand_voice = None
    if isinstance(meta.get("brandVoice"), dict):
        voice = meta["brandVoice"]
        brand_voice = {"styleNotes": to_string_list(voice.get("styleNotes"))}
        if clean_text(voice.get("tone")):
            brand_voice["tone"] = clean_text(voice.get("tone"))

    references = [
        {"type": "review", "title": f"Customer review {i}", "body": clean_text(review.text)}
        for i, review in enumerate((r for r in recent_reviews or [] if clean_text(r.text)), start=1)
    ]

    return PostPromptInput.model_validate({
        "org": {"name": org_name, "brandVoice": brand_voice},
        "location": {
            "name": location.title or "Managed location",
            "address": clean_text(meta.get("address")),
            "categories": to_string_list(meta.get("categories")),
            "differentiators": to_string_list(meta.get("differentiators", meta.get("uniqueSellingPoints"))),
            "seasonalNotes": to_string_list(meta.get("seasonalHighlights", meta.get("promotions"))),
        },
        "brief": {
            "headlineGoal": clean_text(meta.get("pitchLine")) or DEFAULT_HEADLINE_GOAL,
            "bodyGoal": clean_text(meta.get("contentFocus")) or DEFAULT_BODY_GOAL,
            "campaign": clean_text(meta.get("campaignTagline")),
            "focusKeywords": to_string_list(meta.get("focusKeywords")),
        },
        "guardrails": {
            "bannedTerms": (safety.banned_terms if safety else None) or [],
            "requiredPhrases": (safety.required_phrases if safety else None) or [],
            "disclaimers": _disclaimers(meta, policy),
            "blockedCategories": (safety.blocked_categories if safety else None) or [],
        },
        "references": references,
    })


def build_post_candidate_schema(
    output: PostPromptOutput,
    model: str,
    trigger: str,
    automation_mode: str | None = None,
    user_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    return {
        "type": "WHATS_NEW",
        "title": output.headline,
        "description": output.body,
        "cta": output.callToAction.model_dump() if output.callToAction else None,
        "mediaBrief": output.mediaBrief.model_dump() if output.mediaBrief else None,
        "riskScore": output.riskScore,
        "policyFindings": list(output.policyFindings),
        "supportingPoints": list(output.supportingPoints),
        "prompt": POST_PROMPT_NAME,
        "model": model,
        "generatedAt": (now or utcnow()).isoformat(),
        "metadata": {
            "automationMode": automation_mode or "off",
            "userId": user_id,
            "trigger": trigger,
        },
    }


def _parse_hhmm(value) -> dtime | None:
    try:
        hour, minute = (int(part) for part in str(value).split(":")[:2])
        return dtime(hour, minute)
    except (TypeError, ValueError):
        return None


def is_within_quiet_hours(quiet_hours: dict | None, now: datetime) -> bool:
    """
    `quiet_hours` is {"start": "HH:MM", "end": "HH:MM"} in UTC. The window is
    start-inclusive, end-exclusive, and wraps past midnight when start > end.
    """
    if not isinstance(quiet_hours, dict):
        return False
    start = _parse_hhmm(quiet_hours.get("start"))
    end = _parse_hhmm(quiet_hours.get("end"))
    if start is None or end is None:
        return False

    current = now.hour * 60 + now.minute
    start_min = start.hour * 60 + start.minute
    end_min = end.hour * 60 + end.minute

    if start_min <= end_min:
        return start_min <= current < end_min
    return current >= start_min or current < end_min


# --- Context loading ---

def _context_for(db: Session, location: GbpLocation):
    org = db.get(Org, location.org_id)
    safety = db.query(SafetyRule).filter(SafetyRule.org_id == location.org_id).first()
    reviews = (
        db.query(GbpReview)
        .filter(GbpReview.location_id == location.id)
        .order_by(GbpReview.created_at.desc())
        .limit(RECENT_REVIEW_LIMIT)
        .all()
    )
    return (org.name if org else None) or DEFAULT_ORG_NAME, safety, reviews


def _post_policy_for(db: Session, location: GbpLocation) -> AutomationPolicy | None:
    return db.query(AutomationPolicy).filter(
        AutomationPolicy.org_id == location.org_id,
        AutomationPolicy.location_id == location.id,
        AutomationPolicy.content_type == "post",
    ).first()


def _run_generation(
    db: Session,
    ai: AiService,
    location: GbpLocation,
    prompt_input: PostPromptInput,
    risk_threshold: float,
    metadata: dict,
):
    """Record an ai_generations row around one AI call. Returns (generation_row, result)."""
    generation = AiGeneration(
        org_id=location.org_id,
        location_id=location.id,
        kind="post",
        input=prompt_input.model_dump(mode="json"),
        status="pending",
        model=DEFAULT_MODEL,
    )
    db.add(generation)
    db.commit()

    try:
        result = ai.generate(
            prompt_input,
            model=DEFAULT_MODEL,
            fallback_model=FALLBACK_MODEL,
            max_retries=DEFAULT_MAX_RETRIES,
            risk_threshold=risk_threshold,
            metadata=metadata,
        )
    except GenerationError as e:
        generation.status = "failed"
        generation.output = {"error": str(e)}
        db.commit()
        raise

    generation.status = "moderated" if result.blocked else "completed"
    generation.output = result.output.model_dump(mode="json")
    generation.model = result.model
    generation.costs = (result.usage.cost_usd if result.usage else None) or 0
    generation.risk_score = result.risk_score
    db.commit()
    return generation, result


# --- Manual actions ---

def generate_candidate_for_location(db: Session, ai: AiService, location: GbpLocation, user_id: str) -> PostCandidate:
    if not location.is_managed:
        raise ContentActionError("not_managed")

    org_name, safety, reviews = _context_for(db, location)
    policy = _post_policy_for(db, location)
    prompt_input = build_post_prompt_input(org_name, location, safety, reviews, policy)
    risk_threshold = policy.risk_threshold if policy and policy.risk_threshold is not None else DEFAULT_RISK_THRESHOLD

    try:
        generation, result = _run_generation(db, ai, location, prompt_input, risk_threshold, {
            "orgId": location.org_id,
            "locationId": location.id,
            "prompt": POST_PROMPT_NAME,
        })
    except GenerationError as e:
        log_event("post_generation_failed", level="error", location_id=location.id, error=str(e))
        raise ContentActionError("generation_failed", str(e)) from e

    if result.blocked:
        log_event("post_generation_blocked", level="warning", location_id=location.id, risk_score=result.risk_score)
        raise ContentActionError("generation_blocked")

    candidate = PostCandidate(
        org_id=location.org_id,
        location_id=location.id,
        generation_id=generation.id,
        schema=build_post_candidate_schema(result.output, result.model, "manual",
                                           automation_mode=policy.mode if policy else "off", user_id=user_id),
        images=[],
        status="pending",
    )
    db.add(candidate)
    db.commit()
    log_event("post_candidate_created", candidate_id=candidate.id, location_id=location.id, trigger="manual")
    return candidate


def cancel_open_schedules(db: Session, candidate: PostCandidate) -> int:
    """Cancel the candidate's pending or failed publish schedules so the worker never picks them up."""
    schedules = db.query(Schedule).filter(
        Schedule.target_type == "post_candidate",
        Schedule.target_id == candidate.id,
        Schedule.status.in_(("pending", "failed")),
    ).all()
    for schedule in schedules:
        schedule.status = "cancelled"
        schedule.next_retry_at = None
    return len(schedules)


def regenerate_candidate(db: Session, ai: AiService, candidate: PostCandidate, user_id: str) -> PostCandidate:
    location = db.get(GbpLocation, candidate.location_id)
    if not location or not location.is_managed:
        raise ContentActionError("location_not_managed")

    policy = _post_policy_for(db, location)
    previous = db.get(AiGeneration, candidate.generation_id) if candidate.generation_id else None
    if previous and previous.input:
        prompt_input = PostPromptInput.model_validate(previous.input)
    else:
        org_name, safety, reviews = _context_for(db, location)
        prompt_input = build_post_prompt_input(org_name, location, safety, reviews, policy)
    risk_threshold = policy.risk_threshold if policy and policy.risk_threshold is not None else DEFAULT_RISK_THRESHOLD

    try:
        generation, result = _run_generation(db, ai, location, prompt_input, risk_threshold, {
            "trigger": "manual_regenerate",
            "orgId": candidate.org_id,
            "locationId": candidate.location_id,
            "candidateId": candidate.id,
        })
    except GenerationError as e:
        raise ContentActionError("regenerate_failed", str(e)) from e

    if result.blocked:
        raise ContentActionError("regenerate_blocked")

    candidate.schema = build_post_candidate_schema(result.output, result.model, "manual",
                                                   automation_mode=policy.mode if policy else "off", user_id=user_id)
    candidate.images = []
    candidate.status = "pending"
    candidate.generation_id = generation.id
    cancelled = cancel_open_schedules(db, candidate)
    db.commit()
    log_event("post_candidate_regenerated", candidate_id=candidate.id, cancelled_schedules=cancelled)
    return candidate


def approve_candidate(db: Session, candidate: PostCandidate, publish_at: datetime | None = None) -> Schedule:
    if candidate.status == "approved":
        raise ContentActionError("already_approved")
    if candidate.status == "rejected":
        raise ContentActionError("already_rejected")

    location = db.get(GbpLocation, candidate.location_id)
    if not location or not location.is_managed:
        raise ContentActionError("location_not_managed")

    schedule = db.query(Schedule).filter(
        Schedule.target_type == "post_candidate",
        Schedule.target_id == candidate.id,
    ).first()
    if not schedule:
        schedule = Schedule(
            org_id=candidate.org_id,
            location_id=candidate.location_id,
            target_type="post_candidate",
            target_id=candidate.id,
            publish_at=publish_at or utcnow() + AUTOPILOT_DELAY,
            status="pending",
        )
        db.add(schedule)
    elif schedule.status == "cancelled":
        schedule.status = "pending"
        schedule.publish_at = publish_at or utcnow() + AUTOPILOT_DELAY
        schedule.retry_count = 0
        schedule.last_error = None

    candidate.status = "approved"
    db.commit()
    log_event("post_candidate_approved", candidate_id=candidate.id, schedule_id=schedule.id)
    return schedule


def reject_candidate(db: Session, candidate: PostCandidate):
    candidate.status = "rejected"
    cancelled = cancel_open_schedules(db, candidate)
    db.commit()
    log_event("post_candidate_rejected", candidate_id=candidate.id, cancelled_schedules=cancelled)


def attach_generated_image(db: Session, candidate: PostCandidate) -> str:
    """Render the candidate's media brief and append the image URL to `images`."""
    brief = (candidate.schema or {}).get("mediaBrief") or {}
    prompt_text = brief.get("concept") or (candidate.schema or {}).get("title")
    if not prompt_text:
        raise ContentActionError("missing_media_brief")

    try:
        url = generate_image(prompt_text)
    except GenerationError as e:
        raise ContentActionError("image_failed", str(e)) from e

    candidate.images = [*(candidate.images or []), url]
    db.commit()
    return url


# --- Automation sweep ---

def run_post_automation(db: Session, ai: AiService, now: datetime | None = None) -> dict:
    now = now or utcnow()
    summary = {"processed": 0, "generated": 0, "autopilot": 0, "skipped": [], "errors": []}

    policies = (
        db.query(AutomationPolicy)
        .filter(AutomationPolicy.content_type == "post", AutomationPolicy.mode != "off")
        .all()
    )

    for policy in policies:
        if not policy.location_id:
            continue

        location = db.get(GbpLocation, policy.location_id)
        if not location:
            summary["skipped"].append({"locationId": policy.location_id, "reason": "location_missing"})
            continue

        summary["processed"] += 1

        if not location.is_managed:
            summary["skipped"].append({"locationId": location.id, "reason": "not_managed"})
            continue

        if is_within_quiet_hours(policy.quiet_hours, now):
            summary["skipped"].append({"locationId": location.id, "reason": "quiet_hours"})
            continue

        recent = db.query(func.count(Schedule.id)).filter(
            Schedule.location_id == location.id,
            Schedule.publish_at >= now - WEEKLY_WINDOW,
        ).scalar() or 0
        if policy.max_per_week and policy.max_per_week > 0 and recent >= policy.max_per_week:
            summary["skipped"].append({"locationId": location.id, "reason": "weekly_cap_reached"})
            continue

        org_name, safety, reviews = _context_for(db, location)
        prompt_input = build_post_prompt_input(org_name, location, safety, reviews, policy)
        risk_threshold = policy.risk_threshold if policy.risk_threshold is not None else DEFAULT_RISK_THRESHOLD

        try:
            generation, result = _run_generation(db, ai, location, prompt_input, risk_threshold, {
                "trigger": "automation",
                "orgId": location.org_id,
                "locationId": location.id,
                "automationPolicyId": policy.id,
            })
        except GenerationError as e:
            summary["errors"].append({"locationId": location.id, "error": str(e)})
            continue

        if result.blocked:
            summary["skipped"].append({"locationId": location.id, "reason": "risk_threshold"})
            continue

        autopilot = policy.mode == "autopilot"
        candidate = PostCandidate(
            org_id=location.org_id,
            location_id=location.id,
            generation_id=generation.id,
            schema=build_post_candidate_schema(result.output, result.model, "automation",
                                               automation_mode=policy.mode, now=now),
            images=[],
            status="approved" if autopilot else "pending",
        )
        db.add(candidate)
        db.flush()
        summary["generated"] += 1

        if autopilot:
            db.add(Schedule(
                org_id=location.org_id,
                location_id=location.id,
                target_type="post_candidate",
                target_id=candidate.id,
                publish_at=now + AUTOPILOT_DELAY,
                status="pending",
            ))
            summary["autopilot"] += 1
        db.commit()

    log_event("post_automation_done", processed=summary["processed"], generated=summary["generated"],
              autopilot=summary["autopilot"], skipped=len(summary["skipped"]), errors=len(summary["errors"]))
    return summary
