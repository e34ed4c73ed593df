# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
Publishes due post-candidate schedules to Google Business Profile.

Each run picks up failed schedules whose retry time has come, then pending
schedules whose `publish_at` has passed. A failure schedules a retry with
exponential backoff; the failure that brings `retry_count` to MAX_RETRIES
is permanent and the schedule stays `failed`.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import Schedule, PostCandidate, GbpLocation, GbpPost, GoogleConnection, utcnow
from .audit import record_audit
from .google_business import (
    access_token_for,
    connection_for_location,
    create_local_post,
    extract_account_id,
    extract_location_id,
)
from .post_schema import transform_post_schema, gbp_post_fields_from_candidate

MAX_RETRIES = 3
RETRY_BATCH = 10
PENDING_BATCH = 40
BASE_RETRY_DELAY_MS = 1000
MAX_RETRY_DELAY_MS = 60000

TARGET_TYPE = "post_candidate"


@dataclass
class PublishResult:
    scheduleId: str
    success: bool
    error: str | None = None
    googlePostName: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ScheduleSkipped(Exception):
    """A row the schedule depends on is missing; the schedule is failed without retry."""


def retry_delay(retry_count: int) -> timedelta:
    return timedelta(milliseconds=min(BASE_RETRY_DELAY_MS * 2 ** retry_count, MAX_RETRY_DELAY_MS))


def select_due_schedules(db: Session, now: datetime) -> list[Schedule]:
    retries = db.execute(
        select(Schedule)
        .where(Schedule.status == "failed")
        .where(Schedule.target_type == TARGET_TYPE)
        .where(Schedule.next_retry_at.is_not(None))
        .where(Schedule.next_retry_at <= now)
        .where(Schedule.retry_count < MAX_RETRIES)
        .order_by(Schedule.next_retry_at.asc())
        .limit(RETRY_BATCH)
    ).scalars().all()

    pending = db.execute(
        select(Schedule)
        .where(Schedule.status == "pending")
        .where(Schedule.target_type == TARGET_TYPE)
        .where(Schedule.publish_at <= now)
        .order_by(Schedule.publish_at.asc())
        .limit(PENDING_BATCH)
    ).scalars().all()

    return list(retries) + list(pending)


def _mark_failed(db: Session, schedule: Schedule, message: str, now: datetime):
    schedule.status = "failed"
    schedule.last_error = message
    schedule.meta = {**(schedule.meta or {}), "error": message, "lastAttempt": now.isoformat()}
    schedule.next_retry_at = None


def _load_targets(db: Session, schedule: Schedule) -> tuple[PostCandidate, GbpLocation, GoogleConnection]:
    candidate = db.get(PostCandidate, schedule.target_id)
    if not candidate:
        raise ScheduleSkipped("Post candidate not found")

    location = db.get(GbpLocation, schedule.location_id)
    if not location:
        raise ScheduleSkipped("Location not found")

    connection = connection_for_location(db, location)
    if not connection:
        raise ScheduleSkipped("Google connection not found")

    return candidate, location, connection


def publish_schedule(db: Session, schedule: Schedule) -> str:
    """Publish one schedule and record the result; returns the Google post name."""
    candidate, location, connection = _load_targets(db, schedule)

    access_token = access_token_for(connection)
    body = transform_post_schema(candidate.schema or {}, candidate.images)
    created = create_local_post(
        access_token,
        extract_account_id(connection.account_id),
        extract_location_id(location.google_location_name),
        body,
    )
    post_name = created["name"]

    existing = db.query(GbpPost).filter(
        GbpPost.org_id == schedule.org_id,
        GbpPost.google_post_name == post_name,
    ).first()
    fields = gbp_post_fields_from_candidate(candidate.schema or {}, candidate.images, created)
    if existing:
        for key, value in fields.items():
            setattr(existing, key, value)
    else:
        db.add(GbpPost(org_id=schedule.org_id, location_id=schedule.location_id, google_post_name=post_name, **fields))

    schedule.status = "published"
    schedule.provider_ref = post_name
    schedule.last_error = None
    schedule.next_retry_at = None

    record_audit(db, schedule.org_id, "post_published", schedule.id,
                 {"googlePostName": post_name, "locationId": schedule.location_id})
    return post_name


def _fail_permanently(db: Session, schedule: Schedule, message: str, now: datetime, retry_count: int):
    _mark_failed(db, schedule, message, now)
    schedule.retry_count = retry_count
    record_audit(db, schedule.org_id, "post_publish_failed_permanent", schedule.id,
                 {"error": message, "retryCount": retry_count, "locationId": schedule.location_id})
    log_event("publish_failed_permanent", level="error", schedule_id=schedule.id, retry_count=retry_count)


def handle_publish_error(db: Session, schedule: Schedule, message: str, now: datetime):
    retry_count = schedule.retry_count or 0

    # A row at MAX_RETRIES is never selected again.
    if retry_count + 1 >= MAX_RETRIES:
        _fail_permanently(db, schedule, message, now, max(retry_count, MAX_RETRIES))
        return

    next_retry_at = now + retry_delay(retry_count)
    schedule.status = "failed"
    schedule.retry_count = retry_count + 1
    schedule.last_error = message
    schedule.next_retry_at = next_retry_at
    record_audit(db, schedule.org_id, "post_publish_retry_scheduled", schedule.id, {
        "error": message,
        "retryCount": retry_count + 1,
        "nextRetryAt": next_retry_at.isoformat(),
        "locationId": schedule.location_id,
    })
    log_event("publish_retry_scheduled", level="warning", schedule_id=schedule.id,
              retry_count=retry_count + 1, next_retry_at=next_retry_at.isoformat())


def process_schedule(db: Session, schedule: Schedule, now: datetime) -> PublishResult:
    try:
        post_name = publish_schedule(db, schedule)
    except ScheduleSkipped as e:
        db.rollback()
        _mark_failed(db, schedule, str(e), now)
        db.commit()
        return PublishResult(scheduleId=schedule.id, success=False, error=str(e))
    except Exception as e:
        db.rollback()
        handle_publish_error(db, schedule, str(e), now)
        db.commit()
        return PublishResult(scheduleId=schedule.id, success=False, error=str(e))

    db.commit()
    return PublishResult(scheduleId=schedule.id, success=True, googlePostName=post_name)


def run_publish_worker(db: Session, schedule_id: str | None = None, now: datetime | None = None) -> dict:
    """
    Process one batch. With `schedule_id` only that schedule is attempted
    (manual trigger from the console), provided it is not already published.
    """
    now = now or utcnow()

    if schedule_id:
        schedule = db.get(Schedule, schedule_id)
        schedules = [schedule] if schedule and schedule.status in ("pending", "failed") else []
    else:
        schedules = select_due_schedules(db, now)

    if not schedules:
        log_event("publish_worker_idle")
        return {"processed": 0, "published": 0, "failed": 0, "results": []}

    log_event("publish_worker_start", count=len(schedules), manual=bool(schedule_id))

    results = []
    for schedule in schedules:
        result = process_schedule(db, schedule, now)
        results.append(result)
        log_event(
            "publish_schedule_result",
            level="info" if result.success else "error",
            schedule_id=result.scheduleId,
            success=result.success,
            google_post_name=result.googlePostName,
            error=result.error,
        )

    published = sum(1 for r in results if r.success)
    summary = {
        "processed": len(results),
        "published": published,
        "failed": len(results) - published,
        "results": [r.to_dict() for r in results],
    }
    log_event("publish_worker_done", processed=summary["processed"], published=published, failed=summary["failed"])
    return summary
