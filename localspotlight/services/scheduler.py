import signal
from datetime import datetime
from typing import Callable

import requests
from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..logging_setup import log_event, setup_logging
from ..models import Schedule, utcnow

TRIGGER_TIMEOUT = 120


class PublishTriggerError(Exception):
    pass


def find_due_schedules(db: Session, now: datetime | None = None) -> list[Schedule]:
    now = now or utcnow()
    stmt = (
        select(Schedule)
        .where(Schedule.status == "pending")
        .where(Schedule.publish_at <= now)
        .order_by(Schedule.publish_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def trigger_publish(url: str | None = None, secret: str | None = None, payload: dict | None = None) -> dict:
    """POST once to the publish function and return its JSON summary."""
    url = url or settings.resolved_publish_function_url
    secret = secret if secret is not None else settings.publish_posts_cron_secret
    if not secret:
        raise PublishTriggerError("PUBLISH_POSTS_CRON_SECRET is not configured.")

    try:
        resp = requests.post(
            url,
            headers={"Authorization": f"Bearer {secret}", "Content-Type": "application/json"},
            json=payload or {},
            timeout=TRIGGER_TIMEOUT,
        )
    except requests.RequestException as e:
        raise PublishTriggerError(f"Publish trigger request failed: {e}") from e

    if resp.status_code != 200:
        raise PublishTriggerError(f"Failed to trigger publish: {resp.status_code} {resp.text}")
    return resp.json()


def poll_once(db_factory: Callable[[], Session]) -> dict | None:
    """
    One poller cycle. Makes a single publish call when anything is due and
    none otherwise. Schedule rows are never written here; the publish
    function owns their status.
    """
    try:
        db = db_factory()
        try:
            due = find_due_schedules(db)
            due_rows = [(s.id, s.target_type, s.target_id, s.publish_at) for s in due]
        finally:
            db.close()

        if not due_rows:
            return None

        log_event("scheduler_due_found", count=len(due_rows))
        for schedule_id, target_type, target_id, publish_at in due_rows:
            log_event("scheduler_due_item", schedule_id=schedule_id, target_type=target_type,
                      target_id=target_id, publish_at=publish_at.isoformat() if publish_at else None)

        result = trigger_publish()
        log_event(
            "scheduler_publish_result",
            processed=result.get("processed"),
            published=result.get("published"),
            failed=result.get("failed"),
        )
        for item in result.get("results") or []:
            if item.get("success"):
                log_event("scheduler_item_published", schedule_id=item.get("scheduleId"),
                          google_post_name=item.get("googlePostName"))
            else:
                log_event("scheduler_item_failed", level="warning", schedule_id=item.get("scheduleId"),
                          error=item.get("error"))
        return result
    except Exception as e:
        # The next cycle runs regardless
        log_event("scheduler_cycle_error", level="error", error=str(e))
        return None


def build_scheduler(db_factory: Callable[[], Session], interval_seconds: int | None = None) -> BlockingScheduler:
    sched = BlockingScheduler(timezone="UTC")
    sched.add_job(
        poll_once,
        trigger="interval",
        seconds=interval_seconds or settings.scheduler_interval_seconds,
        args=[db_factory],
        id="poll_due_schedules",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=utcnow(),
    )
    return sched


def main():
    from ..db import SessionLocal

    setup_logging()
    if not settings.publish_posts_cron_secret:
        log_event("scheduler_missing_secret", level="error", setting="PUBLISH_POSTS_CRON_SECRET")
        raise SystemExit(1)

    sched = build_scheduler(SessionLocal)

    def _stop(signum, frame):
        log_event("scheduler_stopping", signal=signum)
        sched.shutdown(wait=False)

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    log_event(
        "scheduler_started",
        publish_url=settings.resolved_publish_function_url,
        interval_seconds=settings.scheduler_interval_seconds,
    )
    sched.start()
    log_event("scheduler_stopped")


if __name__ == "__main__":
    main()
