from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..logging_setup import log_event
from ..models import GbpLocation, GbpPost, PostCandidate, Schedule, utcnow
from ..schemas import CreatePostIn, GbpPostOut, ScheduleOut, first_error
from ..security.auth import AuthUser, bearer_matches, require_user
from ..security.encryption import TokenEncryptionError, decrypt_refresh_token
from ..security.rbac import EDITOR_ROLES, get_membership
from ..services.google_business import (
    GoogleApiError,
    connection_for_location,
    create_local_post,
    extract_account_id,
    extract_location_id,
    gbp_post_fields,
)
from ..services.google_oauth import GoogleOAuthError, refresh_access_token
from ..services.publish_worker import run_publish_worker
from ..services.scheduler import PublishTriggerError, trigger_publish

router = APIRouter(tags=["posts"])

STATUS_LIST_LIMIT = 50


def error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    content = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def json_object(body: Any) -> dict | None:
    return body if isinstance(body, dict) else None


@router.post("/api/posts/create")
def create_post(
    body: Any = Body(None),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    body = json_object(body)
    if body is None:
        return error_response(400, "Request body must be a JSON object")
    try:
        payload = CreatePostIn.model_validate(body)
    except ValidationError as e:
        return error_response(400, first_error(e))

    location = db.get(GbpLocation, payload.locationId)
    if not location:
        return error_response(404, "Location not found")

    membership = get_membership(db, location.org_id, user.id)
    if not membership or membership.role not in EDITOR_ROLES:
        return error_response(403, "Access denied - editor role required")

    connection = connection_for_location(db, location)
    if not connection or not connection.refresh_token_enc:
        return error_response(404, "No Google connection found for this location's account")

    try:
        refresh_token = decrypt_refresh_token(connection.refresh_token_enc)
    except TokenEncryptionError as e:
        log_event("post_create_decrypt_failed", level="error", location_id=location.id, error=str(e))
        return error_response(500, "Failed to decrypt credentials")

    try:
        access_token = refresh_access_token(refresh_token)
        created = create_local_post(
            access_token,
            extract_account_id(connection.account_id),
            extract_location_id(location.google_location_name),
            payload.to_google(),
        )
    except (GoogleOAuthError, GoogleApiError) as e:
        log_event("post_create_google_failed", level="error", location_id=location.id, error=str(e))
        return error_response(500, "Failed to create post", str(e))

    post_name = created["name"]
    db.add(GbpPost(org_id=location.org_id, location_id=location.id, google_post_name=post_name,
                   **gbp_post_fields(created)))
    db.add(Schedule(
        org_id=location.org_id,
        location_id=location.id,
        target_type="gbp_post",
        target_id=post_name,
        publish_at=utcnow(),
        status="published",
        provider_ref=post_name,
    ))
    db.commit()

    log_event("post_created", location_id=location.id, google_post_name=post_name, topic_type=payload.topicType)
    return {
        "success": True,
        "post": {
            "name": post_name,
            "summary": created.get("summary"),
            "topicType": created.get("topicType"),
            "state": created.get("state"),
            "searchUrl": created.get("searchUrl"),
            "createTime": created.get("createTime"),
        },
        "message": "Post successfully created and published to Google Business Profile",
    }


@router.post("/api/posts/publish")
def publish_post_now(
    schedule_id: str | None = Query(None, alias="scheduleId"),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not schedule_id:
        return error_response(400, "scheduleId is required")

    schedule = db.get(Schedule, schedule_id)
    if not schedule:
        return error_response(404, "Schedule not found")

    membership = get_membership(db, schedule.org_id, user.id)
    if not membership or membership.role not in EDITOR_ROLES:
        return error_response(403, "Insufficient permissions")

    try:
        result = trigger_publish(payload={"manualTrigger": True, "scheduleId": schedule_id, "userId": user.id})
    except PublishTriggerError as e:
        log_event("manual_publish_failed", level="error", schedule_id=schedule_id, error=str(e))
        return error_response(500, "Failed to publish post", str(e))

    log_event("manual_publish_triggered", schedule_id=schedule_id, user_id=user.id)
    return {"success": True, "message": "Post publishing triggered", "result": result}


@router.get("/api/posts/publish")
def post_publish_status(
    location_id: str | None = Query(None, alias="locationId"),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not location_id:
        return error_response(400, "locationId is required")

    location = db.get(GbpLocation, location_id)
    if not location:
        return error_response(404, "Location not found")
    if not get_membership(db, location.org_id, user.id):
        return error_response(403, "Access denied")

    schedules = (
        db.query(Schedule)
        .filter(Schedule.location_id == location_id, Schedule.target_type == "post_candidate")
        .order_by(Schedule.publish_at.desc())
        .limit(STATUS_LIST_LIMIT)
        .all()
    )
    candidates = {
        c.id: c for c in db.query(PostCandidate).filter(PostCandidate.id.in_([s.target_id for s in schedules])).all()
    } if schedules else {}

    posts = (
        db.query(GbpPost)
        .filter(GbpPost.location_id == location_id)
        .order_by(GbpPost.google_create_time.desc(), GbpPost.created_at.desc())
        .limit(STATUS_LIST_LIMIT)
        .all()
    )

    schedule_items = []
    for s in schedules:
        item = ScheduleOut.model_validate(s).model_dump(mode="json")
        candidate = candidates.get(s.target_id)
        if candidate:
            item["post_candidate"] = {
                "id": candidate.id,
                "schema": candidate.schema,
                "candidate_status": candidate.status,
                "created_at": candidate.created_at.isoformat() if candidate.created_at else None,
            }
        schedule_items.append(item)

    return {
        "schedules": schedule_items,
        "publishedPosts": [GbpPostOut.model_validate(p).model_dump(mode="json") for p in posts],
    }


@router.post("/api/cron/publish-posts")
def publish_posts_cron(request: Request, body: Any = Body(None), db: Session = Depends(get_db)):
    if not bearer_matches(request, settings.publish_posts_cron_secret):
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"})

    body = json_object(body) or {}
    schedule_id = body.get("scheduleId") if isinstance(body.get("scheduleId"), str) else None
    if schedule_id:
        log_event("publish_manual_trigger", schedule_id=schedule_id, user_id=body.get("userId"))

    return run_publish_worker(db, schedule_id=schedule_id)
