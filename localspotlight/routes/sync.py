from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..logging_setup import log_event
from ..models import GbpLocation, GoogleConnection, OrgMember
from ..schemas import SyncPostsIn, first_error
from ..security.auth import AuthUser, bearer_matches, require_user
from ..security.rbac import OWNER_ROLES, get_membership
from ..services.sync import sync_all_reviews, sync_org_posts, sync_org_reviews
from .posts import error_response, json_object

router = APIRouter(tags=["sync"])


def _has_connections(db: Session, org_id: str) -> bool:
    return db.query(GoogleConnection.id).filter(GoogleConnection.org_id == org_id).first() is not None


@router.post("/api/sync/posts")
def sync_posts(
    body: Any = Body(None),
    user: AuthUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    try:
        payload = SyncPostsIn.model_validate(json_object(body) or {})
    except ValidationError as e:
        return error_response(400, first_error(e))

    membership = get_membership(db, payload.orgId, user.id)
    if not membership or membership.role not in OWNER_ROLES:
        return error_response(403, "Access denied - owner/admin role required")

    if not _has_connections(db, payload.orgId):
        return error_response(404, "No Google connections found for this organization")
    managed = db.query(GbpLocation.id).filter(
        GbpLocation.org_id == payload.orgId, GbpLocation.is_managed.is_(True)
    ).first()
    if not managed:
        return error_response(404, "No managed locations found for this organization")

    stats = sync_org_posts(db, payload.orgId)
    return {"success": True, "results": stats.to_dict("Posts")}


@router.post("/api/sync/reviews")
def sync_reviews(user: AuthUser = Depends(require_user), db: Session = Depends(get_db)):
    membership = (
        db.query(OrgMember)
        .filter(OrgMember.user_id == user.id)
        .order_by(OrgMember.created_at.asc())
        .first()
    )
    if not membership:
        return error_response(403, "User not a member of any organization")

    org_id = membership.org_id
    if not _has_connections(db, org_id):
        return {
            "success": True,
            "message": "No Google connections found",
            "stats": {"connectionsProcessed": 0, "locationsProcessed": 0, "newReviews": 0,
                      "updatedReviews": 0, "totalErrors": 0, "errors": []},
        }

    stats = sync_org_reviews(db, org_id)
    return {
        "success": True,
        "message": (f"Synced {stats.newItems + stats.updatedItems} reviews ({stats.newItems} new, "
                    f"{stats.updatedItems} updated) from {stats.locationsProcessed} locations"),
        "stats": stats.to_dict("Reviews"),
    }


@router.get("/api/cron/sync-reviews")
def sync_reviews_cron(request: Request, db: Session = Depends(get_db)):
    if not bearer_matches(request, settings.cron_secret):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    stats = sync_all_reviews(db)
    log_event("sync_reviews_cron", orgs=stats.orgsProcessed, new=stats.newItems, errors=len(stats.errors))
    return {
        "success": True,
        "message": (f"Synced {stats.newItems} reviews from {stats.locationsProcessed} locations "
                    f"across {stats.orgsProcessed} organizations"),
        "stats": stats.to_dict("Reviews"),
    }
