"""
Pull reviews and local posts from Google into `gbp_reviews` / `gbp_posts`.

Failures are collected per location so one broken location or connection
never stops the rest of the sync.
"""
import time
from dataclasses import dataclass, field, asdict

from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import GbpLocation, GbpReview, GbpPost, GoogleConnection
from .google_business import (
    access_token_for,
    connection_for_location,
    extract_account_id,
    extract_location_id,
    gbp_post_fields,
    list_local_posts,
    list_reviews,
    parse_google_timestamp,
    parse_star_rating,
)

MAX_ERROR_DETAILS = 10


@dataclass
class SyncStats:
    orgsProcessed: int = 0
    connectionsProcessed: int = 0
    locationsProcessed: int = 0
    failedLocations: int = 0
    newItems: int = 0
    updatedItems: int = 0
    errors: list = field(default_factory=list)

    def add_error(self, org_id: str, location: str, message: str):
        self.errors.append({"orgId": org_id, "location": location, "error": message})

    def to_dict(self, item_name: str) -> dict:
        data = asdict(self)
        data[f"new{item_name}"] = data.pop("newItems")
        data[f"updated{item_name}"] = data.pop("updatedItems")
        data["totalErrors"] = len(self.errors)
        data["errors"] = self.errors[:MAX_ERROR_DETAILS]
        return data


class _TokenCache:
    """One access-token refresh per connection per sync run."""

    def __init__(self):
        self._tokens: dict[str, str] = {}

    def get(self, connection: GoogleConnection, stats: SyncStats) -> str:
        if connection.id not in self._tokens:
            self._tokens[connection.id] = access_token_for(connection)
            stats.connectionsProcessed += 1
        return self._tokens[connection.id]


def _managed_locations(db: Session, org_id: str) -> list[GbpLocation]:
    return (
        db.query(GbpLocation)
        .filter(GbpLocation.org_id == org_id, GbpLocation.is_managed.is_(True))
        .order_by(GbpLocation.title.asc())
        .all()
    )


def upsert_review(db: Session, location: GbpLocation, review: dict) -> bool:
    """Insert or update one review; returns True when the row is new."""
    existing = db.query(GbpReview).filter(
        GbpReview.location_id == location.id,
        GbpReview.review_id == review["reviewId"],
    ).first()

    values = {
        "author": (review.get("reviewer") or {}).get("displayName"),
        "rating": parse_star_rating(review.get("starRating")),
        "text": review.get("comment"),
        "reply": (review.get("reviewReply") or {}).get("comment"),
        "state": "active",
    }
    if existing:
        for key, value in values.items():
            setattr(existing, key, value)
        return False

    row = GbpReview(org_id=location.org_id, location_id=location.id, review_id=review["reviewId"], **values)
    created = parse_google_timestamp(review.get("createTime"))
    if created:
        row.created_at = created
    db.add(row)
    return True


def upsert_post(db: Session, location: GbpLocation, post: dict) -> bool:
    existing = db.query(GbpPost).filter(
        GbpPost.org_id == location.org_id,
        GbpPost.google_post_name == post["name"],
    ).first()

    fields = gbp_post_fields(post)
    if existing:
        for key, value in fields.items():
            setattr(existing, key, value)
        return False

    db.add(GbpPost(org_id=location.org_id, location_id=location.id, google_post_name=post["name"], **fields))
    return True


def _sync_org(db: Session, org_id: str, kind: str, stats: SyncStats, tokens: _TokenCache, location_delay: float):
    for location in _managed_locations(db, org_id):
        label = location.title or location.id
        try:
            connection = connection_for_location(db, location)
            if not connection:
                raise LookupError("No Google connection for this location")

            access_token = tokens.get(connection, stats)
            account_id = extract_account_id(connection.account_id)
            location_id = extract_location_id(location.google_location_name)

            if kind == "reviews":
                items = list_reviews(access_token, account_id, location_id)
                key, upsert = "reviewId", upsert_review
            else:
                items = list_local_posts(access_token, account_id, location_id)
                key, upsert = "name", upsert_post

            for item in items:
                if not item.get(key):
                    continue
                if upsert(db, location, item):
                    stats.newItems += 1
                else:
                    stats.updatedItems += 1

            db.commit()
            stats.locationsProcessed += 1
            log_event(f"sync_{kind}_location", org_id=org_id, location_id=location.id, fetched=len(items))
        except Exception as e:
            db.rollback()
            stats.failedLocations += 1
            stats.add_error(org_id, label, str(e))
            log_event(f"sync_{kind}_location_failed", level="warning", org_id=org_id,
                      location_id=location.id, error=str(e))

        if location_delay:
            time.sleep(location_delay)

    stats.orgsProcessed += 1


def sync_org_reviews(db: Session, org_id: str) -> SyncStats:
    stats = SyncStats()
    _sync_org(db, org_id, "reviews", stats, _TokenCache(), 0)
    log_event("sync_reviews_done", org_id=org_id, new=stats.newItems, updated=stats.updatedItems,
              errors=len(stats.errors))
    return stats


def sync_org_posts(db: Session, org_id: str) -> SyncStats:
    stats = SyncStats()
    _sync_org(db, org_id, "posts", stats, _TokenCache(), 0)
    log_event("sync_posts_done", org_id=org_id, new=stats.newItems, updated=stats.updatedItems,
              errors=len(stats.errors))
    return stats


def sync_all_reviews(db: Session, location_delay: float = 0.3) -> SyncStats:
    """Review sync across every org with a Google connection (cron entry point)."""
    stats = SyncStats()
    tokens = _TokenCache()
    org_ids = [row[0] for row in db.query(GoogleConnection.org_id).distinct().all()]
    for org_id in org_ids:
        _sync_org(db, org_id, "reviews", stats, tokens, location_delay)
    log_event("sync_reviews_cron_done", orgs=stats.orgsProcessed, locations=stats.locationsProcessed,
              new=stats.newItems, errors=len(stats.errors))
    return stats
