# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
Google Business Profile REST client.

Accounts and locations come from the v1 account-management and
business-information APIs; reviews and local posts from the v4 API. Every
call takes a short-lived access token obtained with `refresh_access_token`.
"""
import logging
import re
from datetime import date, datetime

import requests
from sqlalchemy.orm import Session

from ..models import GoogleConnection, GbpAccount, GbpLocation
from ..security.encryption import decrypt_refresh_token
from .google_oauth import refresh_access_token

logger = logging.getLogger(__name__)

ACCOUNTS_URL = "https://mybusinessaccountmanagement.googleapis.com/v1/accounts"
BUSINESS_INFO_URL = "https://mybusinessbusinessinformation.googleapis.com/v1"
V4_URL = "https://mybusiness.googleapis.com/v4"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

LOCATION_READ_MASK = "name,title,labels,metadata"
TIMEOUT = 30

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}


class GoogleApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(f"Google API error ({status}): {message}")
        self.status = status
        self.message = message


def _raise_for_status(resp: requests.Response):
    if resp.ok:
        return
    try:
        body = resp.json()
        message = (body.get("error") or {}).get("message") or body.get("message") or resp.text
    except ValueError:
        message = resp.text or resp.reason
    raise GoogleApiError(resp.status_code, message)


def _get(url: str, access_token: str, params: dict | None = None) -> dict:
    resp = requests.get(url, headers={"Authorization": f"Bearer {access_token}"}, params=params, timeout=TIMEOUT)
    _raise_for_status(resp)
    return resp.json() if resp.content else {}


def _paged(url: str, access_token: str, key: str, params: dict | None = None) -> list[dict]:
    items: list[dict] = []
    params = dict(params or {})
    while True:
        data = _get(url, access_token, params)
        items.extend(data.get(key) or [])
        token = data.get("nextPageToken")
        if not token:
            return items
        params["pageToken"] = token


# --- Resource name helpers ---

def extract_account_id(account_name: str) -> str:
    """'accounts/123' -> '123'; bare ids pass through."""
    match = re.search(r"accounts/([^/]+)", account_name or "")
    return match.group(1) if match else (account_name or "").strip("/")


def extract_location_id(location_name: str) -> str:
    """'accounts/1/locations/456' or 'locations/456' -> '456'."""
    match = re.search(r"locations/([^/]+)", location_name or "")
    if match:
        return match.group(1)
    return (location_name or "").rstrip("/").split("/")[-1]


def parse_star_rating(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value if 1 <= value <= 5 else None
    return STAR_RATINGS.get(str(value).upper())


def to_google_date(value: date | datetime | str) -> dict:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return {"year": value.year, "month": value.month, "day": value.day}


def from_google_date(value: dict | None) -> date | None:
    if not value or not all(value.get(k) for k in ("year", "month", "day")):
        return None
    return date(int(value["year"]), int(value["month"]), int(value["day"]))


def parse_google_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # Google returns RFC 3339 with up to nanosecond precision
    value = re.sub(r"(\.\d{6})\d+", r"\1", value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable Google timestamp: {value}")
        return None


# --- API calls ---

def list_accounts(access_token: str) -> list[dict]:
    return _paged(ACCOUNTS_URL, access_token, "accounts", {"pageSize": 100})


def list_locations(access_token: str, account_name: str) -> list[dict]:
    url = f"{BUSINESS_INFO_URL}/{account_name}/locations"
    return _paged(url, access_token, "locations", {"readMask": LOCATION_READ_MASK, "pageSize": 50})


def list_reviews(access_token: str, account_id: str, location_id: str) -> list[dict]:
    url = f"{V4_URL}/accounts/{account_id}/locations/{location_id}/reviews"
    return _paged(url, access_token, "reviews", {"pageSize": 50})


def list_local_posts(access_token: str, account_id: str, location_id: str) -> list[dict]:
    url = f"{V4_URL}/accounts/{account_id}/locations/{location_id}/localPosts"
    return _paged(url, access_token, "localPosts", {"pageSize": 100})


def create_local_post(access_token: str, account_id: str, location_id: str, post: dict) -> dict:
    url = f"{V4_URL}/accounts/{account_id}/locations/{location_id}/localPosts"
    resp = requests.post(
        url,
        headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
        json=post,
        timeout=TIMEOUT,
    )
    _raise_for_status(resp)
    created = resp.json()
    if not created.get("name"):
        raise GoogleApiError(resp.status_code, f"Google did not return a post name: {created}")
    return created


def fetch_user_email(access_token: str) -> str | None:
    return _get(USERINFO_URL, access_token).get("email")


def location_title(location: dict) -> str:
    return location.get("title") or (location.get("metadata") or {}).get("placeId") or location.get("name") or "Unknown location"


# --- Connections ---

def connection_for_location(db: Session, location: GbpLocation) -> GoogleConnection | None:
    """
    The connection whose Google account owns `location`, falling back to any
    connection of the org when the location has no linked account.
    """
    query = db.query(GoogleConnection).filter(GoogleConnection.org_id == location.org_id)
    if location.account_id:
        account = db.get(GbpAccount, location.account_id)
        if account:
            match = query.filter(GoogleConnection.account_id == account.google_account_name).first()
            if match:
                return match
    return query.order_by(GoogleConnection.created_at.asc()).first()


def access_token_for(connection: GoogleConnection) -> str:
    refresh_token = decrypt_refresh_token(connection.refresh_token_enc)
    return refresh_access_token(refresh_token)


def gbp_post_fields(post: dict) -> dict:
    """Column values for a `gbp_posts` row built from a Google local post resource."""
    cta = post.get("callToAction") or {}
    event = post.get("event") or {}
    schedule = event.get("schedule") or {}
    offer = post.get("offer") or {}
    media_urls = [m["sourceUrl"] for m in post.get("media") or [] if m.get("sourceUrl")]

    return {
        "summary": post.get("summary"),
        "topic_type": post.get("topicType"),
        "call_to_action_type": cta.get("actionType"),
        "call_to_action_url": cta.get("url"),
        "event_title": event.get("title"),
        "event_start_date": from_google_date(schedule.get("startDate")),
        "event_end_date": from_google_date(schedule.get("endDate")),
        "offer_coupon_code": offer.get("couponCode"),
        "offer_redeem_url": offer.get("redeemOnlineUrl"),
        "offer_terms": offer.get("termsConditions"),
        "media_urls": media_urls or None,
        "state": post.get("state"),
        "search_url": post.get("searchUrl"),
        "meta": post,
        "google_create_time": parse_google_timestamp(post.get("createTime")),
        "google_update_time": parse_google_timestamp(post.get("updateTime")),
    }
