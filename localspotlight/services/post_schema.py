import logging
from datetime import date, datetime, timedelta, timezone

from .google_business import to_google_date

logger = logging.getLogger(__name__)

DEFAULT_OFFER_TERMS = "Terms and conditions apply"
DEFAULT_EVENT_TITLE = "Special Event"

TOPIC_TYPES = {"WHATS_NEW": "STANDARD", "EVENT": "EVENT", "OFFER": "OFFER"}


def map_post_type(candidate_type: str | None) -> str:
    return TOPIC_TYPES.get(candidate_type or "", "STANDARD")


def _date_value(value) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def transform_post_schema(schema: dict, images: list | None = None, today: date | None = None) -> dict:
    """
    Turn a post candidate's `schema` into a Google local post body.

    EVENT posts without a start date default to tomorrow. Images are not
    attached: Google needs them uploaded through the media API first.
    """
    post_type = schema.get("type")
    post = {
        "languageCode": "en",
        "summary": schema.get("description") or schema.get("body") or "",
        "topicType": map_post_type(post_type),
    }

    if post_type == "EVENT":
        today = today or datetime.now(timezone.utc).date()
        start = _date_value(schema.get("eventStartDate") or schema.get("startDate")) or today + timedelta(days=1)
        event_schedule = {"startDate": to_google_date(start)}
        end = _date_value(schema.get("eventEndDate") or schema.get("endDate"))
        if end:
            event_schedule["endDate"] = to_google_date(end)
        post["event"] = {
            "title": schema.get("title") or schema.get("headline") or DEFAULT_EVENT_TITLE,
            "schedule": event_schedule,
        }
    elif post_type == "OFFER":
        post["offer"] = {
            "couponCode": schema.get("couponCode") or "",
            "redeemOnlineUrl": schema.get("offerUrl") or schema.get("termsUrl") or "",
            "termsConditions": schema.get("terms") or schema.get("offerTerms") or DEFAULT_OFFER_TERMS,
        }

    cta = schema.get("cta") or {}
    if cta.get("action") and cta.get("url"):
        post["callToAction"] = {"actionType": cta["action"], "url": cta["url"]}

    if images:
        logger.info(f"Skipping {len(images)} candidate image(s); media upload is not wired to local posts")

    return post


def gbp_post_fields_from_candidate(schema: dict, images: list | None, google_post: dict) -> dict:
    """Column values for the `gbp_posts` row recorded after a candidate is published."""
    event_schedule = (google_post.get("event") or {}).get("schedule") or {}
    start = event_schedule.get("startDate")
    end = event_schedule.get("endDate")
    offer = google_post.get("offer") or {}

    return {
        "summary": google_post.get("summary") or schema.get("description"),
        "topic_type": google_post.get("topicType") or map_post_type(schema.get("type")),
        "call_to_action_type": (schema.get("cta") or {}).get("action"),
        "call_to_action_url": (schema.get("cta") or {}).get("url"),
        "event_title": (google_post.get("event") or {}).get("title"),
        "event_start_date": date(start["year"], start["month"], start["day"]) if start else None,
        "event_end_date": date(end["year"], end["month"], end["day"]) if end else None,
        "offer_coupon_code": offer.get("couponCode") or None,
        "offer_redeem_url": offer.get("redeemOnlineUrl") or None,
        "offer_terms": offer.get("termsConditions") or None,
        "media_urls": list(images or []),
        "state": google_post.get("state") or "LIVE",
        "search_url": google_post.get("searchUrl"),
        "meta": schema,
    }
