from datetime import date

from localspotlight.services.post_schema import (
    DEFAULT_OFFER_TERMS,
    gbp_post_fields_from_candidate,
    map_post_type,
    transform_post_schema,
)


def test_map_post_type():
    assert map_post_type("WHATS_NEW") == "STANDARD"
    assert map_post_type("EVENT") == "EVENT"
    assert map_post_type("OFFER") == "OFFER"
    assert map_post_type(None) == "STANDARD"
    assert map_post_type("SOMETHING_ELSE") == "STANDARD"


def test_standard_post_with_call_to_action():
    body = transform_post_schema({
        "type": "WHATS_NEW",
        "description": "New seasonal menu",
        "cta": {"action": "BOOK", "url": "https://example.com/book"},
    })
    assert body == {
        "languageCode": "en",
        "summary": "New seasonal menu",
        "topicType": "STANDARD",
        "callToAction": {"actionType": "BOOK", "url": "https://example.com/book"},
    }


def test_cta_without_url_is_dropped():
    body = transform_post_schema({"description": "Hi", "cta": {"action": "CALL"}})
    assert "callToAction" not in body


def test_event_defaults_start_to_tomorrow():
    body = transform_post_schema({"type": "EVENT", "body": "Tasting night"}, today=date(2026, 12, 31))
    assert body["event"]["title"] == "Special Event"
    assert body["event"]["schedule"] == {"startDate": {"year": 2027, "month": 1, "day": 1}}


def test_event_with_dates():
    body = transform_post_schema({
        "type": "EVENT",
        "title": "Bread class",
        "eventStartDate": "2026-05-02T09:00:00Z",
        "eventEndDate": "2026-05-03",
    })
    assert body["event"]["schedule"] == {
        "startDate": {"year": 2026, "month": 5, "day": 2},
        "endDate": {"year": 2026, "month": 5, "day": 3},
    }


def test_offer_defaults_terms():
    body = transform_post_schema({"type": "OFFER", "description": "2 for 1"})
    assert body["offer"]["termsConditions"] == DEFAULT_OFFER_TERMS


def test_images_are_not_attached():
    body = transform_post_schema({"description": "Hi"}, images=["https://img.example.com/1.png"])
    assert "media" not in body


def test_post_fields_from_published_event():
    google_post = {
        "name": "accounts/1/locations/2/localPosts/3",
        "summary": "Tasting night",
        "topicType": "EVENT",
        "event": {"title": "Tasting", "schedule": {"startDate": {"year": 2026, "month": 6, "day": 1}}},
    }
    fields = gbp_post_fields_from_candidate({"type": "EVENT"}, ["https://img/1.png"], google_post)
    assert fields["event_title"] == "Tasting"
    assert fields["event_start_date"] == date(2026, 6, 1)
    assert fields["event_end_date"] is None
    assert fields["media_urls"] == ["https://img/1.png"]
    assert fields["state"] == "LIVE"
