from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from localspotlight.services.google_business import (
    GoogleApiError,
    extract_account_id,
    extract_location_id,
    from_google_date,
    list_reviews,
    parse_google_timestamp,
    parse_star_rating,
)


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.content = b"{}"
    resp.json.return_value = body or {}
    resp.text = str(body)
    return resp


def test_resource_ids():
    assert extract_account_id("accounts/123") == "123"
    assert extract_account_id("123") == "123"
    assert extract_location_id("accounts/1/locations/456") == "456"
    assert extract_location_id("locations/456") == "456"


def test_star_rating():
    assert parse_star_rating("FIVE") == 5
    assert parse_star_rating("two") == 2
    assert parse_star_rating(4) == 4
    assert parse_star_rating("STAR_RATING_UNSPECIFIED") is None
    assert parse_star_rating(None) is None


def test_google_dates_and_timestamps():
    assert from_google_date({"year": 2026, "month": 2, "day": 28}) == date(2026, 2, 28)
    assert from_google_date({"year": 2026, "month": 0, "day": 0}) is None
    assert parse_google_timestamp("2026-03-01T10:00:00.123456789Z") == datetime(
        2026, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc
    )
    assert parse_google_timestamp("not a time") is None


def test_list_reviews_follows_page_tokens():
    pages = [
        _response(body={"reviews": [{"reviewId": "r1"}], "nextPageToken": "next"}),
        _response(body={"reviews": [{"reviewId": "r2"}]}),
    ]
    with patch("localspotlight.services.google_business.requests.get", side_effect=pages) as get:
        reviews = list_reviews("token", "111", "222")

    assert [r["reviewId"] for r in reviews] == ["r1", "r2"]
    assert get.call_count == 2
    assert get.call_args.args[0] == "https://mybusiness.googleapis.com/v4/accounts/111/locations/222/reviews"
    assert get.call_args.kwargs["headers"] == {"Authorization": "Bearer token"}


def test_api_error_carries_google_message():
    error = _response(status=403, body={"error": {"message": "The caller does not have permission"}})
    with patch("localspotlight.services.google_business.requests.get", return_value=error):
        with pytest.raises(GoogleApiError) as exc:
            list_reviews("token", "111", "222")

    assert exc.value.status == 403
    assert "does not have permission" in str(exc.value)
