import json
import logging

from localspotlight.logging_setup import RedactingJsonFormatter, is_sensitive, log_event, request_id_var


def _format(**extra):
    formatter = RedactingJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord("localspotlight-console", logging.INFO, __file__, 1, "evt", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_secrets_are_redacted():
    line = _format(refresh_token="1//abc", api_key="sk-123", location_id="loc-1")
    assert line["refresh_token"] == "***REDACTED***"
    assert line["api_key"] == "***REDACTED***"
    assert line["location_id"] == "loc-1"
    assert line["level"] == "INFO"
    assert line["service_name"] == "localspotlight-console"


def test_request_id_is_attached():
    token = request_id_var.set("req-42")
    try:
        line = _format()
    finally:
        request_id_var.reset(token)
    assert line["request_id"] == "req-42"


def test_log_event_drops_empty_fields(caplog):
    with caplog.at_level(logging.INFO, logger="localspotlight-console"):
        log_event("post_created", location_id="loc-1", error=None)

    record = caplog.records[-1]
    assert record.event == "post_created"
    assert record.location_id == "loc-1"
    assert not hasattr(record, "error")


def test_sensitive_field_names():
    assert is_sensitive("X-Authorization")
    assert is_sensitive("session_cookie")
    assert not is_sensitive("location_id")
