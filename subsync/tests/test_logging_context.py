"""Tests for structured logging and request_id propagation."""

import json
import logging

from fastapi.testclient import TestClient

from subsync.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    bind_request_id,
    get_request_id,
    latency_bucket_ms,
    log_event,
)
from subsync.main import app


def test_request_id_in_response_and_logs(caplog):
    client = TestClient(app)
    with caplog.at_level(logging.INFO, logger="subsync"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_request_id_in_error_response():
    client = TestClient(app)
    response = client.get("/v1/does-not-exist")
    rid = response.headers.get("x-request-id")
    assert response.status_code == 404
    assert rid
    payload = response.json()
    assert payload["error"]["request_id"] == rid
    assert payload["error"]["code"] == "not_found"


def test_log_event_truncates_extra_fields(caplog):
    with caplog.at_level(logging.INFO, logger="subsync"):
        log_event("info", "subscription.test", request_id="rid-1", extra={"blob": "x" * 2000})
    record = caplog.records[-1]
    assert record.request_id == "rid-1"
    assert record.blob.endswith("...<truncated>")
    assert len(record.blob) < 600


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("subsync", logging.WARNING, __file__, 1, "Unhandled event type", None, None)
    record.request_id = "rid-2"
    record.event_type = "foo.bar"
    record.error_code = "unhandled_event"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["request_id"] == "rid-2"
    assert payload["event_type"] == "foo.bar"
    assert payload["error_code"] == "unhandled_event"
    assert "user_id" not in payload


def test_pretty_formatter_prefix():
    record = logging.LogRecord("subsync", logging.INFO, __file__, 1, "hello", None, None)
    record.request_id = "rid-3"
    line = PrettyFormatter().format(record)
    assert "[subsync] [rid=rid-3] hello" in line


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(1500) == ">=1000ms"


def test_bind_request_id_restores_previous_value():
    assert get_request_id() is None
    with bind_request_id("rid-outer"):
        with bind_request_id("rid-inner"):
            assert get_request_id() == "rid-inner"
        assert get_request_id() == "rid-outer"
        with bind_request_id(None):
            assert get_request_id() == "rid-outer"
    assert get_request_id() is None
