"""Tests for request ids and the JSON log formatter."""

from __future__ import annotations

import json
import logging


def test_request_id_is_echoed(client):
    resp = client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"


def test_request_id_is_generated(client):
    assert len(client.get("/api/health").headers["X-Request-ID"]) == 12


def test_json_formatter_omits_missing_request_id():
    from logging_config import JSONFormatter, RequestIdFilter
    record = logging.LogRecord("wallet", logging.INFO, __file__, 1, "awarded %d", (5,), None)
    RequestIdFilter().filter(record)
    payload = json.loads(JSONFormatter().format(record))
    assert payload["msg"] == "awarded 5"
    assert payload["logger"] == "wallet"
    assert "request_id" not in payload


def test_json_formatter_keeps_request_id():
    from logging_config import JSONFormatter
    record = logging.LogRecord("app", logging.WARNING, __file__, 1, "slow", (), None)
    record.request_id = "req-9"
    payload = json.loads(JSONFormatter().format(record))
    assert (payload["level"], payload["request_id"]) == ("WARNING", "req-9")
