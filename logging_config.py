"""
Log setup for the API and its background jobs.

LOG_FORMAT=json writes one JSON object per line; anything else writes
plain text. Each request gets an id (taken from X-Request-ID when the
client sends one) that is echoed back in the response header and stamped
on every record logged while the request runs.
"""

from __future__ import annotations

import json
import logging
import time
import uuid

from flask import Flask, g, has_request_context, request

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = g.get("request_id", "-") if has_request_context() else "-"
        return True


class JSONFormatter(logging.Formatter):
    """One line per record; request_id only when there is one."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if getattr(record, "request_id", "-") != "-":
            payload["request_id"] = record.request_id
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def init_logging(app: Flask) -> None:
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()

    stream = logging.StreamHandler()
    stream.addFilter(RequestIdFilter())
    if app.config.get("LOG_FORMAT", "text") == "json":
        stream.setFormatter(JSONFormatter())
    else:
        stream.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(stream)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Third-party chatter only at WARNING and above
    for name in ("werkzeug", "apscheduler"):
        logging.getLogger(name).setLevel(logging.WARNING)

    @app.before_request
    def _start_request_clock():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.request_start = time.perf_counter()

    @app.after_request
    def _access_log(response):
        elapsed = (time.perf_counter() - g.get("request_start", time.perf_counter())) * 1000
        response.headers["X-Request-ID"] = g.get("request_id", "-")
        app.logger.info("%s %s -> %d in %.0fms", request.method, request.path,
                        response.status_code, elapsed)
        return response
