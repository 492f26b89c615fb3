"""
Audit logging — records security-relevant and economy events.

Events are written to both the audit_log table and structured logging.
Login events double as the login count for engagement analytics.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from flask import has_request_context, request

from database import get_db

logger = logging.getLogger(__name__)


def log_event(
    action: str,
    user_id: int | None = None,
    detail: str = "",
    classroom_id: int | None = None,
    entity_type: str = "",
    entity_id: int | None = None,
) -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip = (request.remote_addr or "") if has_request_context() else ""
    ua = request.headers.get("User-Agent", "") if has_request_context() else ""
    now = datetime.now().isoformat()

    try:
        db = get_db()
        db.execute(
            "INSERT INTO audit_log (user_id, classroom_id, action, entity_type, entity_id, "
            "detail, ip_address, user_agent, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, classroom_id, action, entity_type, entity_id, detail, ip, ua, now),
        )
        db.commit()
    except sqlite3.Error:
        # Audit failures never break the request
        logger.warning("audit insert failed for action=%s", action, exc_info=True)

    logger.info(
        "audit: %s user_id=%s classroom_id=%s detail=%s ip=%s",
        action, user_id, classroom_id, detail, ip,
    )
