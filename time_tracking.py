"""Time tracking with anti-cheat checks.

Students clock in to a classroom, the client sends activity heartbeats,
and ending the session converts effective (non-idle) minutes into
tokens. Sessions with no heartbeat for twice the heartbeat timeout are
closed by the cleanup job. Every method takes an optional ``now`` so
callers (and tests) control the clock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from datetime import datetime, timedelta

from flask import current_app

from audit import log_event
from database import get_db
from db_stores import ClassroomStoreDB
from wallet import WalletStoreDB

logger = logging.getLogger(__name__)

ACTIVITIES = ("click", "keypress", "focus", "blur", "scroll", "heartbeat")
END_REASONS = ("manual", "timeout", "idle", "daily_limit", "admin")


def _minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


class TimeTrackingService:
    """Clock-in / clock-out sessions for one app's configuration."""

    def __init__(self, config: dict | None = None):
        cfg = config if config is not None else current_app.config
        self.max_daily_hours = cfg.get("MAX_DAILY_HOURS", 8)
        self.min_session_minutes = cfg.get("MIN_SESSION_MINUTES", 5)
        self.heartbeat_timeout_minutes = cfg.get("HEARTBEAT_TIMEOUT_MINUTES", 5)
        self.max_idle_minutes = cfg.get("MAX_IDLE_MINUTES", 15)
        self.minutes_per_token = cfg.get("MINUTES_PER_TOKEN", 15)

    # ── Hashing ──────────────────────────────────────────

    @staticmethod
    def user_agent_hash(user_agent: str) -> str:
        return hashlib.sha256((user_agent or "").encode()).hexdigest()

    @staticmethod
    def fingerprint_hash(user_agent: str, ip_address: str, metadata: dict | None = None) -> str:
        fingerprint = {"userAgent": user_agent or "", "ipAddress": ip_address or ""}
        fingerprint.update(metadata or {})
        raw = json.dumps(fingerprint, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    # ── Limits ───────────────────────────────────────────

    def _limits(self, classroom_id: int) -> tuple[float, int]:
        """(max daily hours, minutes per token) with classroom setting overrides."""
        classroom = ClassroomStoreDB.get(classroom_id)
        settings = classroom["settings"] if classroom else {}
        hours = settings.get("max_daily_hours", self.max_daily_hours)
        per_token = settings.get("minutes_per_token", self.minutes_per_token)
        try:
            hours = float(hours)
            per_token = int(per_token)
        except (TypeError, ValueError):
            hours, per_token = self.max_daily_hours, self.minutes_per_token
        return hours, max(1, per_token)

    @staticmethod
    def _day_start(now: datetime) -> str:
        return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()

    def minutes_today(self, student_id: int, classroom_id: int, now: datetime | None = None) -> int:
        """Minutes of completed sessions started today in the classroom."""
        now = now or datetime.now()
        row = get_db().execute(
            "SELECT COALESCE(SUM(duration - idle_time), 0) AS total FROM time_sessions "
            "WHERE student_id = ? AND classroom_id = ? AND status = 'completed' AND start_time >= ?",
            (student_id, classroom_id, self._day_start(now)),
        ).fetchone()
        return row["total"]

    # ── Sessions ─────────────────────────────────────────

    def get_session(self, session_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM time_sessions WHERE id = ?", (session_id,)).fetchone()
        return dict(row) if row else None

    def get_active_session(self, student_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM time_sessions WHERE student_id = ? AND status = 'active' "
            "ORDER BY start_time DESC LIMIT 1",
            (student_id,),
        ).fetchone()
        return dict(row) if row else None

    def can_start_session(self, student_id: int, classroom_id: int,
                          now: datetime | None = None) -> dict:
        active = self.get_active_session(student_id)
        if active:
            return {
                "can_start": False,
                "reason": "Student already has an active session",
                "active_session": active,
            }

        max_hours, _ = self._limits(classroom_id)
        hours_today = self.minutes_today(student_id, classroom_id, now) / 60
        if hours_today >= max_hours:
            return {
                "can_start": False,
                "reason": f"Daily limit of {max_hours:g} hours reached",
                "hours_today": hours_today,
            }
        return {"can_start": True, "hours_today": hours_today}

    def start_session(self, student_id: int, classroom_id: int, ip_address: str = "",
                      user_agent: str = "", metadata: dict | None = None,
                      now: datetime | None = None) -> dict:
        now = now or datetime.now()
        check = self.can_start_session(student_id, classroom_id, now)
        if not check["can_start"]:
            return {"success": False, "error": check["reason"], **{
                k: v for k, v in check.items() if k in ("hours_today", "active_session")
            }}

        ua_hash = self.user_agent_hash(user_agent)
        db = get_db()
        cur = db.execute(
            "INSERT INTO time_sessions (student_id, classroom_id, start_time, last_heartbeat, status, "
            "ip_address, user_agent_hash, fingerprint_hash, updated_at) "
            "VALUES (?, ?, ?, ?, 'active', ?, ?, ?, ?)",
            (student_id, classroom_id, now.isoformat(), now.isoformat(), ip_address or "",
             ua_hash, self.fingerprint_hash(user_agent, ip_address, metadata), now.isoformat()),
        )
        db.commit()
        log_event(
            "time_session_start", student_id, f"ip={ip_address} ua_hash={ua_hash[:12]}",
            classroom_id=classroom_id, entity_type="time_session", entity_id=cur.lastrowid,
        )
        return {"success": True, "session_id": cur.lastrowid, "session": self.get_session(cur.lastrowid)}

    def update_heartbeat(self, session_id: int, activity: str = "heartbeat",
                         metadata: dict | None = None, now: datetime | None = None) -> dict:
        if activity not in ACTIVITIES:
            return {"success": False, "error": f"Unknown activity: {activity}"}
        session = self.get_session(session_id)
        if not session:
            return {"success": False, "error": "Session not found", "not_found": True}
        if session["status"] != "active":
            return {"success": False, "error": "Session is not active"}

        now = now or datetime.now()
        # Idle time is measured against the previous heartbeat, before it is replaced
        previous = datetime.fromisoformat(session["last_heartbeat"] or session["start_time"])
        idle_minutes = (now - previous).total_seconds() / 60

        db = get_db()
        db.execute(
            "UPDATE time_sessions SET last_heartbeat = ?, updated_at = ? WHERE id = ?",
            (now.isoformat(), now.isoformat(), session_id),
        )
        db.execute(
            "INSERT INTO session_heartbeats (session_id, timestamp, activity, metadata) VALUES (?, ?, ?, ?)",
            (session_id, now.isoformat(), activity, json.dumps(metadata or {}, default=str)),
        )
        db.commit()

        result = {"success": True, "idle_minutes": round(idle_minutes, 1)}
        if idle_minutes > self.max_idle_minutes:
            result["warning"] = f"Session has been idle for {math.floor(idle_minutes + 0.5)} minutes"
        return result

    def idle_minutes(self, session: dict) -> int:
        """Sum of (gap - timeout) over activity gaps longer than the heartbeat timeout."""
        rows = get_db().execute(
            "SELECT timestamp FROM session_heartbeats WHERE session_id = ? ORDER BY timestamp",
            (session["id"],),
        ).fetchall()
        idle = 0
        last = datetime.fromisoformat(session["start_time"])
        for row in rows:
            beat = datetime.fromisoformat(row["timestamp"])
            gap = (beat - last).total_seconds() / 60
            if gap > self.heartbeat_timeout_minutes:
                idle += int(gap) - self.heartbeat_timeout_minutes
            last = beat
        return idle

    def end_session(self, session_id: int, reason: str = "manual", terminated_by: int | None = None,
                    now: datetime | None = None, end_time: datetime | None = None) -> dict:
        if reason not in END_REASONS:
            return {"success": False, "error": f"Unknown end reason: {reason}"}
        session = self.get_session(session_id)
        if not session:
            return {"success": False, "error": "Session not found", "not_found": True}
        if session["status"] != "active":
            return {"success": False, "error": "Session has already ended"}

        now = now or datetime.now()
        end = end_time or now
        start = datetime.fromisoformat(session["start_time"])
        duration = max(0, _minutes_between(start, end))
        idle = self.idle_minutes(session)
        effective = max(0, duration - idle)
        status = "completed" if effective >= self.min_session_minutes else "abandoned"

        max_hours, per_token = self._limits(session["classroom_id"])
        tokens = 0
        if status == "completed":
            used = self.minutes_today(session["student_id"], session["classroom_id"], start)
            remaining = max(0, int(max_hours * 60) - used)
            if effective > remaining:
                if remaining < self.min_session_minutes:
                    status = "abandoned"
                else:
                    effective = remaining
                    duration = min(duration, remaining + idle)
        if status == "completed":
            tokens = effective // per_token

        db = get_db()
        try:
            db.execute(
                "UPDATE time_sessions SET end_time = ?, duration = ?, idle_time = ?, status = ?, "
                "tokens_earned = ?, termination_reason = ?, terminated_by = ?, updated_at = ? "
                "WHERE id = ?",
                (end.isoformat(), duration, idle, status, tokens, reason, terminated_by,
                 now.isoformat(), session_id),
            )
            if tokens > 0:
                WalletStoreDB(session["student_id"], session["classroom_id"]).credit(
                    tokens, tx_type="earned", category="Time Tracking",
                    description=f"Tracked {effective} minutes",
                    reference_type="time_session", reference_id=session_id,
                    created_by=terminated_by, commit=False,
                )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to end time session %s", session_id)
            raise

        log_event(
            "time_session_end", session["student_id"],
            f"reason={reason} duration={duration} idle={idle} tokens={tokens} status={status}",
            classroom_id=session["classroom_id"], entity_type="time_session", entity_id=session_id,
        )
        return {
            "success": True,
            "status": status,
            "duration": duration,
            "idle_time": idle,
            "effective_minutes": effective,
            "tokens_earned": tokens,
        }

    def cleanup_abandoned_sessions(self, now: datetime | None = None) -> int:
        """End every active session whose last heartbeat is older than twice the timeout."""
        now = now or datetime.now()
        cutoff = (now - timedelta(minutes=self.heartbeat_timeout_minutes * 2)).isoformat()
        rows = get_db().execute(
            "SELECT id, last_heartbeat, start_time FROM time_sessions "
            "WHERE status = 'active' AND last_heartbeat < ?",
            (cutoff,),
        ).fetchall()
        cleaned = 0
        for row in rows:
            last = datetime.fromisoformat(row["last_heartbeat"] or row["start_time"])
            result = self.end_session(row["id"], "timeout", now=now, end_time=last)
            if result["success"]:
                cleaned += 1
        if cleaned:
            logger.info("Closed %d abandoned time sessions", cleaned)
        return cleaned

    def detect_suspicious_activity(self, classroom_id: int, hours_back: int = 24,
                                   now: datetime | None = None) -> dict:
        now = now or datetime.now()
        cutoff = (now - timedelta(hours=hours_back)).isoformat()
        db = get_db()
        ip_rows = db.execute(
            "SELECT t.ip_address, COUNT(DISTINCT t.student_id) AS student_count, "
            "GROUP_CONCAT(DISTINCT u.nickname) AS students "
            "FROM time_sessions t JOIN users u ON u.id = t.student_id "
            "WHERE t.classroom_id = ? AND t.start_time >= ? AND t.ip_address != '' "
            "GROUP BY t.ip_address HAVING COUNT(DISTINCT t.student_id) > 1",
            (classroom_id, cutoff),
        ).fetchall()
        session_rows = db.execute(
            "SELECT * FROM (SELECT t.id AS session_id, t.student_id, u.nickname, t.duration, "
            "(SELECT COUNT(*) FROM session_heartbeats h WHERE h.session_id = t.id) AS heartbeat_count "
            "FROM time_sessions t JOIN users u ON u.id = t.student_id "
            "WHERE t.classroom_id = ? AND t.start_time >= ? AND t.duration > 30) "
            "WHERE heartbeat_count < duration / 10.0 ORDER BY duration DESC",
            (classroom_id, cutoff),
        ).fetchall()
        return {
            "ip_conflicts": [
                {
                    "ip_address": r["ip_address"],
                    "student_count": r["student_count"],
                    "students": sorted((r["students"] or "").split(",")),
                }
                for r in ip_rows
            ],
            "suspicious_sessions": [dict(r) for r in session_rows],
        }

    def session_history(self, student_id: int, classroom_id: int, limit: int = 20) -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM time_sessions WHERE student_id = ? AND classroom_id = ? "
            "ORDER BY start_time DESC LIMIT ?",
            (student_id, classroom_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def today_summary(self, student_id: int, classroom_id: int, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        row = get_db().execute(
            "SELECT COUNT(*) AS session_count, COALESCE(SUM(duration - idle_time), 0) AS minutes, "
            "COALESCE(SUM(tokens_earned), 0) AS tokens "
            "FROM time_sessions WHERE student_id = ? AND classroom_id = ? "
            "AND status = 'completed' AND start_time >= ?",
            (student_id, classroom_id, self._day_start(now)),
        ).fetchone()
        max_hours, _ = self._limits(classroom_id)
        return {
            "session_count": row["session_count"],
            "minutes_today": row["minutes"],
            "tokens_today": row["tokens"],
            "max_daily_minutes": int(max_hours * 60),
            "remaining_minutes": max(0, int(max_hours * 60) - row["minutes"]),
            "active_session": self.get_active_session(student_id),
        }
