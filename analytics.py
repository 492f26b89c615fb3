"""
Classroom analytics — assignment funnel, token flow, engagement.

Views are computed from the live tables over a date window. The
nightly/weekly jobs store them as snapshots in analytics_snapshots
(upserted per classroom, date and type); ad-hoc "recent" views are
cached through cache_backend.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime, time, timedelta

from flask import current_app

from cache_backend import get_cache
from database import get_db

logger = logging.getLogger(__name__)

EARNED_TYPES = ("earned", "awarded", "bonus", "transfer_in")
SPENT_TYPES = ("spent", "penalty", "transfer_out")
SNAPSHOT_TYPES = ("daily", "weekly", "monthly")


def _window(date_from: datetime, date_to: datetime) -> tuple[str, str]:
    return date_from.isoformat(), date_to.isoformat()


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0


class AnalyticsService:

    @staticmethod
    def assignment_funnel(classroom_id: int, date_from: datetime, date_to: datetime) -> list[dict]:
        start, end = _window(date_from, date_to)
        rows = get_db().execute(
            "SELECT a.id AS assignment_id, a.title, a.category, "
            "(SELECT COUNT(*) FROM enrollments e WHERE e.classroom_id = a.classroom_id) AS total_students, "
            "(SELECT COUNT(*) FROM submissions s WHERE s.assignment_id = a.id "
            " AND s.submitted_at BETWEEN ? AND ?) AS submission_count, "
            "(SELECT COUNT(*) FROM submissions s WHERE s.assignment_id = a.id "
            " AND s.status = 'approved' AND s.submitted_at BETWEEN ? AND ?) AS approved_count, "
            "(SELECT COALESCE(AVG(s.tokens_awarded), 0) FROM submissions s WHERE s.assignment_id = a.id "
            " AND s.status = 'approved' AND s.submitted_at BETWEEN ? AND ?) AS average_tokens_awarded "
            "FROM assignments a WHERE a.classroom_id = ? AND a.created_at >= ? "
            "ORDER BY a.created_at, a.id",
            (start, end, start, end, start, end, classroom_id, start),
        ).fetchall()
        funnel = []
        for r in rows:
            row = dict(r)
            row["average_tokens_awarded"] = round(row["average_tokens_awarded"], 2)
            row["completion_rate"] = (
                round(row["submission_count"] / row["total_students"] * 100, 2)
                if row["total_students"] else 0
            )
            row["approval_rate"] = (
                round(row["approved_count"] / row["submission_count"] * 100, 2)
                if row["submission_count"] else 0
            )
            funnel.append(row)
        return funnel

    @staticmethod
    def token_flow_by_student(classroom_id: int, date_from: datetime, date_to: datetime) -> list[dict]:
        start, end = _window(date_from, date_to)
        earned = ",".join("?" * len(EARNED_TYPES))
        spent = ",".join("?" * len(SPENT_TYPES))
        rows = get_db().execute(
            "SELECT u.id AS student_id, u.nickname, u.first_name, u.last_name, "
            "COALESCE(w.current_balance, 0) AS current_balance, "
            "(SELECT COALESCE(SUM(t.amount), 0) FROM token_transactions t WHERE t.wallet_id = w.id "
            f" AND t.transaction_type IN ({earned}) AND t.created_at BETWEEN ? AND ?) AS total_earned, "
            "(SELECT COALESCE(SUM(-t.amount), 0) FROM token_transactions t WHERE t.wallet_id = w.id "
            f" AND t.transaction_type IN ({spent}) AND t.created_at BETWEEN ? AND ?) AS total_spent, "
            "(SELECT COUNT(*) FROM token_transactions t WHERE t.wallet_id = w.id "
            " AND t.created_at BETWEEN ? AND ?) AS transaction_count "
            "FROM enrollments e JOIN users u ON u.id = e.student_id "
            "LEFT JOIN wallets w ON w.student_id = e.student_id AND w.classroom_id = e.classroom_id "
            "WHERE e.classroom_id = ? ORDER BY u.nickname COLLATE NOCASE",
            (*EARNED_TYPES, start, end, *SPENT_TYPES, start, end, start, end, classroom_id),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def calculate_engagement_score(metrics: dict) -> int:
        """Weighted 0-100 score.

        Logins 25, announcement reads 15, tracked hours 20, sessions 10,
        submissions 30 (points at most).
        """
        login_score = min(metrics.get("login_count", 0) * 5, 25)
        read_score = min(metrics.get("announcement_reads", 0) * 3, 15)
        time_score = min(metrics.get("total_time_minutes", 0) / 60 * 2, 20)
        session_score = min(metrics.get("time_session_count", 0) * 2, 10)
        submission_score = min(metrics.get("submission_count", 0) * 6, 30)
        total = login_score + read_score + time_score + session_score + submission_score
        # Halves round up
        return math.floor(total + 0.5)

    @staticmethod
    def engagement_metrics(classroom_id: int, date_from: datetime, date_to: datetime) -> list[dict]:
        start, end = _window(date_from, date_to)
        rows = get_db().execute(
            "SELECT u.id AS student_id, u.nickname, u.first_name, u.last_name, u.last_login, "
            "(SELECT COUNT(*) FROM audit_log l WHERE l.user_id = u.id AND l.action = 'login' "
            " AND l.created_at BETWEEN ? AND ?) AS login_count, "
            "(SELECT COUNT(*) FROM announcement_reads r JOIN announcements a ON a.id = r.announcement_id "
            " WHERE r.student_id = u.id AND a.classroom_id = e.classroom_id "
            " AND r.read_at BETWEEN ? AND ?) AS announcement_reads, "
            "(SELECT COUNT(*) FROM time_sessions t WHERE t.student_id = u.id "
            " AND t.classroom_id = e.classroom_id AND t.status = 'completed' "
            " AND t.start_time BETWEEN ? AND ?) AS time_session_count, "
            "(SELECT COALESCE(SUM(t.duration - t.idle_time), 0) FROM time_sessions t "
            " WHERE t.student_id = u.id AND t.classroom_id = e.classroom_id AND t.status = 'completed' "
            " AND t.start_time BETWEEN ? AND ?) AS total_time_minutes, "
            "(SELECT COUNT(*) FROM submissions s JOIN assignments a ON a.id = s.assignment_id "
            " WHERE s.student_id = u.id AND a.classroom_id = e.classroom_id "
            " AND s.submitted_at BETWEEN ? AND ?) AS submission_count "
            "FROM enrollments e JOIN users u ON u.id = e.student_id "
            "WHERE e.classroom_id = ? ORDER BY u.nickname COLLATE NOCASE",
            (start, end, start, end, start, end, start, end, start, end, classroom_id),
        ).fetchall()
        metrics = []
        for r in rows:
            row = dict(r)
            row["engagement_score"] = AnalyticsService.calculate_engagement_score(row)
            row["average_session_time"] = (
                round(row["total_time_minutes"] / row["time_session_count"], 2)
                if row["time_session_count"] else 0
            )
            metrics.append(row)
        return metrics

    @staticmethod
    def _compose(classroom_id: int, date_from: datetime, date_to: datetime) -> dict:
        funnel = AnalyticsService.assignment_funnel(classroom_id, date_from, date_to)
        flow = AnalyticsService.token_flow_by_student(classroom_id, date_from, date_to)
        engagement = AnalyticsService.engagement_metrics(classroom_id, date_from, date_to)
        return {
            "summary": {
                "total_students": len(engagement),
                "average_engagement": _average([s["engagement_score"] for s in engagement]),
                "total_tokens_earned": sum(s["total_earned"] for s in flow),
                "total_tokens_spent": sum(s["total_spent"] for s in flow),
                "total_assignments": len(funnel),
                "average_completion_rate": _average([a["completion_rate"] for a in funnel]),
            },
            "assignment_funnel": funnel,
            "token_flow": flow,
            "engagement": engagement,
        }

    @staticmethod
    def _store_snapshot(classroom_id: int, snapshot_date: date, analytics_type: str, data: dict) -> None:
        db = get_db()
        now = datetime.now().isoformat()
        payload = json.dumps(data, default=str)
        db.execute(
            "INSERT INTO analytics_snapshots (classroom_id, snapshot_date, analytics_type, data, created_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(classroom_id, snapshot_date, analytics_type) DO UPDATE SET data = ?, created_at = ?",
            (classroom_id, snapshot_date.isoformat(), analytics_type, payload, now, payload, now),
        )
        db.commit()

    @staticmethod
    def generate_daily_snapshot(classroom_id: int, day: date) -> dict:
        date_from, date_to = _day_bounds(day)
        data = {"date": day.isoformat(), **AnalyticsService._compose(classroom_id, date_from, date_to)}
        AnalyticsService._store_snapshot(classroom_id, day, "daily", data)
        return data

    @staticmethod
    def generate_weekly_snapshot(classroom_id: int, week_ending: date) -> dict:
        date_from = datetime.combine(week_ending - timedelta(days=6), time.min)
        date_to = datetime.combine(week_ending, time.max)
        data = {
            "date": week_ending.isoformat(),
            "week_start": (week_ending - timedelta(days=6)).isoformat(),
            **AnalyticsService._compose(classroom_id, date_from, date_to),
        }
        AnalyticsService._store_snapshot(classroom_id, week_ending, "weekly", data)
        return data

    @staticmethod
    def get_cached_analytics(classroom_id: int, analytics_type: str, snapshot_date: date) -> dict | None:
        row = get_db().execute(
            "SELECT data FROM analytics_snapshots WHERE classroom_id = ? AND snapshot_date = ? "
            "AND analytics_type = ?",
            (classroom_id, snapshot_date.isoformat(), analytics_type),
        ).fetchone()
        return json.loads(row["data"]) if row else None

    @staticmethod
    def get_recent_analytics(classroom_id: int, days: int = 7, now: datetime | None = None) -> dict:
        """The three views over the last ``days`` days, cached for ANALYTICS_CACHE_TTL seconds."""
        cache = get_cache()
        key = f"analytics:recent:{classroom_id}:{days}"
        cached = cache.get(key)
        if cached is not None:
            return cached

        now = now or datetime.now()
        data = {
            "period_days": days,
            "date_from": (now - timedelta(days=days)).isoformat(),
            "date_to": now.isoformat(),
            **AnalyticsService._compose(classroom_id, now - timedelta(days=days), now),
        }
        cache.set(key, data, ttl=current_app.config.get("ANALYTICS_CACHE_TTL", 300))
        return data
