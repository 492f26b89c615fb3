"""Classroom analytics routes (owning teacher only)."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import Blueprint, jsonify, request

from analytics import AnalyticsService
from helpers import int_field, owned_classroom_or_404, teacher_required

bp = Blueprint("analytics", __name__)


def _window(default_days: int = 30) -> tuple[int, datetime, datetime]:
    days = int_field(request.args, "days", default_days, minimum=1)
    now = datetime.now()
    return days, now - timedelta(days=days), now


@bp.route("/api/analytics/classroom/<int:classroom_id>")
@teacher_required
def classroom_analytics(classroom_id):
    owned_classroom_or_404(classroom_id)
    period = int_field(request.args, "period", 7, minimum=1)
    kind = request.args.get("type", "recent")
    if kind not in ("recent", "cached"):
        return jsonify({"error": "type must be 'recent' or 'cached'"}), 400

    if kind == "cached":
        snapshot = AnalyticsService.get_cached_analytics(
            classroom_id, "daily", date.today() - timedelta(days=1),
        )
        if snapshot is not None:
            return jsonify({"type": "cached", "analytics": snapshot})
    return jsonify({"type": "recent", "analytics": AnalyticsService.get_recent_analytics(classroom_id, period)})


@bp.route("/api/analytics/classroom/<int:classroom_id>/assignment-funnel")
@teacher_required
def assignment_funnel(classroom_id):
    owned_classroom_or_404(classroom_id)
    days, date_from, date_to = _window()
    return jsonify({
        "days": days,
        "assignments": AnalyticsService.assignment_funnel(classroom_id, date_from, date_to),
    })


@bp.route("/api/analytics/classroom/<int:classroom_id>/token-flow")
@teacher_required
def token_flow(classroom_id):
    owned_classroom_or_404(classroom_id)
    days, date_from, date_to = _window()
    return jsonify({
        "days": days,
        "students": AnalyticsService.token_flow_by_student(classroom_id, date_from, date_to),
    })


@bp.route("/api/analytics/classroom/<int:classroom_id>/engagement")
@teacher_required
def engagement(classroom_id):
    owned_classroom_or_404(classroom_id)
    days, date_from, date_to = _window()
    return jsonify({
        "days": days,
        "students": AnalyticsService.engagement_metrics(classroom_id, date_from, date_to),
    })
