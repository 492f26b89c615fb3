"""Time-tracking routes: clock in, heartbeats, clock out, teacher oversight."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from db_stores import ClassroomStoreDB
from helpers import (
    current_user_id,
    int_field,
    json_body,
    owned_classroom_or_404,
    result_response,
    student_required,
    teacher_required,
)
from time_tracking import TimeTrackingService

bp = Blueprint("time_tracking", __name__)

STUDENT_END_REASONS = ("manual", "idle", "daily_limit")


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or ""


def _enrolled_or_404(classroom_id: int) -> None:
    if not ClassroomStoreDB.is_enrolled(classroom_id, current_user_id()):
        abort(404)


def _own_session_or_404(service: TimeTrackingService, session_id: int) -> dict:
    session = service.get_session(session_id)
    if not session or session["student_id"] != current_user_id():
        abort(404)
    return session


# ── Student ────────────────────────────────────────────────

@bp.route("/api/time-tracking/start", methods=["POST"])
@student_required
def start():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    _enrolled_or_404(classroom_id)
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    result = TimeTrackingService().start_session(
        current_user_id(), classroom_id, _client_ip(),
        request.headers.get("User-Agent", ""), metadata,
    )
    return result_response(result, 201)


@bp.route("/api/time-tracking/heartbeat", methods=["POST"])
@student_required
def heartbeat():
    data = json_body()
    service = TimeTrackingService()
    session_id = int_field(data, "session_id")
    _own_session_or_404(service, session_id)
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return result_response(service.update_heartbeat(session_id, data.get("activity") or "heartbeat", metadata))


@bp.route("/api/time-tracking/end", methods=["POST"])
@student_required
def end():
    data = json_body()
    service = TimeTrackingService()
    session_id = int_field(data, "session_id")
    _own_session_or_404(service, session_id)
    reason = data.get("reason") or "manual"
    if reason not in STUDENT_END_REASONS:
        return jsonify({"error": f"Unknown end reason: {reason}"}), 400
    return result_response(service.end_session(session_id, reason))


@bp.route("/api/time-tracking/active")
@student_required
def active():
    return jsonify({"session": TimeTrackingService().get_active_session(current_user_id())})


@bp.route("/api/time-tracking/today/<int:classroom_id>")
@student_required
def today(classroom_id):
    _enrolled_or_404(classroom_id)
    return jsonify(TimeTrackingService().today_summary(current_user_id(), classroom_id))


@bp.route("/api/time-tracking/history/<int:classroom_id>")
@student_required
def history(classroom_id):
    _enrolled_or_404(classroom_id)
    limit = min(int_field(request.args, "limit", 20, minimum=1), 100)
    return jsonify({"sessions": TimeTrackingService().session_history(current_user_id(), classroom_id, limit)})


# ── Teacher ────────────────────────────────────────────────

@bp.route("/api/classrooms/<int:classroom_id>/time-tracking/suspicious")
@teacher_required
def suspicious(classroom_id):
    owned_classroom_or_404(classroom_id)
    hours = int_field(request.args, "hours", 24, minimum=1)
    return jsonify(TimeTrackingService().detect_suspicious_activity(classroom_id, hours))


@bp.route("/api/time-tracking/<int:session_id>/terminate", methods=["POST"])
@teacher_required
def terminate(session_id):
    service = TimeTrackingService()
    session = service.get_session(session_id)
    if not session:
        abort(404)
    owned_classroom_or_404(session["classroom_id"])
    return result_response(service.end_session(session_id, "admin", terminated_by=current_user_id()))
