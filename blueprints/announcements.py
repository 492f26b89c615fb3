"""Classroom announcements and read receipts."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify
from flask_login import current_user, login_required

from db_stores import ANNOUNCEMENT_PRIORITIES, AnnouncementStoreDB, ClassroomStoreDB
from helpers import (
    accessible_classroom_or_404,
    current_user_id,
    json_body,
    owned_classroom_or_404,
    str_field,
    student_required,
    teacher_required,
)

bp = Blueprint("announcements", __name__)


@bp.route("/api/classrooms/<int:classroom_id>/announcements", methods=["POST"])
@teacher_required
def create_announcement(classroom_id):
    owned_classroom_or_404(classroom_id)
    data = json_body()
    title = str_field(data, "title")
    priority = data.get("priority") or "normal"
    if not title:
        return jsonify({"error": "Title is required"}), 400
    if priority not in ANNOUNCEMENT_PRIORITIES:
        return jsonify({"error": "Priority must be low, normal or high"}), 400
    announcement = AnnouncementStoreDB.create(
        classroom_id, current_user_id(), title, str_field(data, "content"), priority,
    )
    return jsonify({"announcement": announcement}), 201


@bp.route("/api/classrooms/<int:classroom_id>/announcements")
@login_required
def list_announcements(classroom_id):
    accessible_classroom_or_404(classroom_id)
    student_id = current_user_id() if current_user.is_student else None
    return jsonify({"announcements": AnnouncementStoreDB.for_classroom(classroom_id, student_id)})


@bp.route("/api/announcements/<int:announcement_id>/read", methods=["POST"])
@student_required
def mark_read(announcement_id):
    announcement = AnnouncementStoreDB.get(announcement_id)
    if not announcement or not ClassroomStoreDB.is_enrolled(announcement["classroom_id"], current_user_id()):
        abort(404)
    created = AnnouncementStoreDB.mark_read(announcement_id, current_user_id())
    return jsonify({"success": True, "newly_read": created})


@bp.route("/api/announcements/<int:announcement_id>/reads")
@teacher_required
def announcement_reads(announcement_id):
    announcement = AnnouncementStoreDB.get(announcement_id)
    if not announcement:
        abort(404)
    owned_classroom_or_404(announcement["classroom_id"])
    return jsonify({"announcement": announcement, "reads": AnnouncementStoreDB.reads(announcement_id)})
