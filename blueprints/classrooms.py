"""Classroom, roster, stats and leaderboard routes."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from auth import create_student_account
from db_stores import ClassroomStoreDB, UserStoreDB
from helpers import (
    accessible_classroom_or_404,
    current_user_id,
    int_field,
    json_body,
    owned_classroom_or_404,
    str_field,
    student_required,
    teacher_required,
)

bp = Blueprint("classrooms", __name__)


# ── Classrooms ─────────────────────────────────────────────

@bp.route("/api/classrooms", methods=["POST"])
@teacher_required
def create_classroom():
    data = json_body()
    name = str_field(data, "name")
    if not name:
        return jsonify({"error": "Classroom name is required"}), 400
    classroom = ClassroomStoreDB.create(current_user_id(), name, str_field(data, "description"))
    log_event("classroom_created", current_user_id(), f"code={classroom['code']}",
              classroom_id=classroom["id"], entity_type="classroom", entity_id=classroom["id"])
    return jsonify({"classroom": classroom}), 201


@bp.route("/api/classrooms")
@login_required
def list_classrooms():
    if current_user.is_teacher:
        classrooms = ClassroomStoreDB.teacher_classrooms(current_user_id())
    else:
        classrooms = ClassroomStoreDB.student_classrooms(current_user_id())
    return jsonify({"classrooms": classrooms})


@bp.route("/api/classrooms/<int:classroom_id>")
@login_required
def get_classroom(classroom_id):
    return jsonify({"classroom": accessible_classroom_or_404(classroom_id)})


@bp.route("/api/classrooms/<int:classroom_id>", methods=["PUT"])
@teacher_required
def update_classroom(classroom_id):
    owned_classroom_or_404(classroom_id)
    data = json_body()
    if "name" in data and not str_field(data, "name"):
        return jsonify({"error": "Classroom name cannot be empty"}), 400
    classroom = ClassroomStoreDB.update(classroom_id, data)
    return jsonify({"classroom": classroom})


@bp.route("/api/classrooms/<int:classroom_id>/settings", methods=["PUT"])
@teacher_required
def update_settings(classroom_id):
    owned_classroom_or_404(classroom_id)
    data = json_body()
    if "max_daily_hours" in data:
        hours = data["max_daily_hours"]
        if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0:
            return jsonify({"error": "max_daily_hours must be a positive number"}), 400
    if "minutes_per_token" in data:
        int_field(data, "minutes_per_token", minimum=1)
    settings = ClassroomStoreDB.update_settings(classroom_id, data)
    return jsonify({"settings": settings})


@bp.route("/api/classrooms/join", methods=["POST"])
@student_required
def join_with_code():
    data = json_body()
    classroom = ClassroomStoreDB.get_by_code(str_field(data, "classroom_code"))
    if not classroom or not classroom["is_active"]:
        return jsonify({"error": "Invalid classroom code."}), 400
    if ClassroomStoreDB.is_enrolled(classroom["id"], current_user_id()):
        return jsonify({"error": "You are already in this classroom."}), 400
    if UserStoreDB.nickname_taken(classroom["id"], current_user.nickname or "", current_user_id()):
        return jsonify({"error": "That nickname is already taken in this classroom."}), 400
    ClassroomStoreDB.enroll(classroom["id"], current_user_id())
    log_event("join_classroom", current_user_id(), f"code={classroom['code']}", classroom_id=classroom["id"])
    return jsonify({"classroom": classroom}), 201


# ── Roster ─────────────────────────────────────────────────

@bp.route("/api/classrooms/<int:classroom_id>/students")
@teacher_required
def roster(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"students": ClassroomStoreDB.roster(classroom_id)})


def _add_student(classroom_id: int, data: dict) -> dict:
    if not isinstance(data, dict):
        return {"success": False, "error": "Each student must be an object"}
    try:
        first_name, last_name = str_field(data, "first_name"), str_field(data, "last_name")
    except ValueError as e:
        return {"success": False, "error": str(e)}
    return create_student_account(classroom_id, data.get("nickname"), data.get("pin"), first_name, last_name)


@bp.route("/api/classrooms/<int:classroom_id>/students", methods=["POST"])
@teacher_required
def add_student(classroom_id):
    owned_classroom_or_404(classroom_id)
    result = _add_student(classroom_id, json_body())
    if not result["success"]:
        return jsonify({"error": result["error"]}), 400
    student = result["user"]
    log_event("student_added", current_user_id(), f"student_id={student.id}",
              classroom_id=classroom_id, entity_type="user", entity_id=student.id)
    return jsonify({"student": student.to_dict()}), 201


@bp.route("/api/classrooms/<int:classroom_id>/students/bulk", methods=["POST"])
@teacher_required
def add_students_bulk(classroom_id):
    owned_classroom_or_404(classroom_id)
    students = json_body().get("students")
    if not isinstance(students, list) or not students:
        return jsonify({"error": "students must be a non-empty list"}), 400

    created, failed = [], []
    for entry in students:
        result = _add_student(classroom_id, entry)
        if result["success"]:
            created.append(result["user"].to_dict())
        else:
            nickname = entry.get("nickname") if isinstance(entry, dict) else None
            failed.append({"nickname": nickname, "error": result["error"]})
    log_event("students_bulk_added", current_user_id(), f"created={len(created)} failed={len(failed)}",
              classroom_id=classroom_id)
    return jsonify({"created": created, "failed": failed}), 201 if created else 400


@bp.route("/api/classrooms/<int:classroom_id>/students/<int:student_id>", methods=["DELETE"])
@teacher_required
def remove_student(classroom_id, student_id):
    owned_classroom_or_404(classroom_id)
    if not ClassroomStoreDB.unenroll(classroom_id, student_id):
        abort(404)
    log_event("student_removed", current_user_id(), f"student_id={student_id}",
              classroom_id=classroom_id, entity_type="user", entity_id=student_id)
    return jsonify({"success": True})


# ── Stats & leaderboard ────────────────────────────────────

@bp.route("/api/classrooms/<int:classroom_id>/stats")
@teacher_required
def classroom_stats(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"stats": ClassroomStoreDB.stats(classroom_id)})


@bp.route("/api/classrooms/<int:classroom_id>/leaderboard")
@login_required
def leaderboard(classroom_id):
    accessible_classroom_or_404(classroom_id)
    limit = min(int_field(request.args, "limit", 10, minimum=1), 100)
    return jsonify({"leaderboard": ClassroomStoreDB.leaderboard(classroom_id, limit)})
