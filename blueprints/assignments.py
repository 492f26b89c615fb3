"""Assignment and submission routes."""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from db_stores import AssignmentStoreDB, ClassroomStoreDB, SubmissionStoreDB
from helpers import (
    accessible_classroom_or_404,
    current_user_id,
    int_field,
    json_body,
    owned_classroom_or_404,
    result_response,
    str_field,
    student_required,
    teacher_required,
)

bp = Blueprint("assignments", __name__)


def _assignment_fields(data: dict, partial: bool = False) -> dict:
    """Validated assignment fields from a request body. Raises ValueError."""
    fields = {}
    if "title" in data or not partial:
        title = str_field(data, "title")
        if not title:
            raise ValueError("Assignment title is required")
        fields["title"] = title
    for key in ("description", "category"):
        if key in data:
            fields[key] = str_field(data, key)
    if "token_reward" in data or not partial:
        fields["token_reward"] = int_field(data, "token_reward", 0, minimum=0)
    if "due_date" in data:
        due = str_field(data, "due_date")
        if due:
            try:
                datetime.fromisoformat(due)
            except ValueError:
                raise ValueError("due_date must be an ISO date or datetime") from None
        fields["due_date"] = due
    if "is_active" in data:
        fields["is_active"] = int(bool(data["is_active"]))
    return fields


def _owned_assignment_or_404(assignment_id: int) -> dict:
    assignment = AssignmentStoreDB.get(assignment_id)
    if not assignment:
        abort(404)
    owned_classroom_or_404(assignment["classroom_id"])
    return assignment


# ── Assignments ────────────────────────────────────────────

@bp.route("/api/assignments", methods=["POST"])
@teacher_required
def create_assignment():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)
    fields = _assignment_fields(data)
    fields.pop("is_active", None)
    assignment = AssignmentStoreDB.create(classroom_id, current_user_id(), **fields)
    log_event("assignment_created", current_user_id(), assignment["title"],
              classroom_id=classroom_id, entity_type="assignment", entity_id=assignment["id"])
    return jsonify({"assignment": assignment}), 201


@bp.route("/api/assignments/<int:assignment_id>", methods=["PUT"])
@teacher_required
def update_assignment(assignment_id):
    _owned_assignment_or_404(assignment_id)
    assignment = AssignmentStoreDB.update(assignment_id, _assignment_fields(json_body(), partial=True))
    return jsonify({"assignment": assignment})


@bp.route("/api/assignments/<int:assignment_id>", methods=["DELETE"])
@teacher_required
def delete_assignment(assignment_id):
    assignment = _owned_assignment_or_404(assignment_id)
    AssignmentStoreDB.deactivate(assignment_id)
    log_event("assignment_deactivated", current_user_id(), assignment["title"],
              classroom_id=assignment["classroom_id"], entity_type="assignment", entity_id=assignment_id)
    return jsonify({"success": True})


@bp.route("/api/assignments/<int:assignment_id>")
@login_required
def get_assignment(assignment_id):
    assignment = AssignmentStoreDB.get(assignment_id)
    if not assignment:
        abort(404)
    accessible_classroom_or_404(assignment["classroom_id"])
    if current_user.is_student and not assignment["is_active"]:
        abort(404)
    return jsonify({"assignment": assignment})


@bp.route("/api/classrooms/<int:classroom_id>/assignments")
@login_required
def classroom_assignments(classroom_id):
    accessible_classroom_or_404(classroom_id)
    if current_user.is_student:
        assignments = AssignmentStoreDB.for_student(classroom_id, current_user_id())
    else:
        assignments = AssignmentStoreDB.for_classroom(classroom_id)
    return jsonify({"assignments": assignments})


# ── Submissions ────────────────────────────────────────────

@bp.route("/api/assignments/<int:assignment_id>/submissions", methods=["POST"])
@student_required
def submit_assignment(assignment_id):
    assignment = AssignmentStoreDB.get(assignment_id)
    if not assignment or not ClassroomStoreDB.is_enrolled(assignment["classroom_id"], current_user_id()):
        abort(404)
    data = json_body()
    result = SubmissionStoreDB.submit(
        assignment, current_user_id(),
        str_field(data, "submission_text"),
        str_field(data, "submission_url"),
    )
    if result["success"]:
        log_event("assignment_submitted", current_user_id(), assignment["title"],
                  classroom_id=assignment["classroom_id"], entity_type="submission",
                  entity_id=result["submission"]["id"])
    return result_response(result, 201)


@bp.route("/api/assignments/<int:assignment_id>/submissions")
@teacher_required
def assignment_submissions(assignment_id):
    _owned_assignment_or_404(assignment_id)
    return jsonify({"submissions": SubmissionStoreDB.for_assignment(assignment_id)})


@bp.route("/api/classrooms/<int:classroom_id>/submissions/pending")
@teacher_required
def pending_submissions(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"submissions": SubmissionStoreDB.pending_for_classroom(classroom_id)})


@bp.route("/api/submissions/<int:submission_id>/review", methods=["PUT"])
@teacher_required
def review_submission(submission_id):
    submission = SubmissionStoreDB.get(submission_id)
    if not submission:
        abort(404)
    owned_classroom_or_404(submission["classroom_id"])
    data = json_body()
    tokens = data.get("tokens_awarded")
    result = SubmissionStoreDB.review(
        submission_id, current_user_id(), data.get("status") or "",
        str_field(data, "feedback"),
        None if tokens is None else int_field(data, "tokens_awarded", minimum=0),
    )
    if result["success"]:
        log_event(f"submission_{result['submission']['status']}", current_user_id(),
                  f"tokens={result['submission']['tokens_awarded']}",
                  classroom_id=submission["classroom_id"], entity_type="submission",
                  entity_id=submission_id)
    return result_response(result)


@bp.route("/api/students/me/submissions")
@student_required
def my_submissions():
    classroom_id = request.args.get("classroom_id", type=int)
    return jsonify({"submissions": SubmissionStoreDB.for_student(current_user_id(), classroom_id)})
