"""Badges, challenges and their template catalogues."""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from catalog import BADGE_TEMPLATES, CHALLENGE_TEMPLATES
from db_stores import BadgeStoreDB, ChallengeStoreDB, ClassroomStoreDB
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

bp = Blueprint("gamification", __name__)

BADGE_FIELDS = ("name", "description", "icon", "color", "category", "requirements")
CHALLENGE_FIELDS = ("name", "description", "icon", "color", "target_value", "token_reward", "expires_at")


def _from_template(templates: list[dict], template_id: str | None, keys: tuple) -> dict:
    if not template_id:
        return {}
    template = next((t for t in templates if t["id"] == template_id), None)
    if not template:
        raise ValueError(f"Unknown template: {template_id}")
    return {k: v for k, v in template.items() if k in keys}


# ── Templates ──────────────────────────────────────────────

@bp.route("/api/badge-templates")
@teacher_required
def badge_templates():
    return jsonify({"templates": BADGE_TEMPLATES})


@bp.route("/api/challenge-templates")
@teacher_required
def challenge_templates():
    return jsonify({"templates": CHALLENGE_TEMPLATES})


# ── Badges ─────────────────────────────────────────────────

def _owned_badge_or_404(badge_id: int) -> dict:
    badge = BadgeStoreDB.get(badge_id)
    if not badge:
        abort(404)
    owned_classroom_or_404(badge["classroom_id"])
    return badge


@bp.route("/api/badges", methods=["POST"])
@teacher_required
def create_badge():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)
    fields = _from_template(BADGE_TEMPLATES, data.get("template_id"), BADGE_FIELDS)
    fields.update({k: data[k] for k in BADGE_FIELDS if k in data})
    if not str_field(fields, "name"):
        return jsonify({"error": "Badge name is required"}), 400
    if "requirements" in fields and not isinstance(fields["requirements"], dict):
        return jsonify({"error": "requirements must be an object"}), 400
    badge = BadgeStoreDB.create(classroom_id, **fields)
    return jsonify({"badge": badge}), 201


@bp.route("/api/badges/<int:badge_id>", methods=["PUT"])
@teacher_required
def update_badge(badge_id):
    _owned_badge_or_404(badge_id)
    data = json_body()
    if "name" in data and not str_field(data, "name"):
        return jsonify({"error": "Badge name cannot be empty"}), 400
    return jsonify({"badge": BadgeStoreDB.update(badge_id, data)})


@bp.route("/api/classrooms/<int:classroom_id>/badges")
@login_required
def classroom_badges(classroom_id):
    accessible_classroom_or_404(classroom_id)
    return jsonify({"badges": BadgeStoreDB.for_classroom(classroom_id)})


@bp.route("/api/badges/<int:badge_id>/award", methods=["POST"])
@teacher_required
def award_badge(badge_id):
    badge = _owned_badge_or_404(badge_id)
    data = json_body()
    student_id = int_field(data, "student_id")
    if not ClassroomStoreDB.is_enrolled(badge["classroom_id"], student_id):
        return jsonify({"error": "Student is not enrolled in this classroom"}), 400
    result = BadgeStoreDB.award(badge_id, student_id, current_user_id(), str_field(data, "reason"))
    if result["success"]:
        log_event("badge_awarded", current_user_id(), f"badge={badge['name']} student_id={student_id}",
                  classroom_id=badge["classroom_id"], entity_type="badge", entity_id=badge_id)
    return result_response(result, 201)


@bp.route("/api/classrooms/<int:classroom_id>/badges/analytics")
@teacher_required
def badge_analytics(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"badges": BadgeStoreDB.analytics(classroom_id)})


@bp.route("/api/students/me/badges")
@student_required
def my_badges():
    classroom_id = request.args.get("classroom_id", type=int)
    return jsonify({"badges": BadgeStoreDB.student_badges(current_user_id(), classroom_id)})


# ── Challenges ─────────────────────────────────────────────

def _owned_challenge_or_404(challenge_id: int) -> dict:
    challenge = ChallengeStoreDB.get(challenge_id)
    if not challenge:
        abort(404)
    owned_classroom_or_404(challenge["classroom_id"])
    return challenge


@bp.route("/api/challenges", methods=["POST"])
@teacher_required
def create_challenge():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)
    fields = _from_template(CHALLENGE_TEMPLATES, data.get("template_id"), CHALLENGE_FIELDS)
    fields.update({k: data[k] for k in CHALLENGE_FIELDS if k in data})
    if not str_field(fields, "name"):
        return jsonify({"error": "Challenge name is required"}), 400
    fields["target_value"] = int_field(fields, "target_value", minimum=1)
    fields["token_reward"] = int_field(fields, "token_reward", 0, minimum=0)
    if fields.get("expires_at"):
        try:
            datetime.fromisoformat(fields["expires_at"])
        except (TypeError, ValueError):
            return jsonify({"error": "expires_at must be an ISO datetime"}), 400
    challenge = ChallengeStoreDB.create(classroom_id, **fields)
    log_event("challenge_created", current_user_id(), challenge["name"],
              classroom_id=classroom_id, entity_type="challenge", entity_id=challenge["id"])
    return jsonify({"challenge": challenge}), 201


@bp.route("/api/classrooms/<int:classroom_id>/challenges")
@login_required
def classroom_challenges(classroom_id):
    accessible_classroom_or_404(classroom_id)
    if current_user.is_student:
        return jsonify({"challenges": ChallengeStoreDB.student_progress(current_user_id(), classroom_id)})
    return jsonify({"challenges": ChallengeStoreDB.for_classroom(classroom_id)})


@bp.route("/api/challenges/<int:challenge_id>/toggle", methods=["PUT"])
@teacher_required
def toggle_challenge(challenge_id):
    challenge = _owned_challenge_or_404(challenge_id)
    data = json_body()
    is_active = data["is_active"] if "is_active" in data else not challenge["is_active"]
    return jsonify({"challenge": ChallengeStoreDB.set_active(challenge_id, is_active)})


@bp.route("/api/challenges/<int:challenge_id>/progress", methods=["POST"])
@teacher_required
def record_progress(challenge_id):
    challenge = _owned_challenge_or_404(challenge_id)
    data = json_body()
    student_id = int_field(data, "student_id")
    if not ClassroomStoreDB.is_enrolled(challenge["classroom_id"], student_id):
        return jsonify({"error": "Student is not enrolled in this classroom"}), 400
    result = ChallengeStoreDB.record_progress(
        challenge_id, student_id, int_field(data, "increment", 1), current_user_id(),
    )
    return result_response(result)


@bp.route("/api/classrooms/<int:classroom_id>/challenges/analytics")
@teacher_required
def challenge_analytics(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"challenges": ChallengeStoreDB.analytics(classroom_id)})


@bp.route("/api/students/me/challenges/<int:classroom_id>")
@student_required
def my_challenges(classroom_id):
    accessible_classroom_or_404(classroom_id)
    return jsonify({"challenges": ChallengeStoreDB.student_progress(current_user_id(), classroom_id)})
