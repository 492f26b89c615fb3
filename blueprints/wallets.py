"""Wallet, transaction history and token award routes."""

from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify
from flask_login import current_user, login_required

from db_stores import ClassroomStoreDB
from helpers import (
    accessible_classroom_or_404,
    current_user_id,
    int_field,
    json_body,
    owned_classroom_or_404,
    paginate_args,
    paginated_response,
    result_response,
    str_field,
    teacher_required,
)
from wallet import (
    DEFAULT_MILESTONES,
    WalletStoreDB,
    award_tokens,
    award_with_preset,
    categories,
    deduct_tokens,
    presets,
)

bp = Blueprint("wallets", __name__)


def _wallet_or_404(student_id: int, classroom_id: int) -> WalletStoreDB:
    """The wallet if the student themself or the owning teacher is asking."""
    if current_user.is_student:
        if student_id != current_user_id():
            abort(404)
        accessible_classroom_or_404(classroom_id)
    else:
        owned_classroom_or_404(classroom_id)
        if not ClassroomStoreDB.is_enrolled(classroom_id, student_id):
            abort(404)
    return WalletStoreDB(student_id, classroom_id)


def _student_ids(data: dict) -> list[int]:
    ids = data.get("student_ids")
    if not isinstance(ids, list) or not ids:
        raise ValueError("student_ids must be a non-empty list")
    return [int_field({"student_id": sid}, "student_id") for sid in ids]


# ── Wallets ────────────────────────────────────────────────

@bp.route("/api/wallets/<int:student_id>/<int:classroom_id>")
@login_required
def get_wallet(student_id, classroom_id):
    wallet = _wallet_or_404(student_id, classroom_id)
    return jsonify({"wallet": wallet.get(), "transactions": wallet.transactions(limit=20)})


@bp.route("/api/wallets/<int:student_id>/<int:classroom_id>/transactions")
@login_required
def wallet_transactions(student_id, classroom_id):
    wallet = _wallet_or_404(student_id, classroom_id)
    page, limit = paginate_args()
    items = wallet.transactions(limit=limit, offset=(page - 1) * limit)
    return jsonify(paginated_response(items, wallet.transaction_count(), page, limit))


@bp.route("/api/milestones/<int:student_id>/<int:classroom_id>")
@login_required
def wallet_milestones(student_id, classroom_id):
    wallet = _wallet_or_404(student_id, classroom_id)
    earned = wallet.get()["total_earned"]
    thresholds = sorted(current_app.config.get("TOKEN_MILESTONES", DEFAULT_MILESTONES))
    upcoming = [m for m in thresholds if m > earned]
    return jsonify({
        "milestones": wallet.milestones(),
        "total_earned": earned,
        "next_milestone": upcoming[0] if upcoming else None,
        "tokens_to_next": upcoming[0] - earned if upcoming else 0,
    })


# ── Awards & deductions ────────────────────────────────────

@bp.route("/api/tokens/award", methods=["POST"])
@teacher_required
def award():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)
    result = award_tokens(
        _student_ids(data), data.get("amount"),
        str_field(data, "category"), str_field(data, "description"),
        classroom_id, current_user_id(),
    )
    return result_response(result)


@bp.route("/api/tokens/deduct", methods=["POST"])
@teacher_required
def deduct():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)
    result = deduct_tokens(
        int_field(data, "student_id"), classroom_id, data.get("amount"),
        str_field(data, "reason"), current_user_id(),
    )
    return result_response(result)


@bp.route("/api/tokens/categories/<int:classroom_id>")
@login_required
def token_categories(classroom_id):
    accessible_classroom_or_404(classroom_id)
    return jsonify({"categories": categories(classroom_id)})


@bp.route("/api/tokens/presets/<int:classroom_id>")
@teacher_required
def award_presets(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"presets": presets(current_user_id(), classroom_id)})


@bp.route("/api/tokens/award/preset", methods=["POST"])
@teacher_required
def award_preset():
    data = json_body()
    result = award_with_preset(
        int_field(data, "preset_id"), current_user_id(), _student_ids(data),
        str_field(data, "custom_description"),
    )
    return result_response(result)
