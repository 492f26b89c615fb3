"""Classroom store routes: items, templates and purchases."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from catalog import STORE_ITEM_TEMPLATES
from classroom_store import PURCHASE_STATUSES, PurchaseStoreDB, StoreItemStoreDB
from helpers import (
    accessible_classroom_or_404,
    current_user_id,
    int_field,
    json_body,
    owned_classroom_or_404,
    result_response,
    student_required,
    teacher_required,
)

bp = Blueprint("store", __name__)


def _owned_item_or_404(item_id: int) -> dict:
    item = StoreItemStoreDB.get(item_id)
    if not item:
        abort(404)
    owned_classroom_or_404(item["classroom_id"])
    return item


# ── Items ──────────────────────────────────────────────────

@bp.route("/api/store/templates")
@teacher_required
def store_templates():
    return jsonify({"templates": STORE_ITEM_TEMPLATES})


@bp.route("/api/store/items", methods=["POST"])
@teacher_required
def create_item():
    data = json_body()
    classroom_id = int_field(data, "classroom_id")
    owned_classroom_or_404(classroom_id)

    fields = {}
    template_id = data.get("template_id")
    if template_id:
        template = next((t for t in STORE_ITEM_TEMPLATES if t["id"] == template_id), None)
        if not template:
            return jsonify({"error": f"Unknown template: {template_id}"}), 400
        fields.update({k: v for k, v in template.items() if k != "id"})
    fields.update({k: v for k, v in data.items() if k in StoreItemStoreDB.FIELDS})

    error = StoreItemStoreDB.validate(fields)
    if error:
        return jsonify({"error": error}), 400
    item = StoreItemStoreDB.create(classroom_id, fields)
    log_event("store_item_created", current_user_id(), item["name"],
              classroom_id=classroom_id, entity_type="store_item", entity_id=item["id"])
    return jsonify({"item": item}), 201


@bp.route("/api/store/items/<int:item_id>", methods=["PUT"])
@teacher_required
def update_item(item_id):
    _owned_item_or_404(item_id)
    data = json_body()
    error = StoreItemStoreDB.validate(data, partial=True)
    if error:
        return jsonify({"error": error}), 400
    return jsonify({"item": StoreItemStoreDB.update(item_id, data)})


@bp.route("/api/store/items/<int:item_id>", methods=["DELETE"])
@teacher_required
def delete_item(item_id):
    item = _owned_item_or_404(item_id)
    StoreItemStoreDB.update(item_id, {"is_active": False})
    log_event("store_item_deactivated", current_user_id(), item["name"],
              classroom_id=item["classroom_id"], entity_type="store_item", entity_id=item_id)
    return jsonify({"success": True})


@bp.route("/api/classrooms/<int:classroom_id>/store")
@login_required
def classroom_store(classroom_id):
    accessible_classroom_or_404(classroom_id)
    items = StoreItemStoreDB.for_classroom(classroom_id, active_only=current_user.is_student)
    return jsonify({"items": items})


# ── Purchases ──────────────────────────────────────────────

@bp.route("/api/store/items/<int:item_id>/purchase", methods=["POST"])
@student_required
def purchase_item(item_id):
    return result_response(PurchaseStoreDB.purchase(item_id, current_user_id()), 201)


@bp.route("/api/classrooms/<int:classroom_id>/purchases")
@teacher_required
def classroom_purchases(classroom_id):
    owned_classroom_or_404(classroom_id)
    status = request.args.get("status", "")
    if status and status not in PURCHASE_STATUSES:
        return jsonify({"error": "Invalid purchase status"}), 400
    return jsonify({"purchases": PurchaseStoreDB.for_classroom(classroom_id, status)})


@bp.route("/api/purchases/<int:purchase_id>", methods=["PUT"])
@teacher_required
def update_purchase(purchase_id):
    purchase = PurchaseStoreDB.get(purchase_id)
    if not purchase:
        abort(404)
    owned_classroom_or_404(purchase["classroom_id"])
    status = json_body().get("status") or ""
    return result_response(PurchaseStoreDB.set_status(purchase_id, status, current_user_id()))


@bp.route("/api/students/me/purchases")
@student_required
def my_purchases():
    classroom_id = request.args.get("classroom_id", type=int)
    return jsonify({"purchases": PurchaseStoreDB.for_student(current_user_id(), classroom_id)})
