"""Student marketplace routes: sellers, listings, sales, reviews and wishlist."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from db_stores import ClassroomStoreDB
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
from marketplace import SELLER_STATUSES, ListingStoreDB, MarketplaceService, SellerStoreDB

bp = Blueprint("marketplace", __name__)


def _listing_or_404(listing_id: int) -> dict:
    listing = ListingStoreDB.get(listing_id)
    if not listing:
        abort(404)
    accessible_classroom_or_404(listing["classroom_id"])
    return listing


# ── Sellers ────────────────────────────────────────────────

@bp.route("/api/marketplace/sellers", methods=["POST"])
@student_required
def apply_seller():
    data = json_body()
    result = SellerStoreDB.apply(
        current_user_id(), int_field(data, "classroom_id"),
        str_field(data, "business_name"), str_field(data, "description"),
    )
    return result_response(result, 201)


@bp.route("/api/marketplace/sellers/me/<int:classroom_id>")
@student_required
def my_seller_profile(classroom_id):
    seller = SellerStoreDB.for_student(current_user_id(), classroom_id)
    if not seller:
        abort(404)
    return jsonify({"seller": seller, "listings": ListingStoreDB.for_seller(seller["id"])})


@bp.route("/api/marketplace/sellers/classroom/<int:classroom_id>")
@teacher_required
def classroom_sellers(classroom_id):
    owned_classroom_or_404(classroom_id)
    status = request.args.get("status", "")
    if status and status not in SELLER_STATUSES:
        return jsonify({"error": "Invalid seller status"}), 400
    return jsonify({"sellers": SellerStoreDB.for_classroom(classroom_id, status)})


@bp.route("/api/marketplace/sellers/<int:seller_id>/status", methods=["PUT"])
@teacher_required
def set_seller_status(seller_id):
    seller = SellerStoreDB.get(seller_id)
    if not seller:
        abort(404)
    owned_classroom_or_404(seller["classroom_id"])
    return result_response(SellerStoreDB.set_status(seller_id, json_body().get("status") or "", current_user_id()))


@bp.route("/api/marketplace/sellers/<int:seller_id>/reviews")
@login_required
def seller_reviews(seller_id):
    seller = SellerStoreDB.get(seller_id)
    if not seller:
        abort(404)
    accessible_classroom_or_404(seller["classroom_id"])
    return jsonify({"seller": seller, **SellerStoreDB.reviews(seller_id)})


# ── Listings ───────────────────────────────────────────────

@bp.route("/api/marketplace/listings", methods=["POST"])
@student_required
def create_listing():
    data = json_body()
    seller = SellerStoreDB.for_student(current_user_id(), int_field(data, "classroom_id"))
    if not seller:
        return jsonify({"error": "You do not have a seller profile in this classroom"}), 400
    return result_response(ListingStoreDB.create(seller, data), 201)


@bp.route("/api/marketplace/listings/<int:listing_id>", methods=["PUT"])
@student_required
def update_listing(listing_id):
    listing = ListingStoreDB.get(listing_id)
    if not listing or listing["seller_student_id"] != current_user_id():
        abort(404)
    return result_response(ListingStoreDB.update(listing_id, json_body()))


@bp.route("/api/marketplace/listings/<int:listing_id>", methods=["DELETE"])
@login_required
def deactivate_listing(listing_id):
    listing = ListingStoreDB.get(listing_id)
    if not listing:
        abort(404)
    if current_user.is_student:
        if listing["seller_student_id"] != current_user_id():
            abort(404)
    else:
        owned_classroom_or_404(listing["classroom_id"])
    return result_response(ListingStoreDB.update(listing_id, {"status": "inactive"}))


@bp.route("/api/marketplace/listings/classroom/<int:classroom_id>")
@login_required
def classroom_listings(classroom_id):
    accessible_classroom_or_404(classroom_id)
    listings = ListingStoreDB.active_for_classroom(
        classroom_id, request.args.get("category", ""), request.args.get("search", "").strip(),
    )
    return jsonify({"listings": listings})


@bp.route("/api/marketplace/listings/<int:listing_id>")
@login_required
def get_listing(listing_id):
    _listing_or_404(listing_id)
    return jsonify({"listing": ListingStoreDB.view(listing_id)})


# ── Sales ──────────────────────────────────────────────────

@bp.route("/api/marketplace/listings/<int:listing_id>/buy", methods=["POST"])
@student_required
def buy_listing(listing_id):
    _listing_or_404(listing_id)
    quantity = int_field(json_body(), "quantity", 1)
    return result_response(MarketplaceService.buy(listing_id, current_user_id(), quantity), 201)


@bp.route("/api/marketplace/transactions/<int:tx_id>/refund", methods=["POST"])
@teacher_required
def refund_transaction(tx_id):
    tx = MarketplaceService.get_transaction(tx_id)
    if not tx:
        abort(404)
    owned_classroom_or_404(tx["classroom_id"])
    return result_response(MarketplaceService.refund(tx_id, current_user_id()))


@bp.route("/api/marketplace/transactions/classroom/<int:classroom_id>")
@teacher_required
def classroom_transactions(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"transactions": MarketplaceService.transactions_for_classroom(classroom_id)})


@bp.route("/api/marketplace/reviews", methods=["POST"])
@student_required
def create_review():
    data = json_body()
    result = MarketplaceService.review(
        int_field(data, "transaction_id"), current_user_id(), data.get("rating"),
        str_field(data, "comment"),
    )
    return result_response(result, 201)


@bp.route("/api/marketplace/purchases")
@student_required
def my_marketplace_purchases():
    classroom_id = request.args.get("classroom_id", type=int)
    return jsonify({"purchases": MarketplaceService.purchases_for_buyer(current_user_id(), classroom_id)})


@bp.route("/api/marketplace/orders/<int:classroom_id>")
@student_required
def my_orders(classroom_id):
    seller = SellerStoreDB.for_student(current_user_id(), classroom_id)
    if not seller:
        abort(404)
    return jsonify({"orders": MarketplaceService.orders_for_seller(seller["id"])})


# ── Wishlist ───────────────────────────────────────────────

@bp.route("/api/marketplace/wishlist")
@student_required
def wishlist():
    return jsonify({"wishlist": MarketplaceService.wishlist(current_user_id())})


@bp.route("/api/marketplace/wishlist", methods=["POST"])
@student_required
def add_to_wishlist():
    listing_id = int_field(json_body(), "listing_id")
    listing = ListingStoreDB.get(listing_id)
    if not listing or not ClassroomStoreDB.is_enrolled(listing["classroom_id"], current_user_id()):
        abort(404)
    return result_response(MarketplaceService.wishlist_add(current_user_id(), listing_id), 201)


@bp.route("/api/marketplace/wishlist/<int:listing_id>", methods=["DELETE"])
@student_required
def remove_from_wishlist(listing_id):
    return result_response(MarketplaceService.wishlist_remove(current_user_id(), listing_id))


# ── Analytics ──────────────────────────────────────────────

@bp.route("/api/marketplace/analytics/<int:classroom_id>")
@teacher_required
def marketplace_analytics(classroom_id):
    owned_classroom_or_404(classroom_id)
    return jsonify({"analytics": MarketplaceService.analytics(classroom_id)})
