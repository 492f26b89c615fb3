"""Student marketplace — approved student sellers list goods for classmates.

Sales move tokens buyer -> seller through wallet.transfer_tokens, so every
sale leaves a transfer_out / transfer_in pair in the ledger.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from audit import log_event
from database import get_db
from db_stores import ClassroomStoreDB
from wallet import transfer_tokens

logger = logging.getLogger(__name__)

SELLER_STATUSES = ("pending", "approved", "suspended")
LISTING_STATUSES = ("active", "sold_out", "inactive")


def _now() -> str:
    return datetime.now().isoformat()


class SellerStoreDB:

    @staticmethod
    def apply(student_id: int, classroom_id: int, business_name: str, description: str = "") -> dict:
        if not (business_name or "").strip():
            return {"success": False, "error": "Business name is required"}
        if not ClassroomStoreDB.is_enrolled(classroom_id, student_id):
            return {"success": False, "error": "You are not enrolled in this classroom"}
        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO marketplace_sellers (student_id, classroom_id, business_name, description, "
                "created_at) VALUES (?, ?, ?, ?, ?)",
                (student_id, classroom_id, business_name.strip(), description, _now()),
            )
        except sqlite3.IntegrityError:
            return {"success": False, "error": "You already have a seller profile in this classroom"}
        db.commit()
        log_event("seller_applied", student_id, business_name, classroom_id=classroom_id,
                  entity_type="seller", entity_id=cur.lastrowid)
        return {"success": True, "seller": SellerStoreDB.get(cur.lastrowid)}

    @staticmethod
    def get(seller_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT s.*, u.nickname FROM marketplace_sellers s JOIN users u ON u.id = s.student_id "
            "WHERE s.id = ?",
            (seller_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def for_student(student_id: int, classroom_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM marketplace_sellers WHERE student_id = ? AND classroom_id = ?",
            (student_id, classroom_id),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def for_classroom(classroom_id: int, status: str = "") -> list[dict]:
        query = (
            "SELECT s.*, u.nickname FROM marketplace_sellers s JOIN users u ON u.id = s.student_id "
            "WHERE s.classroom_id = ?"
        )
        params: list = [classroom_id]
        if status:
            query += " AND s.status = ?"
            params.append(status)
        query += " ORDER BY s.created_at DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]

    @staticmethod
    def set_status(seller_id: int, status: str, teacher_id: int) -> dict:
        if status not in SELLER_STATUSES:
            return {"success": False, "error": "Invalid seller status"}
        seller = SellerStoreDB.get(seller_id)
        if not seller:
            return {"success": False, "error": "Seller not found", "not_found": True}
        db = get_db()
        approved_at = _now() if status == "approved" else seller["approved_at"]
        db.execute(
            "UPDATE marketplace_sellers SET status = ?, approved_at = ? WHERE id = ?",
            (status, approved_at, seller_id),
        )
        if status == "suspended":
            db.execute(
                "UPDATE marketplace_listings SET status = 'inactive', updated_at = ? "
                "WHERE seller_id = ? AND status = 'active'",
                (_now(), seller_id),
            )
        db.commit()
        log_event(f"seller_{status}", teacher_id, f"seller_id={seller_id}",
                  classroom_id=seller["classroom_id"], entity_type="seller", entity_id=seller_id)
        return {"success": True, "seller": SellerStoreDB.get(seller_id)}

    @staticmethod
    def reviews(seller_id: int) -> dict:
        db = get_db()
        rows = db.execute(
            "SELECT r.*, u.nickname AS reviewer_nickname FROM marketplace_reviews r "
            "JOIN users u ON u.id = r.reviewer_id WHERE r.seller_id = ? ORDER BY r.created_at DESC",
            (seller_id,),
        ).fetchall()
        reviews = [dict(r) for r in rows]
        average = round(sum(r["rating"] for r in reviews) / len(reviews), 2) if reviews else 0
        return {"reviews": reviews, "average_rating": average, "review_count": len(reviews)}


class ListingStoreDB:

    @staticmethod
    def validate(fields: dict, partial: bool = False) -> str | None:
        if not partial and not (fields.get("title") or "").strip():
            return "Title is required"
        if "price" in fields or not partial:
            price = fields.get("price")
            if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
                return "Price must be a positive whole number"
        if "quantity" in fields:
            qty = fields["quantity"]
            if not isinstance(qty, int) or isinstance(qty, bool) or qty < -1:
                return "Quantity must be -1 (unlimited) or a non-negative whole number"
        if "status" in fields and fields["status"] not in LISTING_STATUSES:
            return "Invalid listing status"
        return None

    @staticmethod
    def create(seller: dict, fields: dict) -> dict:
        if seller["status"] != "approved":
            return {"success": False, "error": "Seller is not approved"}
        error = ListingStoreDB.validate(fields)
        if error:
            return {"success": False, "error": error}
        db = get_db()
        now = _now()
        cur = db.execute(
            "INSERT INTO marketplace_listings (seller_id, classroom_id, title, description, price, "
            "category, quantity, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (seller["id"], seller["classroom_id"], fields["title"].strip(), fields.get("description", ""),
             fields["price"], fields.get("category", ""), fields.get("quantity", -1), now, now),
        )
        db.commit()
        return {"success": True, "listing": ListingStoreDB.get(cur.lastrowid)}

    @staticmethod
    def get(listing_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT l.*, s.student_id AS seller_student_id, s.business_name, s.status AS seller_status "
            "FROM marketplace_listings l JOIN marketplace_sellers s ON s.id = l.seller_id "
            "WHERE l.id = ?",
            (listing_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def view(listing_id: int) -> dict | None:
        db = get_db()
        db.execute(
            "UPDATE marketplace_listings SET view_count = view_count + 1 WHERE id = ?", (listing_id,),
        )
        db.commit()
        return ListingStoreDB.get(listing_id)

    @staticmethod
    def update(listing_id: int, fields: dict) -> dict:
        allowed = {
            k: v for k, v in fields.items()
            if k in ("title", "description", "price", "category", "quantity", "status")
        }
        error = ListingStoreDB.validate(allowed, partial=True)
        if error:
            return {"success": False, "error": error}
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(
                f"UPDATE marketplace_listings SET {sets}, updated_at = ? WHERE id = ?",
                (*allowed.values(), _now(), listing_id),
            )
            db.commit()
        return {"success": True, "listing": ListingStoreDB.get(listing_id)}

    @staticmethod
    def active_for_classroom(classroom_id: int, category: str = "", search: str = "") -> list[dict]:
        query = (
            "SELECT l.*, s.business_name, s.student_id AS seller_student_id "
            "FROM marketplace_listings l JOIN marketplace_sellers s ON s.id = l.seller_id "
            "WHERE l.classroom_id = ? AND l.status = 'active' AND s.status = 'approved'"
        )
        params: list = [classroom_id]
        if category:
            query += " AND l.category = ?"
            params.append(category)
        if search:
            query += " AND (l.title LIKE ? OR l.description LIKE ?)"
            params.extend([f"%{search}%", f"%{search}%"])
        query += " ORDER BY l.created_at DESC, l.id DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]

    @staticmethod
    def for_seller(seller_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM marketplace_listings WHERE seller_id = ? ORDER BY created_at DESC, id DESC",
            (seller_id,),
        ).fetchall()
        return [dict(r) for r in rows]


class MarketplaceService:
    """Buying, refunds, reviews, wishlist and marketplace analytics."""

    @staticmethod
    def buy(listing_id: int, buyer_id: int, quantity: int = 1) -> dict:
        listing = ListingStoreDB.get(listing_id)
        if not listing:
            return {"success": False, "error": "Listing not found", "not_found": True}
        if quantity < 1:
            return {"success": False, "error": "Quantity must be at least 1"}
        if listing["seller_student_id"] == buyer_id:
            return {"success": False, "error": "You cannot buy your own listing"}
        if listing["status"] != "active" or listing["seller_status"] != "approved":
            return {"success": False, "error": "Listing is not available"}
        classroom_id = listing["classroom_id"]
        if not ClassroomStoreDB.is_enrolled(classroom_id, buyer_id):
            return {"success": False, "error": "You are not enrolled in this classroom"}
        if listing["quantity"] != -1 and listing["quantity"] < quantity:
            return {"success": False, "error": "Not enough quantity available"}

        total = listing["price"] * quantity
        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO marketplace_transactions (listing_id, buyer_id, seller_id, classroom_id, "
                "quantity, unit_price, total_amount, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (listing_id, buyer_id, listing["seller_id"], classroom_id, quantity,
                 listing["price"], total, _now()),
            )
            tx_id = cur.lastrowid
            moved = transfer_tokens(
                buyer_id, listing["seller_student_id"], classroom_id, total,
                category="Marketplace", description=f"Marketplace: {listing['title']}",
                reference_type="marketplace_transaction", reference_id=tx_id,
                created_by=buyer_id, commit=False,
            )
            if not moved["success"]:
                db.rollback()
                return moved
            if listing["quantity"] != -1:
                remaining = listing["quantity"] - quantity
                db.execute(
                    "UPDATE marketplace_listings SET quantity = ?, status = ?, updated_at = ? WHERE id = ?",
                    (remaining, "sold_out" if remaining == 0 else "active", _now(), listing_id),
                )
            db.execute(
                "UPDATE marketplace_sellers SET total_sales = total_sales + ?, "
                "total_revenue = total_revenue + ? WHERE id = ?",
                (quantity, total, listing["seller_id"]),
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Marketplace purchase failed listing_id=%s buyer_id=%s", listing_id, buyer_id)
            raise

        log_event("marketplace_sale", buyer_id, f"listing={listing_id} total={total}",
                  classroom_id=classroom_id, entity_type="marketplace_transaction", entity_id=tx_id)
        return {
            "success": True,
            "transaction": MarketplaceService.get_transaction(tx_id),
            "balance_after": moved["from_balance"],
        }

    @staticmethod
    def get_transaction(tx_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT t.*, l.title AS listing_title, s.student_id AS seller_student_id "
            "FROM marketplace_transactions t JOIN marketplace_listings l ON l.id = t.listing_id "
            "JOIN marketplace_sellers s ON s.id = t.seller_id WHERE t.id = ?",
            (tx_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def refund(tx_id: int, teacher_id: int) -> dict:
        """Reverse a completed sale: tokens back to the buyer, quantity restored."""
        tx = MarketplaceService.get_transaction(tx_id)
        if not tx:
            return {"success": False, "error": "Transaction not found", "not_found": True}
        if tx["status"] != "completed":
            return {"success": False, "error": f"Transaction already {tx['status']}"}

        db = get_db()
        try:
            moved = transfer_tokens(
                tx["seller_student_id"], tx["buyer_id"], tx["classroom_id"], tx["total_amount"],
                category="Marketplace Refund", description=f"Refund: {tx['listing_title']}",
                reference_type="marketplace_transaction", reference_id=tx_id,
                created_by=teacher_id, commit=False,
            )
            if not moved["success"]:
                db.rollback()
                return {
                    "success": False,
                    "error": "Seller has insufficient tokens for refund",
                    "required": moved.get("required"),
                    "balance": moved.get("balance"),
                }
            db.execute("UPDATE marketplace_transactions SET status = 'refunded' WHERE id = ?", (tx_id,))
            db.execute(
                "UPDATE marketplace_listings SET "
                "quantity = CASE WHEN quantity = -1 THEN -1 ELSE quantity + ? END, "
                "status = CASE WHEN status = 'sold_out' THEN 'active' ELSE status END, "
                "updated_at = ? WHERE id = ?",
                (tx["quantity"], _now(), tx["listing_id"]),
            )
            db.execute(
                "UPDATE marketplace_sellers SET total_sales = MAX(0, total_sales - ?), "
                "total_revenue = MAX(0, total_revenue - ?) WHERE id = ?",
                (tx["quantity"], tx["total_amount"], tx["seller_id"]),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        log_event("marketplace_refund", teacher_id, f"transaction={tx_id}",
                  classroom_id=tx["classroom_id"], entity_type="marketplace_transaction", entity_id=tx_id)
        return {"success": True, "transaction": MarketplaceService.get_transaction(tx_id)}

    @staticmethod
    def review(tx_id: int, reviewer_id: int, rating, comment: str = "") -> dict:
        tx = MarketplaceService.get_transaction(tx_id)
        if not tx:
            return {"success": False, "error": "Transaction not found", "not_found": True}
        if tx["buyer_id"] != reviewer_id:
            return {"success": False, "error": "Only the buyer can review this purchase"}
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            return {"success": False, "error": "Rating must be between 1 and 5"}
        db = get_db()
        try:
            cur = db.execute(
                "INSERT INTO marketplace_reviews (transaction_id, reviewer_id, seller_id, rating, "
                "comment, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (tx_id, reviewer_id, tx["seller_id"], rating, comment, _now()),
            )
        except sqlite3.IntegrityError:
            return {"success": False, "error": "This purchase has already been reviewed"}
        db.commit()
        row = db.execute("SELECT * FROM marketplace_reviews WHERE id = ?", (cur.lastrowid,)).fetchone()
        return {"success": True, "review": dict(row)}

    @staticmethod
    def purchases_for_buyer(buyer_id: int, classroom_id: int | None = None) -> list[dict]:
        query = (
            "SELECT t.*, l.title AS listing_title, s.business_name FROM marketplace_transactions t "
            "JOIN marketplace_listings l ON l.id = t.listing_id "
            "JOIN marketplace_sellers s ON s.id = t.seller_id WHERE t.buyer_id = ?"
        )
        params: list = [buyer_id]
        if classroom_id:
            query += " AND t.classroom_id = ?"
            params.append(classroom_id)
        query += " ORDER BY t.created_at DESC, t.id DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]

    @staticmethod
    def orders_for_seller(seller_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT t.*, l.title AS listing_title, u.nickname AS buyer_nickname "
            "FROM marketplace_transactions t JOIN marketplace_listings l ON l.id = t.listing_id "
            "JOIN users u ON u.id = t.buyer_id WHERE t.seller_id = ? "
            "ORDER BY t.created_at DESC, t.id DESC",
            (seller_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def transactions_for_classroom(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT t.*, l.title AS listing_title, u.nickname AS buyer_nickname, s.business_name "
            "FROM marketplace_transactions t JOIN marketplace_listings l ON l.id = t.listing_id "
            "JOIN users u ON u.id = t.buyer_id JOIN marketplace_sellers s ON s.id = t.seller_id "
            "WHERE t.classroom_id = ? ORDER BY t.created_at DESC, t.id DESC",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Wishlist ──────────────────────────────────────────

    @staticmethod
    def wishlist_add(student_id: int, listing_id: int) -> dict:
        if not ListingStoreDB.get(listing_id):
            return {"success": False, "error": "Listing not found", "not_found": True}
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO marketplace_wishlist (student_id, listing_id, added_at) VALUES (?, ?, ?)",
            (student_id, listing_id, _now()),
        )
        db.commit()
        return {"success": True}

    @staticmethod
    def wishlist_remove(student_id: int, listing_id: int) -> dict:
        db = get_db()
        db.execute(
            "DELETE FROM marketplace_wishlist WHERE student_id = ? AND listing_id = ?",
            (student_id, listing_id),
        )
        db.commit()
        return {"success": True}

    @staticmethod
    def wishlist(student_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT l.*, w.added_at FROM marketplace_wishlist w "
            "JOIN marketplace_listings l ON l.id = w.listing_id WHERE w.student_id = ? "
            "ORDER BY w.added_at DESC",
            (student_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Analytics ─────────────────────────────────────────

    @staticmethod
    def analytics(classroom_id: int) -> dict:
        db = get_db()
        totals = db.execute(
            "SELECT COUNT(*) AS transaction_count, COALESCE(SUM(total_amount), 0) AS total_volume, "
            "COALESCE(SUM(quantity), 0) AS items_sold "
            "FROM marketplace_transactions WHERE classroom_id = ? AND status = 'completed'",
            (classroom_id,),
        ).fetchone()
        sellers = db.execute(
            "SELECT COUNT(*) AS total, COALESCE(SUM(status = 'approved'), 0) AS approved, "
            "COALESCE(SUM(status = 'pending'), 0) AS pending "
            "FROM marketplace_sellers WHERE classroom_id = ?",
            (classroom_id,),
        ).fetchone()
        active_listings = db.execute(
            "SELECT COUNT(*) AS n FROM marketplace_listings WHERE classroom_id = ? AND status = 'active'",
            (classroom_id,),
        ).fetchone()["n"]
        top_sellers = db.execute(
            "SELECT s.id, s.business_name, u.nickname, s.total_sales, s.total_revenue "
            "FROM marketplace_sellers s JOIN users u ON u.id = s.student_id "
            "WHERE s.classroom_id = ? ORDER BY s.total_revenue DESC, s.total_sales DESC LIMIT 5",
            (classroom_id,),
        ).fetchall()
        categories = db.execute(
            "SELECT COALESCE(NULLIF(l.category, ''), 'uncategorized') AS category, "
            "COUNT(t.id) AS transaction_count, COALESCE(SUM(t.total_amount), 0) AS volume "
            "FROM marketplace_transactions t JOIN marketplace_listings l ON l.id = t.listing_id "
            "WHERE t.classroom_id = ? AND t.status = 'completed' "
            "GROUP BY 1 ORDER BY volume DESC",
            (classroom_id,),
        ).fetchall()
        return {
            "transaction_count": totals["transaction_count"],
            "total_volume": totals["total_volume"],
            "items_sold": totals["items_sold"],
            "seller_count": sellers["total"],
            "approved_sellers": sellers["approved"],
            "pending_sellers": sellers["pending"],
            "active_listings": active_listings,
            "top_sellers": [dict(r) for r in top_sellers],
            "category_breakdown": [dict(r) for r in categories],
        }
