"""Classroom store — teacher-stocked items students buy with tokens.

Inventory of -1 means unlimited; max_per_student of 0 means no limit.
Purchases start pending; the teacher fulfils or cancels them, and a
cancellation refunds the tokens and restores finite stock.
"""

from __future__ import annotations

import logging
from datetime import datetime

from audit import log_event
from database import get_db
from db_stores import ClassroomStoreDB
from wallet import WalletStoreDB

logger = logging.getLogger(__name__)

PURCHASE_STATUSES = ("pending", "fulfilled", "cancelled")


class StoreItemStoreDB:

    FIELDS = ("name", "description", "cost", "category", "image_url", "inventory",
              "max_per_student", "is_active")

    @staticmethod
    def validate(fields: dict, partial: bool = False) -> str | None:
        if not partial and not (fields.get("name") or "").strip():
            return "Item name is required"
        if "cost" in fields or not partial:
            cost = fields.get("cost")
            if not isinstance(cost, int) or isinstance(cost, bool) or cost <= 0:
                return "Cost must be a positive whole number"
        if "inventory" in fields:
            inv = fields["inventory"]
            if not isinstance(inv, int) or isinstance(inv, bool) or inv < -1:
                return "Inventory must be -1 (unlimited) or a non-negative whole number"
        if "max_per_student" in fields:
            limit = fields["max_per_student"]
            if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
                return "max_per_student must be 0 (unlimited) or a positive whole number"
        return None

    @staticmethod
    def create(classroom_id: int, fields: dict) -> dict:
        db = get_db()
        now = datetime.now().isoformat()
        cur = db.execute(
            "INSERT INTO store_items (classroom_id, name, description, cost, category, image_url, "
            "inventory, max_per_student, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                classroom_id, fields["name"].strip(), fields.get("description", ""), fields["cost"],
                fields.get("category", ""), fields.get("image_url", ""),
                fields.get("inventory", -1), fields.get("max_per_student", 0), now, now,
            ),
        )
        db.commit()
        return StoreItemStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(item_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM store_items WHERE id = ?", (item_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def update(item_id: int, fields: dict) -> dict | None:
        allowed = {k: v for k, v in fields.items() if k in StoreItemStoreDB.FIELDS}
        if "is_active" in allowed:
            allowed["is_active"] = int(bool(allowed["is_active"]))
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(
                f"UPDATE store_items SET {sets}, updated_at = ? WHERE id = ?",
                (*allowed.values(), datetime.now().isoformat(), item_id),
            )
            db.commit()
        return StoreItemStoreDB.get(item_id)

    @staticmethod
    def for_classroom(classroom_id: int, active_only: bool = False) -> list[dict]:
        query = "SELECT * FROM store_items WHERE classroom_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY cost, name"
        return [dict(r) for r in get_db().execute(query, (classroom_id,)).fetchall()]


class PurchaseStoreDB:

    @staticmethod
    def get(purchase_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT p.*, i.name AS item_name FROM purchases p "
            "JOIN store_items i ON i.id = p.store_item_id WHERE p.id = ?",
            (purchase_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def count_for_student(item_id: int, student_id: int) -> int:
        row = get_db().execute(
            "SELECT COUNT(*) AS n FROM purchases WHERE store_item_id = ? AND student_id = ? "
            "AND status != 'cancelled'",
            (item_id, student_id),
        ).fetchone()
        return row["n"]

    @staticmethod
    def purchase(item_id: int, student_id: int) -> dict:
        """Spend tokens on an item and open a pending purchase."""
        item = StoreItemStoreDB.get(item_id)
        if not item:
            return {"success": False, "error": "Item not found", "not_found": True}
        if not item["is_active"]:
            return {"success": False, "error": "Item is not available"}
        classroom_id = item["classroom_id"]
        if not ClassroomStoreDB.is_enrolled(classroom_id, student_id):
            return {"success": False, "error": "You are not enrolled in this classroom"}
        if item["inventory"] == 0:
            return {"success": False, "error": "Item is out of stock"}
        if item["max_per_student"] and (
            PurchaseStoreDB.count_for_student(item_id, student_id) >= item["max_per_student"]
        ):
            return {"success": False, "error": "Purchase limit reached for this item"}

        db = get_db()
        try:
            spent = WalletStoreDB(student_id, classroom_id).debit(
                item["cost"], tx_type="spent", category="Store Purchase",
                description=f"Purchased {item['name']}", reference_type="store_item",
                reference_id=item_id, created_by=student_id, commit=False,
            )
            if not spent["success"]:
                db.rollback()
                return spent
            if item["inventory"] > 0:
                db.execute(
                    "UPDATE store_items SET inventory = inventory - 1, updated_at = ? WHERE id = ?",
                    (datetime.now().isoformat(), item_id),
                )
            cur = db.execute(
                "INSERT INTO purchases (student_id, classroom_id, store_item_id, tokens_spent, "
                "purchased_at) VALUES (?, ?, ?, ?, ?)",
                (student_id, classroom_id, item_id, item["cost"], datetime.now().isoformat()),
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Store purchase failed item_id=%s student_id=%s", item_id, student_id)
            raise

        log_event(
            "store_purchase", student_id, f"item={item['name']} cost={item['cost']}",
            classroom_id=classroom_id, entity_type="purchase", entity_id=cur.lastrowid,
        )
        return {
            "success": True,
            "purchase": PurchaseStoreDB.get(cur.lastrowid),
            "balance_after": spent["balance_after"],
        }

    @staticmethod
    def set_status(purchase_id: int, status: str, teacher_id: int) -> dict:
        """Fulfil or cancel a pending purchase. Cancelling refunds tokens and stock."""
        if status not in ("fulfilled", "cancelled"):
            return {"success": False, "error": "Status must be 'fulfilled' or 'cancelled'"}
        purchase = PurchaseStoreDB.get(purchase_id)
        if not purchase:
            return {"success": False, "error": "Purchase not found", "not_found": True}
        if purchase["status"] != "pending":
            return {"success": False, "error": f"Purchase already {purchase['status']}"}

        db = get_db()
        now = datetime.now().isoformat()
        try:
            db.execute(
                "UPDATE purchases SET status = ?, fulfilled_at = ? WHERE id = ?",
                (status, now if status == "fulfilled" else "", purchase_id),
            )
            if status == "cancelled":
                WalletStoreDB(purchase["student_id"], purchase["classroom_id"]).credit(
                    purchase["tokens_spent"], tx_type="bonus", category="Refund",
                    description=f"Refund for {purchase['item_name']}",
                    reference_type="purchase", reference_id=purchase_id,
                    created_by=teacher_id, refund=True, commit=False,
                )
                db.execute(
                    "UPDATE store_items SET inventory = inventory + 1, updated_at = ? "
                    "WHERE id = ? AND inventory >= 0",
                    (now, purchase["store_item_id"]),
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        log_event(
            f"purchase_{status}", teacher_id, f"purchase_id={purchase_id}",
            classroom_id=purchase["classroom_id"], entity_type="purchase", entity_id=purchase_id,
        )
        return {"success": True, "purchase": PurchaseStoreDB.get(purchase_id)}

    @staticmethod
    def for_classroom(classroom_id: int, status: str = "") -> list[dict]:
        query = (
            "SELECT p.*, i.name AS item_name, u.nickname FROM purchases p "
            "JOIN store_items i ON i.id = p.store_item_id JOIN users u ON u.id = p.student_id "
            "WHERE p.classroom_id = ?"
        )
        params: list = [classroom_id]
        if status:
            query += " AND p.status = ?"
            params.append(status)
        query += " ORDER BY p.purchased_at DESC, p.id DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]

    @staticmethod
    def for_student(student_id: int, classroom_id: int | None = None) -> list[dict]:
        query = (
            "SELECT p.*, i.name AS item_name FROM purchases p "
            "JOIN store_items i ON i.id = p.store_item_id WHERE p.student_id = ?"
        )
        params: list = [student_id]
        if classroom_id:
            query += " AND p.classroom_id = ?"
            params.append(classroom_id)
        query += " ORDER BY p.purchased_at DESC, p.id DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]
