"""Token economy ledger — wallets, transactions, milestones, award presets.

WalletStoreDB wraps one (student, classroom) wallet. Every balance change
writes a token_transactions row carrying the balance after the change.
Methods take ``commit=False`` so callers can fold several writes into one
SQLite transaction (purchases, marketplace sales, multi-student awards).

Business-rule failures come back as ``{"success": False, "error": ...}``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from audit import log_event
from database import get_db

logger = logging.getLogger(__name__)

CREDIT_TYPES = ("earned", "awarded", "bonus", "transfer_in")
DEBIT_TYPES = ("spent", "penalty", "transfer_out")

DEFAULT_MILESTONES = [50, 100, 250, 500, 1000]

DEFAULT_CATEGORIES = [
    {"name": "Assignment Completion", "description": "Completing assignments on time",
     "default_amount": 10, "color": "#10B981"},
    {"name": "Participation", "description": "Active class participation",
     "default_amount": 5, "color": "#3B82F6"},
    {"name": "Helping Others", "description": "Assisting classmates",
     "default_amount": 8, "color": "#8B5CF6"},
    {"name": "Extra Credit", "description": "Going above and beyond",
     "default_amount": 15, "color": "#F59E0B"},
    {"name": "Behavior", "description": "Positive classroom behavior",
     "default_amount": 3, "color": "#EF4444"},
]

DEFAULT_PRESETS = [
    {"name": "Perfect Assignment", "amount": 25,
     "description_template": "Excellent work on assignment completion!"},
    {"name": "Great Participation", "amount": 10,
     "description_template": "Outstanding class participation today!"},
    {"name": "Helping Friend", "amount": 15,
     "description_template": "Thank you for helping a classmate!"},
    {"name": "Quick Bonus", "amount": 5,
     "description_template": "Small bonus for good behavior!"},
]


def _milestones() -> list[int]:
    return sorted(current_app.config.get("TOKEN_MILESTONES", DEFAULT_MILESTONES))


def _positive_int(amount) -> int | None:
    """Accept ints and integral strings/floats; None for anything else or <= 0."""
    if isinstance(amount, bool):
        return None
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return None
    if isinstance(amount, float) and value != amount:
        return None
    return value if value > 0 else None


class WalletStoreDB:
    """DB-backed wallet for one student in one classroom."""

    def __init__(self, student_id: int, classroom_id: int):
        self.student_id = student_id
        self.classroom_id = classroom_id

    def _ensure(self) -> int:
        """Create the wallet row if missing. Returns the wallet id."""
        db = get_db()
        now = datetime.now().isoformat()
        db.execute(
            "INSERT OR IGNORE INTO wallets (student_id, classroom_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?)",
            (self.student_id, self.classroom_id, now, now),
        )
        row = db.execute(
            "SELECT id FROM wallets WHERE student_id = ? AND classroom_id = ?",
            (self.student_id, self.classroom_id),
        ).fetchone()
        return row["id"]

    def get(self) -> dict:
        self._ensure()
        row = get_db().execute(
            "SELECT * FROM wallets WHERE student_id = ? AND classroom_id = ?",
            (self.student_id, self.classroom_id),
        ).fetchone()
        return dict(row)

    def balance(self) -> int:
        return self.get()["current_balance"]

    def _record(self, wallet_id: int, amount: int, tx_type: str, category: str,
                description: str, reference_type: str, reference_id: int | None,
                balance_after: int, created_by: int | None) -> int:
        cur = get_db().execute(
            "INSERT INTO token_transactions (wallet_id, amount, transaction_type, category, "
            "description, reference_type, reference_id, balance_after, created_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (wallet_id, amount, tx_type, category, description, reference_type or "",
             reference_id, balance_after, created_by, datetime.now().isoformat()),
        )
        return cur.lastrowid

    def _check_milestones(self, old_total: int, new_total: int) -> list[int]:
        """Record every milestone crossed by this change, once per wallet."""
        db = get_db()
        reached = []
        for milestone in _milestones():
            if old_total < milestone <= new_total:
                cur = db.execute(
                    "INSERT OR IGNORE INTO token_milestones (student_id, classroom_id, milestone, reached_at) "
                    "VALUES (?, ?, ?, ?)",
                    (self.student_id, self.classroom_id, milestone, datetime.now().isoformat()),
                )
                if cur.rowcount:
                    reached.append(milestone)
        return reached

    def credit(self, amount: int, tx_type: str = "awarded", category: str = "",
               description: str = "", reference_type: str = "", reference_id: int | None = None,
               created_by: int | None = None, refund: bool = False, commit: bool = True) -> dict:
        """Add tokens. Refunds give back spent tokens instead of counting as earnings."""
        if tx_type not in CREDIT_TYPES:
            raise ValueError(f"Unknown credit transaction type: {tx_type}")
        if amount <= 0:
            return {"success": False, "error": "Amount must be greater than zero"}

        wallet_id = self._ensure()
        db = get_db()
        wallet = db.execute("SELECT * FROM wallets WHERE id = ?", (wallet_id,)).fetchone()
        new_balance = wallet["current_balance"] + amount
        old_earned = wallet["total_earned"]
        new_earned = old_earned if refund else old_earned + amount
        new_spent = max(0, wallet["total_spent"] - amount) if refund else wallet["total_spent"]

        db.execute(
            "UPDATE wallets SET current_balance = ?, total_earned = ?, total_spent = ?, updated_at = ? "
            "WHERE id = ?",
            (new_balance, new_earned, new_spent, datetime.now().isoformat(), wallet_id),
        )
        tx_id = self._record(wallet_id, amount, tx_type, category, description,
                             reference_type, reference_id, new_balance, created_by)
        milestones = self._check_milestones(old_earned, new_earned)
        if commit:
            db.commit()
        return {
            "success": True,
            "tx_id": tx_id,
            "balance_after": new_balance,
            "total_earned": new_earned,
            "milestones": milestones,
        }

    def debit(self, amount: int, tx_type: str = "spent", category: str = "",
              description: str = "", reference_type: str = "", reference_id: int | None = None,
              created_by: int | None = None, clamp: bool = False, commit: bool = True) -> dict:
        """Remove tokens. Without ``clamp`` an insufficient balance is refused."""
        if tx_type not in DEBIT_TYPES:
            raise ValueError(f"Unknown debit transaction type: {tx_type}")
        if amount <= 0:
            return {"success": False, "error": "Amount must be greater than zero"}

        wallet_id = self._ensure()
        db = get_db()
        wallet = db.execute("SELECT * FROM wallets WHERE id = ?", (wallet_id,)).fetchone()
        current = wallet["current_balance"]
        if current < amount:
            if not clamp:
                return {
                    "success": False,
                    "error": "Insufficient tokens",
                    "required": amount,
                    "balance": current,
                }
            amount = current
        if amount == 0:
            return {"success": True, "tx_id": None, "balance_after": current, "amount": 0}

        new_balance = current - amount
        db.execute(
            "UPDATE wallets SET current_balance = ?, total_spent = total_spent + ?, updated_at = ? "
            "WHERE id = ?",
            (new_balance, amount, datetime.now().isoformat(), wallet_id),
        )
        tx_id = self._record(wallet_id, -amount, tx_type, category, description,
                             reference_type, reference_id, new_balance, created_by)
        if commit:
            db.commit()
        return {"success": True, "tx_id": tx_id, "balance_after": new_balance, "amount": amount}

    def transactions(self, limit: int = 20, offset: int = 0) -> list[dict]:
        wallet_id = self._ensure()
        rows = get_db().execute(
            "SELECT * FROM token_transactions WHERE wallet_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (wallet_id, limit, offset),
        ).fetchall()
        return [dict(r) for r in rows]

    def transaction_count(self) -> int:
        wallet_id = self._ensure()
        row = get_db().execute(
            "SELECT COUNT(*) AS n FROM token_transactions WHERE wallet_id = ?", (wallet_id,),
        ).fetchone()
        return row["n"]

    def milestones(self) -> list[dict]:
        rows = get_db().execute(
            "SELECT milestone, reached_at FROM token_milestones "
            "WHERE student_id = ? AND classroom_id = ? ORDER BY milestone",
            (self.student_id, self.classroom_id),
        ).fetchall()
        return [dict(r) for r in rows]


def _not_enrolled(student_ids: list[int], classroom_id: int) -> list[int]:
    db = get_db()
    enrolled = {
        r["student_id"]
        for r in db.execute(
            "SELECT student_id FROM enrollments WHERE classroom_id = ?", (classroom_id,),
        ).fetchall()
    }
    return [sid for sid in student_ids if sid not in enrolled]


def award_tokens(student_ids: list[int], amount, category: str, description: str,
                 classroom_id: int, created_by: int | None,
                 reference_type: str = "", reference_id: int | None = None,
                 transaction_type: str = "awarded", commit: bool = True) -> dict:
    """Credit ``amount`` to every listed student in one SQLite transaction.

    The whole award is refused before any write when the amount is not a
    positive integer or any student is not enrolled in the classroom.
    With ``commit=False`` the caller owns the transaction and calls
    ``log_award`` once it has committed.
    """
    value = _positive_int(amount)
    if value is None:
        return {"success": False, "error": "Amount must be a positive whole number"}
    ids: list[int] = []
    for sid in student_ids or []:
        if sid not in ids:
            ids.append(sid)
    if not ids:
        return {"success": False, "error": "At least one student is required"}
    missing = _not_enrolled(ids, classroom_id)
    if missing:
        return {
            "success": False,
            "error": "Students not enrolled in this classroom",
            "student_ids": missing,
        }

    db = get_db()
    transactions, wallets, milestones = [], [], []
    try:
        for sid in ids:
            ws = WalletStoreDB(sid, classroom_id)
            result = ws.credit(
                value, tx_type=transaction_type, category=category, description=description,
                reference_type=reference_type, reference_id=reference_id,
                created_by=created_by, commit=False,
            )
            transactions.append({
                "id": result["tx_id"],
                "student_id": sid,
                "amount": value,
                "balance_after": result["balance_after"],
            })
            wallets.append(ws.get())
            milestones.extend(
                {"student_id": sid, "milestone": m} for m in result["milestones"]
            )
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        logger.exception("Token award failed classroom_id=%s", classroom_id)
        raise

    result = {
        "success": True,
        "transactions": transactions,
        "wallets": wallets,
        "milestones": milestones,
    }
    if commit:
        log_award(result, category, classroom_id, created_by, reference_type, reference_id)
    return result


def log_award(award: dict, category: str, classroom_id: int, created_by: int | None,
              reference_type: str = "", reference_id: int | None = None) -> None:
    amount = award["transactions"][0]["amount"]
    log_event(
        "tokens_awarded", created_by,
        f"amount={amount} students={len(award['transactions'])} category={category}",
        classroom_id=classroom_id, entity_type=reference_type or "", entity_id=reference_id,
    )


def spend_tokens(student_id: int, classroom_id: int, amount: int, category: str,
                 description: str = "", reference_type: str = "", reference_id: int | None = None,
                 commit: bool = True) -> dict:
    return WalletStoreDB(student_id, classroom_id).debit(
        amount, tx_type="spent", category=category, description=description,
        reference_type=reference_type, reference_id=reference_id,
        created_by=student_id, commit=commit,
    )


def deduct_tokens(student_id: int, classroom_id: int, amount, reason: str,
                  created_by: int | None) -> dict:
    """Teacher penalty. The balance never drops below zero."""
    value = _positive_int(amount)
    if value is None:
        return {"success": False, "error": "Amount must be a positive whole number"}
    if _not_enrolled([student_id], classroom_id):
        return {"success": False, "error": "Student is not enrolled in this classroom"}
    result = WalletStoreDB(student_id, classroom_id).debit(
        value, tx_type="penalty", category="Penalty", description=reason,
        created_by=created_by, clamp=True,
    )
    log_event(
        "tokens_deducted", created_by, f"student_id={student_id} amount={result.get('amount')}",
        classroom_id=classroom_id,
    )
    return result


def transfer_tokens(from_student: int, to_student: int, classroom_id: int, amount: int,
                    category: str, description: str = "", reference_type: str = "",
                    reference_id: int | None = None, created_by: int | None = None,
                    commit: bool = True) -> dict:
    """Move tokens between two wallets as a transfer_out / transfer_in pair."""
    out = WalletStoreDB(from_student, classroom_id).debit(
        amount, tx_type="transfer_out", category=category, description=description,
        reference_type=reference_type, reference_id=reference_id,
        created_by=created_by, commit=False,
    )
    if not out["success"]:
        return out
    into = WalletStoreDB(to_student, classroom_id).credit(
        amount, tx_type="transfer_in", category=category, description=description,
        reference_type=reference_type, reference_id=reference_id,
        created_by=created_by, commit=False,
    )
    if commit:
        get_db().commit()
    return {
        "success": True,
        "from_balance": out["balance_after"],
        "to_balance": into["balance_after"],
    }


# ── Categories & presets ───────────────────────────────────

def categories(classroom_id: int) -> list[dict]:
    """Token categories for a classroom, seeding the defaults on first read."""
    db = get_db()
    rows = db.execute(
        "SELECT * FROM token_categories WHERE classroom_id = ? ORDER BY id", (classroom_id,),
    ).fetchall()
    if not rows:
        now = datetime.now().isoformat()
        db.executemany(
            "INSERT INTO token_categories (classroom_id, name, description, default_amount, color, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [(classroom_id, c["name"], c["description"], c["default_amount"], c["color"], now)
             for c in DEFAULT_CATEGORIES],
        )
        db.commit()
        rows = db.execute(
            "SELECT * FROM token_categories WHERE classroom_id = ? ORDER BY id", (classroom_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def presets(teacher_id: int, classroom_id: int) -> list[dict]:
    """Award presets for a teacher in a classroom, seeding defaults on first read."""
    db = get_db()
    query = (
        "SELECT * FROM award_presets WHERE teacher_id = ? AND classroom_id = ? "
        "ORDER BY usage_count DESC, id"
    )
    rows = db.execute(query, (teacher_id, classroom_id)).fetchall()
    if not rows:
        now = datetime.now().isoformat()
        db.executemany(
            "INSERT INTO award_presets (teacher_id, classroom_id, name, amount, description_template, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [(teacher_id, classroom_id, p["name"], p["amount"], p["description_template"], now)
             for p in DEFAULT_PRESETS],
        )
        db.commit()
        rows = db.execute(query, (teacher_id, classroom_id)).fetchall()
    return [dict(r) for r in rows]


def award_with_preset(preset_id: int, teacher_id: int, student_ids: list[int],
                      custom_description: str = "") -> dict:
    db = get_db()
    preset = db.execute(
        "SELECT * FROM award_presets WHERE id = ? AND teacher_id = ?", (preset_id, teacher_id),
    ).fetchone()
    if not preset:
        return {"success": False, "error": "Preset not found", "not_found": True}

    result = award_tokens(
        student_ids, preset["amount"], preset["name"],
        custom_description or preset["description_template"],
        preset["classroom_id"], teacher_id,
    )
    if result["success"]:
        db.execute(
            "UPDATE award_presets SET usage_count = usage_count + 1, last_used_at = ? WHERE id = ?",
            (datetime.now().isoformat(), preset_id),
        )
        db.commit()
    return result
