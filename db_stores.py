"""
DB-backed store classes for the classroom token economy.

Each store groups the queries for one aggregate (users, classrooms,
assignments, submissions, announcements, badges, challenges). Rows come
back as plain dicts.
"""

from __future__ import annotations

import json
import secrets
import sqlite3
from datetime import datetime

from database import get_db
from wallet import WalletStoreDB, award_tokens, log_award

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6

SUBMISSION_STATUSES = ("pending", "approved", "rejected")
ANNOUNCEMENT_PRIORITIES = ("low", "normal", "high")


def _now() -> str:
    return datetime.now().isoformat()


# ── Users ──────────────────────────────────────────────────

class UserStoreDB:
    """Teacher and student accounts."""

    PUBLIC_FIELDS = (
        "id, role, email, nickname, first_name, last_name, is_active, last_login, created_at"
    )

    @staticmethod
    def get(user_id: int) -> dict | None:
        row = get_db().execute(
            f"SELECT {UserStoreDB.PUBLIC_FIELDS} FROM users WHERE id = ?", (user_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def get_by_email(email: str) -> sqlite3.Row | None:
        return get_db().execute(
            "SELECT * FROM users WHERE email = ? AND role IN ('teacher', 'admin')", (email,),
        ).fetchone()

    @staticmethod
    def create_teacher(email: str, password_hash: str, first_name: str, last_name: str) -> int:
        db = get_db()
        now = _now()
        cur = db.execute(
            "INSERT INTO users (role, email, password_hash, first_name, last_name, created_at, updated_at) "
            "VALUES ('teacher', ?, ?, ?, ?, ?, ?)",
            (email, password_hash, first_name, last_name, now, now),
        )
        db.commit()
        return cur.lastrowid

    @staticmethod
    def create_student(nickname: str, pin_hash: str, first_name: str = "",
                       last_name: str = "", commit: bool = True) -> int:
        db = get_db()
        now = _now()
        cur = db.execute(
            "INSERT INTO users (role, nickname, pin_hash, first_name, last_name, created_at, updated_at) "
            "VALUES ('student', ?, ?, ?, ?, ?, ?)",
            (nickname, pin_hash, first_name, last_name, now, now),
        )
        if commit:
            db.commit()
        return cur.lastrowid

    @staticmethod
    def find_student(classroom_id: int, nickname: str) -> sqlite3.Row | None:
        """Look up an enrolled student by nickname (case-insensitive)."""
        return get_db().execute(
            "SELECT u.* FROM users u JOIN enrollments e ON e.student_id = u.id "
            "WHERE e.classroom_id = ? AND u.role = 'student' AND u.nickname = ? COLLATE NOCASE",
            (classroom_id, nickname),
        ).fetchone()

    @staticmethod
    def nickname_taken(classroom_id: int, nickname: str, exclude_id: int | None = None) -> bool:
        row = UserStoreDB.find_student(classroom_id, nickname)
        return bool(row) and row["id"] != exclude_id

    @staticmethod
    def get_pin_hash(user_id: int) -> str:
        row = get_db().execute("SELECT pin_hash FROM users WHERE id = ?", (user_id,)).fetchone()
        return row["pin_hash"] if row and row["pin_hash"] else ""

    @staticmethod
    def set_pin_hash(user_id: int, pin_hash: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE users SET pin_hash = ?, updated_at = ? WHERE id = ?", (pin_hash, _now(), user_id),
        )
        db.commit()

    @staticmethod
    def update_profile(user_id: int, fields: dict) -> dict | None:
        allowed = {k: v for k, v in fields.items() if k in ("first_name", "last_name", "nickname")}
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(
                f"UPDATE users SET {sets}, updated_at = ? WHERE id = ?",
                (*allowed.values(), _now(), user_id),
            )
            db.commit()
        return UserStoreDB.get(user_id)

    @staticmethod
    def record_login(user_id: int) -> None:
        db = get_db()
        db.execute(
            "UPDATE users SET last_login = ?, login_attempts = 0, locked_until = '' WHERE id = ?",
            (_now(), user_id),
        )
        db.commit()


# ── Classrooms ─────────────────────────────────────────────

class ClassroomStoreDB:
    """Classrooms, enrollment and roster queries."""

    @staticmethod
    def generate_code() -> str:
        db = get_db()
        while True:
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if not db.execute("SELECT 1 FROM classrooms WHERE code = ?", (code,)).fetchone():
                return code

    @staticmethod
    def _row(row) -> dict | None:
        if not row:
            return None
        data = dict(row)
        try:
            data["settings"] = json.loads(data.get("settings") or "{}")
        except json.JSONDecodeError:
            data["settings"] = {}
        return data

    @staticmethod
    def create(teacher_id: int, name: str, description: str = "") -> dict:
        db = get_db()
        code = ClassroomStoreDB.generate_code()
        now = _now()
        cur = db.execute(
            "INSERT INTO classrooms (name, code, teacher_id, description, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (name, code, teacher_id, description, now, now),
        )
        db.commit()
        return ClassroomStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(classroom_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM classrooms WHERE id = ?", (classroom_id,)).fetchone()
        return ClassroomStoreDB._row(row)

    @staticmethod
    def get_by_code(code: str) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM classrooms WHERE code = ?", ((code or "").strip().upper(),),
        ).fetchone()
        return ClassroomStoreDB._row(row)

    @staticmethod
    def teacher_classrooms(teacher_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT c.*, COUNT(e.student_id) AS student_count "
            "FROM classrooms c LEFT JOIN enrollments e ON c.id = e.classroom_id "
            "WHERE c.teacher_id = ? GROUP BY c.id ORDER BY c.created_at DESC",
            (teacher_id,),
        ).fetchall()
        return [ClassroomStoreDB._row(r) for r in rows]

    @staticmethod
    def student_classrooms(student_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT c.*, e.joined_at FROM classrooms c JOIN enrollments e ON c.id = e.classroom_id "
            "WHERE e.student_id = ? ORDER BY c.name",
            (student_id,),
        ).fetchall()
        return [ClassroomStoreDB._row(r) for r in rows]

    @staticmethod
    def active_classrooms() -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM classrooms WHERE is_active = 1 ORDER BY id",
        ).fetchall()
        return [ClassroomStoreDB._row(r) for r in rows]

    @staticmethod
    def update(classroom_id: int, fields: dict) -> dict | None:
        allowed = {}
        for key in ("name", "description", "is_active"):
            if key in fields:
                allowed[key] = int(bool(fields[key])) if key == "is_active" else fields[key]
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(
                f"UPDATE classrooms SET {sets}, updated_at = ? WHERE id = ?",
                (*allowed.values(), _now(), classroom_id),
            )
            db.commit()
        return ClassroomStoreDB.get(classroom_id)

    @staticmethod
    def update_settings(classroom_id: int, settings: dict) -> dict:
        """Merge ``settings`` into the stored JSON and return the result."""
        current = ClassroomStoreDB.get(classroom_id)["settings"]
        current.update(settings)
        db = get_db()
        db.execute(
            "UPDATE classrooms SET settings = ?, updated_at = ? WHERE id = ?",
            (json.dumps(current), _now(), classroom_id),
        )
        db.commit()
        return current

    @staticmethod
    def is_enrolled(classroom_id: int, student_id: int) -> bool:
        return get_db().execute(
            "SELECT 1 FROM enrollments WHERE classroom_id = ? AND student_id = ?",
            (classroom_id, student_id),
        ).fetchone() is not None

    @staticmethod
    def enroll(classroom_id: int, student_id: int, commit: bool = True) -> bool:
        """Enrol a student and open their wallet. False if already enrolled."""
        db = get_db()
        try:
            db.execute(
                "INSERT INTO enrollments (classroom_id, student_id, joined_at) VALUES (?, ?, ?)",
                (classroom_id, student_id, _now()),
            )
        except sqlite3.IntegrityError:
            return False
        WalletStoreDB(student_id, classroom_id).get()
        if commit:
            db.commit()
        return True

    @staticmethod
    def unenroll(classroom_id: int, student_id: int) -> bool:
        db = get_db()
        cur = db.execute(
            "DELETE FROM enrollments WHERE classroom_id = ? AND student_id = ?",
            (classroom_id, student_id),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def student_ids(classroom_id: int) -> list[int]:
        rows = get_db().execute(
            "SELECT student_id FROM enrollments WHERE classroom_id = ? ORDER BY student_id",
            (classroom_id,),
        ).fetchall()
        return [r["student_id"] for r in rows]

    @staticmethod
    def roster(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT u.id, u.nickname, u.first_name, u.last_name, u.last_login, e.joined_at, "
            "COALESCE(w.current_balance, 0) AS current_balance, "
            "COALESCE(w.total_earned, 0) AS total_earned, "
            "COALESCE(w.total_spent, 0) AS total_spent "
            "FROM enrollments e JOIN users u ON u.id = e.student_id "
            "LEFT JOIN wallets w ON w.student_id = u.id AND w.classroom_id = e.classroom_id "
            "WHERE e.classroom_id = ? ORDER BY u.nickname COLLATE NOCASE",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def stats(classroom_id: int) -> dict:
        db = get_db()
        students = db.execute(
            "SELECT COUNT(*) AS n FROM enrollments WHERE classroom_id = ?", (classroom_id,),
        ).fetchone()["n"]
        assignments = db.execute(
            "SELECT COUNT(*) AS n FROM assignments WHERE classroom_id = ? AND is_active = 1",
            (classroom_id,),
        ).fetchone()["n"]
        pending = db.execute(
            "SELECT COUNT(*) AS n FROM submissions s JOIN assignments a ON a.id = s.assignment_id "
            "WHERE a.classroom_id = ? AND s.status = 'pending'",
            (classroom_id,),
        ).fetchone()["n"]
        wallets = db.execute(
            "SELECT COALESCE(SUM(current_balance), 0) AS circulation, "
            "COALESCE(SUM(total_earned), 0) AS awarded "
            "FROM wallets WHERE classroom_id = ?",
            (classroom_id,),
        ).fetchone()
        return {
            "student_count": students,
            "assignment_count": assignments,
            "pending_submissions": pending,
            "tokens_in_circulation": wallets["circulation"],
            "total_tokens_awarded": wallets["awarded"],
        }

    @staticmethod
    def leaderboard(classroom_id: int, limit: int = 10) -> list[dict]:
        rows = get_db().execute(
            "SELECT u.id AS student_id, u.nickname, u.first_name, u.last_name, "
            "w.current_balance, w.total_earned "
            "FROM wallets w JOIN enrollments e "
            "ON e.student_id = w.student_id AND e.classroom_id = w.classroom_id "
            "JOIN users u ON u.id = w.student_id "
            "WHERE w.classroom_id = ? "
            "ORDER BY w.total_earned DESC, w.current_balance DESC, u.nickname COLLATE NOCASE "
            "LIMIT ?",
            (classroom_id, limit),
        ).fetchall()
        return [{**dict(r), "rank": i + 1} for i, r in enumerate(rows)]


# ── Assignments & submissions ──────────────────────────────

class AssignmentStoreDB:

    @staticmethod
    def create(classroom_id: int, teacher_id: int, title: str, description: str = "",
               category: str = "general", token_reward: int = 0, due_date: str = "") -> dict:
        db = get_db()
        now = _now()
        cur = db.execute(
            "INSERT INTO assignments (classroom_id, teacher_id, title, description, category, "
            "token_reward, due_date, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (classroom_id, teacher_id, title, description, category, token_reward, due_date, now, now),
        )
        db.commit()
        return AssignmentStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(assignment_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM assignments WHERE id = ?", (assignment_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def update(assignment_id: int, fields: dict) -> dict | None:
        allowed = {
            k: v for k, v in fields.items()
            if k in ("title", "description", "category", "token_reward", "due_date", "is_active")
        }
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(
                f"UPDATE assignments SET {sets}, updated_at = ? WHERE id = ?",
                (*allowed.values(), _now(), assignment_id),
            )
            db.commit()
        return AssignmentStoreDB.get(assignment_id)

    @staticmethod
    def deactivate(assignment_id: int) -> None:
        AssignmentStoreDB.update(assignment_id, {"is_active": 0})

    @staticmethod
    def for_classroom(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT a.*, "
            "(SELECT COUNT(*) FROM submissions s WHERE s.assignment_id = a.id) AS submission_count, "
            "(SELECT COUNT(*) FROM submissions s WHERE s.assignment_id = a.id "
            " AND s.status = 'pending') AS pending_count "
            "FROM assignments a WHERE a.classroom_id = ? ORDER BY a.created_at DESC, a.id DESC",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def for_student(classroom_id: int, student_id: int) -> list[dict]:
        """Active assignments with the student's own submission status."""
        rows = get_db().execute(
            "SELECT a.*, s.id AS submission_id, s.status AS submission_status, "
            "s.tokens_awarded, s.feedback "
            "FROM assignments a LEFT JOIN submissions s "
            "ON s.assignment_id = a.id AND s.student_id = ? "
            "WHERE a.classroom_id = ? AND a.is_active = 1 ORDER BY a.created_at DESC, a.id DESC",
            (student_id, classroom_id),
        ).fetchall()
        return [dict(r) for r in rows]


class SubmissionStoreDB:

    @staticmethod
    def get(submission_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT s.*, a.classroom_id, a.title AS assignment_title, a.token_reward "
            "FROM submissions s JOIN assignments a ON a.id = s.assignment_id WHERE s.id = ?",
            (submission_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def submit(assignment: dict, student_id: int, submission_text: str = "",
               submission_url: str = "", now: datetime | None = None) -> dict:
        """Create or resubmit. Only rejected submissions may be resubmitted."""
        if not (submission_text or "").strip() and not (submission_url or "").strip():
            return {"success": False, "error": "Submission text or URL is required"}
        if not assignment["is_active"]:
            return {"success": False, "error": "Assignment is no longer active"}

        now = now or datetime.now()
        is_late = 0
        if assignment.get("due_date"):
            try:
                due = datetime.fromisoformat(assignment["due_date"])
            except ValueError:
                due = None
            if due is not None:
                if due.tzinfo is not None:
                    due = due.astimezone().replace(tzinfo=None)
                is_late = int(now > due)

        db = get_db()
        existing = db.execute(
            "SELECT * FROM submissions WHERE assignment_id = ? AND student_id = ?",
            (assignment["id"], student_id),
        ).fetchone()
        if existing:
            if existing["status"] != "rejected":
                return {"success": False, "error": f"Submission already {existing['status']}"}
            db.execute(
                "UPDATE submissions SET status = 'pending', submission_text = ?, submission_url = ?, "
                "is_late = ?, feedback = '', reviewed_at = '', reviewed_by = NULL, submitted_at = ? "
                "WHERE id = ?",
                (submission_text, submission_url, is_late, now.isoformat(), existing["id"]),
            )
            submission_id = existing["id"]
        else:
            cur = db.execute(
                "INSERT INTO submissions (assignment_id, student_id, submission_text, submission_url, "
                "is_late, submitted_at) VALUES (?, ?, ?, ?, ?, ?)",
                (assignment["id"], student_id, submission_text, submission_url, is_late, now.isoformat()),
            )
            submission_id = cur.lastrowid
        db.commit()
        return {
            "success": True,
            "submission": SubmissionStoreDB.get(submission_id),
            "resubmitted": existing is not None,
        }

    @staticmethod
    def for_assignment(assignment_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT s.*, u.nickname, u.first_name, u.last_name FROM submissions s "
            "JOIN users u ON u.id = s.student_id WHERE s.assignment_id = ? "
            "ORDER BY s.submitted_at DESC",
            (assignment_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def pending_for_classroom(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT s.*, a.title AS assignment_title, a.token_reward, u.nickname "
            "FROM submissions s JOIN assignments a ON a.id = s.assignment_id "
            "JOIN users u ON u.id = s.student_id "
            "WHERE a.classroom_id = ? AND s.status = 'pending' ORDER BY s.submitted_at",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def for_student(student_id: int, classroom_id: int | None = None) -> list[dict]:
        query = (
            "SELECT s.*, a.title AS assignment_title, a.classroom_id, a.token_reward "
            "FROM submissions s JOIN assignments a ON a.id = s.assignment_id WHERE s.student_id = ?"
        )
        params: list = [student_id]
        if classroom_id:
            query += " AND a.classroom_id = ?"
            params.append(classroom_id)
        query += " ORDER BY s.submitted_at DESC"
        return [dict(r) for r in get_db().execute(query, params).fetchall()]

    @staticmethod
    def review(submission_id: int, reviewer_id: int, status: str, feedback: str = "",
               tokens_awarded: int | None = None) -> dict:
        """Approve or reject a pending submission. Approval awards tokens exactly once."""
        if status not in ("approved", "rejected"):
            return {"success": False, "error": "Status must be 'approved' or 'rejected'"}
        submission = SubmissionStoreDB.get(submission_id)
        if not submission:
            return {"success": False, "error": "Submission not found", "not_found": True}
        if submission["status"] != "pending":
            return {"success": False, "error": f"Submission already {submission['status']}"}

        tokens = 0
        if status == "approved":
            tokens = submission["token_reward"] if tokens_awarded is None else tokens_awarded
            try:
                tokens = int(tokens)
            except (TypeError, ValueError):
                return {"success": False, "error": "tokens_awarded must be a whole number"}
            if tokens < 0:
                return {"success": False, "error": "tokens_awarded cannot be negative"}

        db = get_db()
        cur = db.execute(
            "UPDATE submissions SET status = ?, feedback = ?, tokens_awarded = ?, reviewed_at = ?, "
            "reviewed_by = ? WHERE id = ? AND status = 'pending'",
            (status, feedback, tokens, _now(), reviewer_id, submission_id),
        )
        if cur.rowcount == 0:
            db.rollback()
            return {"success": False, "error": "Submission already reviewed"}

        award = None
        if status == "approved" and tokens > 0:
            award = award_tokens(
                [submission["student_id"]], tokens, "Assignment Completion",
                f"Approved: {submission['assignment_title']}",
                submission["classroom_id"], reviewer_id,
                reference_type="submission", reference_id=submission_id, commit=False,
            )
            if not award["success"]:
                # Submission stays pending so it can be reviewed again
                db.rollback()
                return award
        db.commit()
        if award:
            log_award(award, "Assignment Completion", submission["classroom_id"], reviewer_id,
                      "submission", submission_id)
        return {"success": True, "submission": SubmissionStoreDB.get(submission_id), "award": award}


# ── Announcements ──────────────────────────────────────────

class AnnouncementStoreDB:

    @staticmethod
    def create(classroom_id: int, teacher_id: int, title: str, content: str = "",
               priority: str = "normal") -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO announcements (classroom_id, teacher_id, title, content, priority, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (classroom_id, teacher_id, title, content, priority, _now()),
        )
        db.commit()
        return AnnouncementStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(announcement_id: int) -> dict | None:
        row = get_db().execute(
            "SELECT * FROM announcements WHERE id = ?", (announcement_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def for_classroom(classroom_id: int, student_id: int | None = None) -> list[dict]:
        db = get_db()
        if student_id is None:
            rows = db.execute(
                "SELECT a.*, (SELECT COUNT(*) FROM announcement_reads r "
                "WHERE r.announcement_id = a.id) AS read_count "
                "FROM announcements a WHERE a.classroom_id = ? ORDER BY a.created_at DESC, a.id DESC",
                (classroom_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        rows = db.execute(
            "SELECT a.*, r.read_at FROM announcements a LEFT JOIN announcement_reads r "
            "ON r.announcement_id = a.id AND r.student_id = ? "
            "WHERE a.classroom_id = ? ORDER BY a.created_at DESC, a.id DESC",
            (student_id, classroom_id),
        ).fetchall()
        return [{**dict(r), "is_read": bool(r["read_at"])} for r in rows]

    @staticmethod
    def mark_read(announcement_id: int, student_id: int) -> bool:
        """Idempotent. True when this call created the read record."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO announcement_reads (announcement_id, student_id, read_at) "
            "VALUES (?, ?, ?)",
            (announcement_id, student_id, _now()),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def reads(announcement_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT r.student_id, r.read_at, u.nickname FROM announcement_reads r "
            "JOIN users u ON u.id = r.student_id WHERE r.announcement_id = ? ORDER BY r.read_at",
            (announcement_id,),
        ).fetchall()
        return [dict(r) for r in rows]


# ── Badges & challenges ────────────────────────────────────

class BadgeStoreDB:

    @staticmethod
    def _row(row) -> dict | None:
        if not row:
            return None
        data = dict(row)
        data["requirements"] = json.loads(data.get("requirements") or "{}")
        return data

    @staticmethod
    def create(classroom_id: int, name: str, description: str = "", icon: str = "award",
               color: str = "#F59E0B", category: str = "", requirements: dict | None = None) -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO badges (classroom_id, name, description, icon, color, category, "
            "requirements, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (classroom_id, name, description, icon, color, category,
             json.dumps(requirements or {}), _now()),
        )
        db.commit()
        return BadgeStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(badge_id: int) -> dict | None:
        return BadgeStoreDB._row(
            get_db().execute("SELECT * FROM badges WHERE id = ?", (badge_id,)).fetchone()
        )

    @staticmethod
    def update(badge_id: int, fields: dict) -> dict | None:
        allowed = {
            k: v for k, v in fields.items()
            if k in ("name", "description", "icon", "color", "category", "requirements", "is_active")
        }
        if "requirements" in allowed:
            allowed["requirements"] = json.dumps(allowed["requirements"] or {})
        if allowed:
            db = get_db()
            sets = ", ".join(f"{k} = ?" for k in allowed)
            db.execute(f"UPDATE badges SET {sets} WHERE id = ?", (*allowed.values(), badge_id))
            db.commit()
        return BadgeStoreDB.get(badge_id)

    @staticmethod
    def for_classroom(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM badges WHERE classroom_id = ? ORDER BY created_at, id", (classroom_id,),
        ).fetchall()
        return [BadgeStoreDB._row(r) for r in rows]

    @staticmethod
    def award(badge_id: int, student_id: int, awarded_by: int, reason: str = "") -> dict:
        db = get_db()
        try:
            db.execute(
                "INSERT INTO student_badges (student_id, badge_id, awarded_by, reason, earned_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (student_id, badge_id, awarded_by, reason, _now()),
            )
        except sqlite3.IntegrityError:
            return {"success": False, "error": "Student already has this badge"}
        db.commit()
        return {"success": True}

    @staticmethod
    def student_badges(student_id: int, classroom_id: int | None = None) -> list[dict]:
        query = (
            "SELECT b.*, sb.earned_at, sb.reason, sb.awarded_by FROM student_badges sb "
            "JOIN badges b ON b.id = sb.badge_id WHERE sb.student_id = ?"
        )
        params: list = [student_id]
        if classroom_id:
            query += " AND b.classroom_id = ?"
            params.append(classroom_id)
        query += " ORDER BY sb.earned_at DESC"
        rows = get_db().execute(query, params).fetchall()
        return [BadgeStoreDB._row(r) for r in rows]

    @staticmethod
    def analytics(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT b.id, b.name, b.category, COUNT(sb.student_id) AS awarded_count "
            "FROM badges b LEFT JOIN student_badges sb ON sb.badge_id = b.id "
            "WHERE b.classroom_id = ? GROUP BY b.id ORDER BY awarded_count DESC, b.name",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]


class ChallengeStoreDB:

    @staticmethod
    def create(classroom_id: int, name: str, target_value: int, token_reward: int = 0,
               description: str = "", icon: str = "target", color: str = "#3B82F6",
               expires_at: str = "") -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO challenges (classroom_id, name, description, icon, color, target_value, "
            "token_reward, created_at, expires_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (classroom_id, name, description, icon, color, target_value, token_reward,
             _now(), expires_at),
        )
        db.commit()
        return ChallengeStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(challenge_id: int) -> dict | None:
        row = get_db().execute("SELECT * FROM challenges WHERE id = ?", (challenge_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def for_classroom(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT * FROM challenges WHERE classroom_id = ? ORDER BY created_at DESC, id DESC",
            (classroom_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def set_active(challenge_id: int, is_active: bool) -> dict | None:
        db = get_db()
        db.execute(
            "UPDATE challenges SET is_active = ? WHERE id = ?", (int(bool(is_active)), challenge_id),
        )
        db.commit()
        return ChallengeStoreDB.get(challenge_id)

    @staticmethod
    def record_progress(challenge_id: int, student_id: int, increment: int,
                        awarded_by: int | None = None, now: datetime | None = None) -> dict:
        """Advance a student's progress. Completion is recorded and rewarded once."""
        challenge = ChallengeStoreDB.get(challenge_id)
        if not challenge:
            return {"success": False, "error": "Challenge not found", "not_found": True}
        now = now or datetime.now()
        if not challenge["is_active"]:
            return {"success": False, "error": "Challenge is not active"}
        if challenge["expires_at"]:
            expires = datetime.fromisoformat(challenge["expires_at"])
            if expires.tzinfo is not None:
                expires = expires.astimezone().replace(tzinfo=None)
            if now > expires:
                return {"success": False, "error": "Challenge has expired"}
        if increment <= 0:
            return {"success": False, "error": "Increment must be greater than zero"}

        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO challenge_progress (student_id, challenge_id, updated_at) "
            "VALUES (?, ?, ?)",
            (student_id, challenge_id, now.isoformat()),
        )
        progress = db.execute(
            "SELECT * FROM challenge_progress WHERE student_id = ? AND challenge_id = ?",
            (student_id, challenge_id),
        ).fetchone()
        if progress["completed"]:
            db.commit()
            return {"success": True, "progress": dict(progress), "newly_completed": False}

        value = progress["current_value"] + increment
        completed = value >= challenge["target_value"]
        db.execute(
            "UPDATE challenge_progress SET current_value = ?, completed = ?, completed_at = ?, "
            "updated_at = ? WHERE id = ?",
            (min(value, challenge["target_value"]), int(completed),
             now.isoformat() if completed else "", now.isoformat(), progress["id"]),
        )

        award = None
        if completed and challenge["token_reward"] > 0:
            award = award_tokens(
                [student_id], challenge["token_reward"], "Challenge",
                f"Completed challenge: {challenge['name']}",
                challenge["classroom_id"], awarded_by,
                reference_type="challenge", reference_id=challenge_id,
                transaction_type="bonus", commit=False,
            )
            if not award["success"]:
                db.rollback()
                return award
        db.commit()
        if award:
            log_award(award, "Challenge", challenge["classroom_id"], awarded_by,
                      "challenge", challenge_id)
        updated = db.execute(
            "SELECT * FROM challenge_progress WHERE id = ?", (progress["id"],),
        ).fetchone()
        return {
            "success": True,
            "progress": dict(updated),
            "newly_completed": completed,
            "award": award,
        }

    @staticmethod
    def student_progress(student_id: int, classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT c.*, COALESCE(p.current_value, 0) AS current_value, "
            "COALESCE(p.completed, 0) AS completed, COALESCE(p.completed_at, '') AS completed_at "
            "FROM challenges c LEFT JOIN challenge_progress p "
            "ON p.challenge_id = c.id AND p.student_id = ? "
            "WHERE c.classroom_id = ? ORDER BY c.created_at DESC, c.id DESC",
            (student_id, classroom_id),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def analytics(classroom_id: int) -> list[dict]:
        rows = get_db().execute(
            "SELECT c.id, c.name, c.target_value, c.is_active, "
            "COUNT(p.student_id) AS participants, "
            "COALESCE(SUM(p.completed), 0) AS completions "
            "FROM challenges c LEFT JOIN challenge_progress p ON p.challenge_id = c.id "
            "WHERE c.classroom_id = ? GROUP BY c.id ORDER BY c.created_at DESC, c.id DESC",
            (classroom_id,),
        ).fetchall()
        result = []
        for r in rows:
            row = dict(r)
            row["completion_rate"] = (
                round(row["completions"] / row["participants"] * 100, 1) if row["participants"] else 0
            )
            result.append(row)
        return result
