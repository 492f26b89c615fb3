"""
User Authentication — Flask-Login with bearer tokens.

Teachers register and log in with email + password, students with
classroom code + nickname + PIN. Every successful login returns a JWT;
the request loader turns ``Authorization: Bearer <token>`` back into
``current_user``. Uses werkzeug.security for password and PIN hashing.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from db_stores import ClassroomStoreDB, UserStoreDB
from extensions import limiter
from helpers import str_field
from tokens import decode_token, encode_token

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, role: str = "student", email: str | None = None,
                 nickname: str | None = None, first_name: str = "", last_name: str = ""):
        self.id = id
        self.role = role
        self.email = email
        self.nickname = nickname
        self.first_name = first_name
        self.last_name = last_name

    @property
    def is_teacher(self):
        return self.role in ("teacher", "admin")

    @property
    def is_student(self):
        return self.role == "student"

    @staticmethod
    def get(user_id: int):
        row = UserStoreDB.get(user_id)
        if row and row["is_active"]:
            return User(row["id"], row["role"], row["email"], row["nickname"],
                        row["first_name"], row["last_name"])
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "email": self.email,
            "nickname": self.nickname,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    result = decode_token(header[7:].strip())
    if not result["success"]:
        return None
    try:
        return User.get(int(result["payload"]["sub"]))
    except (KeyError, TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _validate_pin(pin: str) -> str | None:
    if not pin.isdigit() or not 4 <= len(pin) <= 6:
        return "PIN must be 4 to 6 digits."
    return None


def _issue(user: User, status: int = 200, **extra):
    body = {"token": encode_token(user.id, user.role), "user": user.to_dict()}
    body.update(extra)
    return jsonify(body), status


def create_student_account(classroom_id: int, nickname: str, pin: str,
                           first_name: str = "", last_name: str = "") -> dict:
    """Create a student, enrol them and open their wallet in one transaction."""
    if nickname is not None and not isinstance(nickname, str):
        return {"success": False, "error": "Nickname must be a string."}
    nickname = (nickname or "").strip()
    pin = str(pin or "")
    if not nickname:
        return {"success": False, "error": "Nickname is required."}
    pin_error = _validate_pin(pin)
    if pin_error:
        return {"success": False, "error": pin_error}
    if UserStoreDB.nickname_taken(classroom_id, nickname):
        return {"success": False, "error": "That nickname is already taken in this classroom."}

    db = get_db()
    student_id = UserStoreDB.create_student(
        nickname, generate_password_hash(pin), first_name, last_name, commit=False,
    )
    ClassroomStoreDB.enroll(classroom_id, student_id, commit=False)
    db.commit()
    return {"success": True, "user": User.get(student_id)}


@auth_bp.route("/api/auth/register/teacher", methods=["POST"])
@limiter.limit("3 per hour")
def register_teacher():
    data = request.get_json(silent=True) or {}
    email = str_field(data, "email").lower()
    password = str_field(data, "password", strip=False)
    first_name = str_field(data, "first_name")
    last_name = str_field(data, "last_name")

    if not email or not password or not first_name:
        return jsonify({"error": "Email, password and first name are required."}), 400
    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400
    if UserStoreDB.get_by_email(email):
        return jsonify({"error": "An account with this email already exists."}), 400

    user_id = UserStoreDB.create_teacher(email, generate_password_hash(password), first_name, last_name)
    log_event("register_teacher", user_id, f"email={email}")
    return _issue(User.get(user_id), 201)


@auth_bp.route("/api/auth/login/teacher", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login_teacher():
    data = request.get_json(silent=True) or {}
    email = str_field(data, "email").lower()
    password = str_field(data, "password", strip=False)

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = UserStoreDB.get_by_email(email)
    if not row or not row["is_active"]:
        return jsonify({"error": "Invalid email or password."}), 401

    # Check account lockout
    if row["locked_until"]:
        try:
            remaining = (datetime.fromisoformat(row["locked_until"]) - datetime.now()).total_seconds()
        except ValueError:
            remaining = 0
        if remaining > 0:
            mins = math.ceil(remaining / 60)
            log_event("login_locked", row["id"], f"email={email}")
            return jsonify({
                "error": f"Account temporarily locked. Try again in {mins} minute(s).",
                "minutes_remaining": mins,
            }), 423

    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        db = get_db()
        attempts = row["login_attempts"] + 1
        if attempts >= LOCKOUT_THRESHOLD:
            db.execute(
                "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
                (attempts, (datetime.now() + timedelta(minutes=LOCKOUT_MINUTES)).isoformat(), row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts = ? WHERE id = ?", (attempts, row["id"]))
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return jsonify({"error": "Invalid email or password."}), 401

    UserStoreDB.record_login(row["id"])
    log_event("login", row["id"], "method=password")
    return _issue(User.get(row["id"]))


@auth_bp.route("/api/auth/join-classroom", methods=["POST"])
@limiter.limit("10 per hour")
def join_classroom():
    data = request.get_json(silent=True) or {}
    classroom = ClassroomStoreDB.get_by_code(str_field(data, "classroom_code"))
    if not classroom or not classroom["is_active"]:
        return jsonify({"error": "Invalid classroom code."}), 400

    result = create_student_account(
        classroom["id"], data.get("nickname"), data.get("pin"),
        str_field(data, "first_name"), str_field(data, "last_name"),
    )
    if not result["success"]:
        return jsonify({"error": result["error"]}), 400

    user = result["user"]
    UserStoreDB.record_login(user.id)
    log_event("join_classroom", user.id, f"code={classroom['code']}", classroom_id=classroom["id"])
    log_event("login", user.id, "method=join", classroom_id=classroom["id"])
    return _issue(user, 201, classroom=classroom)


@auth_bp.route("/api/auth/login/student", methods=["POST"])
@limiter.limit("10 per 15 minutes")
def login_student():
    data = request.get_json(silent=True) or {}
    pin = str(data.get("pin") or "")
    classroom = ClassroomStoreDB.get_by_code(str_field(data, "classroom_code"))
    row = UserStoreDB.find_student(classroom["id"], str_field(data, "nickname")) if classroom else None

    if not row or not row["is_active"] or not row["pin_hash"] or not check_password_hash(row["pin_hash"], pin):
        log_event("login_failed", row["id"] if row else None, "method=pin")
        return jsonify({"error": "Invalid classroom code, nickname or PIN."}), 401

    UserStoreDB.record_login(row["id"])
    log_event("login", row["id"], "method=pin", classroom_id=classroom["id"])
    return _issue(User.get(row["id"]), classroom=classroom)


@auth_bp.route("/api/auth/me")
@login_required
def me():
    if current_user.is_teacher:
        classrooms = ClassroomStoreDB.teacher_classrooms(current_user.id)
    else:
        classrooms = ClassroomStoreDB.student_classrooms(current_user.id)
    return jsonify({"user": current_user.to_dict(), "classrooms": classrooms})


@auth_bp.route("/api/auth/change-pin", methods=["POST"])
@login_required
def change_pin():
    if not current_user.is_student:
        return jsonify({"error": "Only students have a PIN."}), 403
    data = request.get_json(silent=True) or {}
    current_pin = str(data.get("current_pin") or "")
    new_pin = str(data.get("new_pin") or "")

    pin_hash = UserStoreDB.get_pin_hash(current_user.id)
    if not pin_hash or not check_password_hash(pin_hash, current_pin):
        return jsonify({"error": "Current PIN is incorrect."}), 400
    pin_error = _validate_pin(new_pin)
    if pin_error:
        return jsonify({"error": pin_error}), 400

    UserStoreDB.set_pin_hash(current_user.id, generate_password_hash(new_pin))
    log_event("pin_changed", current_user.id)
    return jsonify({"success": True})


@auth_bp.route("/api/users/profile", methods=["PATCH"])
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    fields = {k: str_field(data, k) for k in ("first_name", "last_name", "nickname") if k in data}

    if "nickname" in fields:
        if not current_user.is_student:
            fields.pop("nickname")
        elif not fields["nickname"]:
            return jsonify({"error": "Nickname cannot be empty."}), 400
        else:
            for classroom in ClassroomStoreDB.student_classrooms(current_user.id):
                if UserStoreDB.nickname_taken(classroom["id"], fields["nickname"], current_user.id):
                    return jsonify({"error": "That nickname is already taken in one of your classrooms."}), 400

    user = UserStoreDB.update_profile(current_user.id, fields)
    return jsonify({"user": user})
