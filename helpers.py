"""
Shared helpers used across blueprints.

Role decorators, classroom access guards, request parsing and pagination.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, jsonify, request
from flask_login import current_user

from db_stores import ClassroomStoreDB


def current_user_id() -> int:
    """Return the current authenticated user's ID."""
    return current_user.id


def role_required(*roles: str) -> Callable:
    """Require an authenticated user whose role is one of ``roles``."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated(*args: Any, **kwargs: Any) -> Any:
            if not current_user.is_authenticated:
                return current_app.login_manager.unauthorized()
            if getattr(current_user, "role", "student") not in roles:
                abort(403)
            return f(*args, **kwargs)
        return decorated
    return decorator


teacher_required = role_required("teacher", "admin")
student_required = role_required("student")


def owned_classroom_or_404(classroom_id: int) -> dict:
    """Return the classroom if the current teacher owns it."""
    classroom = ClassroomStoreDB.get(classroom_id)
    if not classroom:
        abort(404)
    if current_user.role != "admin" and classroom["teacher_id"] != current_user.id:
        abort(404)
    return classroom


def accessible_classroom_or_404(classroom_id: int) -> dict:
    """Return the classroom if its teacher or an enrolled student is asking."""
    classroom = ClassroomStoreDB.get(classroom_id)
    if not classroom:
        abort(404)
    if current_user.role == "admin" or classroom["teacher_id"] == current_user.id:
        return classroom
    if current_user.role == "student" and ClassroomStoreDB.is_enrolled(classroom_id, current_user.id):
        return classroom
    abort(404)


def json_body() -> dict:
    """Request JSON as a dict; 400 when the body is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")
    return data


def str_field(data: dict, key: str, default: str = "", strip: bool = True) -> str:
    """Read an optional string field; ValueError when it holds another JSON type."""
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value.strip() if strip else value


def int_field(data: dict, key: str, default: int | None = None, minimum: int | None = None) -> int:
    """Parse an integer field or raise ValueError with a readable message."""
    value = data.get(key, default)
    if value is None:
        raise ValueError(f"{key} is required")
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be a whole number") from None
    if isinstance(value, float) and number != value:
        raise ValueError(f"{key} must be a whole number")
    if minimum is not None and number < minimum:
        raise ValueError(f"{key} must be at least {minimum}")
    return number


def result_response(result: dict, status: int = 200):
    """Map a service result dict to a JSON response (failures -> 400/404)."""
    if result.get("success"):
        return jsonify(result), status
    body = {k: v for k, v in result.items() if k not in ("success", "not_found")}
    return jsonify(body), 404 if result.get("not_found") else 400


# ── Pagination ──────────────────────────────────────────────

def paginate_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Extract page/limit from request.args. Returns (page, limit)."""
    try:
        page = max(1, int(request.args.get("page", 1)))
    except (ValueError, TypeError):
        page = 1
    try:
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except (ValueError, TypeError):
        limit = default_limit
    return page, limit


def paginated_response(items: list, total: int, page: int, limit: int) -> dict:
    """Standard pagination envelope."""
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": max(1, (total + limit - 1) // limit),
        },
    }
