"""
Test fixtures for the classroom token economy API.

Provides app, client, seeded teacher/student/classroom rows and bearer
headers, backed by a file-based SQLite database per test.

Fixtures push their own short-lived app contexts; tests wrap direct
service calls in ``with app.app_context():`` and make HTTP calls outside
them, so every request resolves its own user and connection.
"""

from __future__ import annotations

import fnmatch

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

TEACHER_EMAIL = "teacher@test.com"
TEACHER_PASSWORD = "TeacherPass1"
STUDENT_NICKNAME = "sam"
STUDENT_PIN = "1234"


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "JWT_SECRET": "test-jwt-secret",
        "REDIS_URL": "",
    })

    with app.app_context():
        from database import init_db, run_migrations

        init_db()
        run_migrations()
    app._db_initialized = True

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def teacher(app):
    """A seeded teacher account."""
    from werkzeug.security import generate_password_hash
    from db_stores import UserStoreDB

    with app.app_context():
        teacher_id = UserStoreDB.create_teacher(
            TEACHER_EMAIL, generate_password_hash(TEACHER_PASSWORD), "Tess", "Teacher",
        )
    return {"id": teacher_id, "email": TEACHER_EMAIL, "password": TEACHER_PASSWORD}


@pytest.fixture
def classroom(app, teacher):
    """A classroom owned by the seeded teacher."""
    from db_stores import ClassroomStoreDB

    with app.app_context():
        return ClassroomStoreDB.create(teacher["id"], "Room 101", "Homeroom")


@pytest.fixture
def make_student(app, classroom):
    """Factory for enrolled students. Returns the new student's id."""
    from auth import create_student_account

    def _make(nickname: str, pin: str = "4321", classroom_id: int | None = None) -> int:
        with app.app_context():
            result = create_student_account(classroom_id or classroom["id"], nickname, pin)
        assert result["success"], result
        return result["user"].id

    return _make


@pytest.fixture
def student(make_student):
    """A student enrolled in the seeded classroom (wallet opened)."""
    student_id = make_student(STUDENT_NICKNAME, STUDENT_PIN)
    return {"id": student_id, "nickname": STUDENT_NICKNAME, "pin": STUDENT_PIN}


@pytest.fixture
def headers_for(app):
    """Bearer headers for an arbitrary user id and role."""
    from tokens import encode_token

    def _headers(user_id: int, role: str = "student") -> dict:
        with app.app_context():
            return {"Authorization": f"Bearer {encode_token(user_id, role)}"}

    return _headers


@pytest.fixture
def teacher_headers(teacher, headers_for):
    return headers_for(teacher["id"], "teacher")


@pytest.fixture
def student_headers(student, headers_for):
    return headers_for(student["id"], "student")


@pytest.fixture
def other_teacher_headers(app, headers_for):
    """Headers for a second teacher who owns nothing."""
    from werkzeug.security import generate_password_hash
    from db_stores import UserStoreDB

    with app.app_context():
        other_id = UserStoreDB.create_teacher(
            "other@test.com", generate_password_hash("OtherPass1"), "Otto", "Other",
        )
    return headers_for(other_id, "teacher")


@pytest.fixture
def fund(app, classroom, teacher):
    """Award tokens to a student in the seeded classroom."""
    from wallet import award_tokens

    def _fund(student_id: int, amount: int) -> dict:
        with app.app_context():
            result = award_tokens([student_id], amount, "Participation", "Seed", classroom["id"], teacher["id"])
        assert result["success"], result
        return result

    return _fund


class FakeRedis:
    """Dict-backed stand-in for the redis client calls RedisCache makes."""

    def __init__(self):
        self.store: dict[str, bytes] = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value.encode() if isinstance(value, str) else value

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch.fnmatch(k, match)]

    def ping(self):
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()
