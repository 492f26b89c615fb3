"""Tests for teacher/student authentication, lockout and profile updates."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


class TestTeacherAuth:
    def test_register_returns_token(self, client):
        resp = client.post("/api/auth/register/teacher", json={
            "email": "New@School.org", "password": "StrongPass1",
            "first_name": "Nia", "last_name": "Ng",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["token"]
        assert data["user"]["email"] == "new@school.org"
        assert data["user"]["role"] == "teacher"

    def test_register_weak_password(self, client):
        resp = client.post("/api/auth/register/teacher", json={
            "email": "a@b.com", "password": "short", "first_name": "A",
        })
        assert resp.status_code == 400
        assert "8 characters" in resp.get_json()["error"]

    def test_register_duplicate_email(self, client, teacher):
        resp = client.post("/api/auth/register/teacher", json={
            "email": teacher["email"], "password": "StrongPass1", "first_name": "Dup",
        })
        assert resp.status_code == 400

    def test_login_success(self, client, teacher):
        resp = client.post("/api/auth/login/teacher", json={
            "email": teacher["email"], "password": teacher["password"],
        })
        assert resp.status_code == 200
        token = resp.get_json()["token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.get_json()["user"]["id"] == teacher["id"]

    def test_login_wrong_password(self, client, teacher):
        resp = client.post("/api/auth/login/teacher", json={
            "email": teacher["email"], "password": "WrongPass1",
        })
        assert resp.status_code == 401

    def test_lockout_after_five_failures(self, client, teacher):
        for _ in range(5):
            client.post("/api/auth/login/teacher", json={
                "email": teacher["email"], "password": "WrongPass1",
            })
        resp = client.post("/api/auth/login/teacher", json={
            "email": teacher["email"], "password": teacher["password"],
        })
        assert resp.status_code == 423
        assert 1 <= resp.get_json()["minutes_remaining"] <= 15

    def test_expired_lock_allows_login(self, app, client, teacher):
        from database import get_db
        with app.app_context():
            db = get_db()
            db.execute(
                "UPDATE users SET login_attempts = 5, locked_until = ? WHERE id = ?",
                ((datetime.now() - timedelta(minutes=1)).isoformat(), teacher["id"]),
            )
            db.commit()
        resp = client.post("/api/auth/login/teacher", json={
            "email": teacher["email"], "password": teacher["password"],
        })
        assert resp.status_code == 200

    def test_login_is_audited(self, app, client, teacher):
        client.post("/api/auth/login/teacher", json={
            "email": teacher["email"], "password": teacher["password"],
        })
        from database import get_db
        with app.app_context():
            row = get_db().execute(
                "SELECT COUNT(*) AS n FROM audit_log WHERE user_id = ? AND action = 'login'",
                (teacher["id"],),
            ).fetchone()
            last_login = get_db().execute(
                "SELECT last_login FROM users WHERE id = ?", (teacher["id"],),
            ).fetchone()["last_login"]
        assert row["n"] == 1
        assert last_login


class TestStudentAuth:
    def test_join_classroom(self, client, classroom):
        resp = client.post("/api/auth/join-classroom", json={
            "classroom_code": classroom["code"].lower(), "nickname": "ava", "pin": "2468",
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["user"]["role"] == "student"
        assert data["classroom"]["id"] == classroom["id"]

    def test_join_opens_wallet(self, app, client, classroom):
        resp = client.post("/api/auth/join-classroom", json={
            "classroom_code": classroom["code"], "nickname": "ava", "pin": "2468",
        })
        student_id = resp.get_json()["user"]["id"]
        from wallet import WalletStoreDB
        with app.app_context():
            assert WalletStoreDB(student_id, classroom["id"]).balance() == 0

    def test_join_invalid_code(self, client, classroom):
        resp = client.post("/api/auth/join-classroom", json={
            "classroom_code": "ZZZZZZ", "nickname": "ava", "pin": "2468",
        })
        assert resp.status_code == 400

    def test_join_bad_pin(self, client, classroom):
        resp = client.post("/api/auth/join-classroom", json={
            "classroom_code": classroom["code"], "nickname": "ava", "pin": "12a",
        })
        assert resp.status_code == 400

    def test_join_duplicate_nickname_case_insensitive(self, client, classroom, student):
        resp = client.post("/api/auth/join-classroom", json={
            "classroom_code": classroom["code"], "nickname": "SAM", "pin": "2468",
        })
        assert resp.status_code == 400

    def test_login_student(self, client, classroom, student):
        resp = client.post("/api/auth/login/student", json={
            "classroom_code": classroom["code"], "nickname": student["nickname"], "pin": student["pin"],
        })
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == student["id"]

    def test_login_student_wrong_pin(self, client, classroom, student):
        resp = client.post("/api/auth/login/student", json={
            "classroom_code": classroom["code"], "nickname": student["nickname"], "pin": "9999",
        })
        assert resp.status_code == 401

    def test_change_pin(self, client, classroom, student, student_headers):
        resp = client.post("/api/auth/change-pin", headers=student_headers, json={
            "current_pin": student["pin"], "new_pin": "5678",
        })
        assert resp.status_code == 200
        login = client.post("/api/auth/login/student", json={
            "classroom_code": classroom["code"], "nickname": student["nickname"], "pin": "5678",
        })
        assert login.status_code == 200

    def test_change_pin_wrong_current(self, client, student_headers):
        resp = client.post("/api/auth/change-pin", headers=student_headers, json={
            "current_pin": "0000", "new_pin": "5678",
        })
        assert resp.status_code == 400

    def test_teacher_cannot_change_pin(self, client, teacher_headers):
        resp = client.post("/api/auth/change-pin", headers=teacher_headers, json={
            "current_pin": "1234", "new_pin": "5678",
        })
        assert resp.status_code == 403


class TestBearerTokens:
    def test_me_requires_auth(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Authentication required"

    def test_garbage_token_rejected(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_expired_token_rejected(self, app, client, teacher):
        import jwt
        token = jwt.encode(
            {"sub": str(teacher["id"]), "role": "teacher",
             "exp": datetime.now(timezone.utc) - timedelta(hours=1)},
            app.config["JWT_SECRET"], algorithm="HS256",
        )
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_decode_roundtrip(self, app):
        from tokens import decode_token, encode_token
        with app.app_context():
            result = decode_token(encode_token(7, "student"))
        assert result["success"]
        assert result["payload"]["sub"] == "7"
        assert result["payload"]["role"] == "student"

    def test_student_me_lists_classrooms(self, client, classroom, student_headers):
        resp = client.get("/api/auth/me", headers=student_headers)
        assert [c["id"] for c in resp.get_json()["classrooms"]] == [classroom["id"]]


class TestProfile:
    def test_update_names(self, client, teacher_headers):
        resp = client.patch("/api/users/profile", headers=teacher_headers, json={
            "first_name": "Tessa", "last_name": "T",
        })
        assert resp.status_code == 200
        assert resp.get_json()["user"]["first_name"] == "Tessa"

    def test_student_nickname_conflict(self, client, make_student, student_headers):
        make_student("riley")
        resp = client.patch("/api/users/profile", headers=student_headers, json={"nickname": "Riley"})
        assert resp.status_code == 400

    def test_student_nickname_change(self, client, student_headers):
        resp = client.patch("/api/users/profile", headers=student_headers, json={"nickname": "sammy"})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["nickname"] == "sammy"

    @pytest.mark.parametrize("body", [
        {"first_name": 42},
        {"last_name": ["T"]},
        {"nickname": {"name": "sam"}},
    ])
    def test_non_string_fields_rejected(self, client, student_headers, body):
        resp = client.patch("/api/users/profile", headers=student_headers, json=body)
        assert resp.status_code == 400
        assert resp.get_json()["error"].endswith("must be a string")

    def test_register_with_numeric_email(self, client):
        resp = client.post("/api/auth/register/teacher", json={
            "email": 12345, "password": "Str0ngPass", "first_name": "T", "last_name": "T",
        })
        assert resp.status_code == 400
