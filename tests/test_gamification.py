"""Tests for badges and challenges."""

from __future__ import annotations

from datetime import datetime

import pytest


@pytest.fixture
def badge(app, classroom):
    from db_stores import BadgeStoreDB
    with app.app_context():
        return BadgeStoreDB.create(classroom["id"], "Helper", category="behavior")


@pytest.fixture
def challenge(app, classroom):
    from db_stores import ChallengeStoreDB
    with app.app_context():
        return ChallengeStoreDB.create(classroom["id"], "Read 3 Books", 3, token_reward=20)


class TestBadges:
    def test_create_from_template(self, client, classroom, teacher_headers):
        resp = client.post("/api/badges", headers=teacher_headers, json={
            "classroom_id": classroom["id"], "template_id": "perfect_attendance", "color": "#000000",
        })
        assert resp.status_code == 201
        badge = resp.get_json()["badge"]
        assert badge["name"] == "Perfect Attendance"
        assert badge["color"] == "#000000"
        assert badge["requirements"] == {}

    def test_unknown_template(self, client, classroom, teacher_headers):
        resp = client.post("/api/badges", headers=teacher_headers, json={
            "classroom_id": classroom["id"], "template_id": "missing",
        })
        assert resp.status_code == 400

    def test_award_once(self, client, badge, student, teacher_headers, student_headers):
        url = f"/api/badges/{badge['id']}/award"
        body = {"student_id": student["id"], "reason": "Tidied the library"}
        assert client.post(url, headers=teacher_headers, json=body).status_code == 201
        again = client.post(url, headers=teacher_headers, json=body)
        assert again.status_code == 400
        assert again.get_json()["error"] == "Student already has this badge"
        mine = client.get("/api/students/me/badges", headers=student_headers).get_json()["badges"]
        assert [(b["name"], b["reason"]) for b in mine] == [("Helper", "Tidied the library")]

    def test_award_requires_enrollment(self, app, client, badge, teacher, make_student, teacher_headers):
        from db_stores import ClassroomStoreDB
        with app.app_context():
            other = ClassroomStoreDB.create(teacher["id"], "Music")
        outsider = make_student("otto", classroom_id=other["id"])
        resp = client.post(f"/api/badges/{badge['id']}/award", headers=teacher_headers,
                           json={"student_id": outsider})
        assert resp.status_code == 400

    def test_badge_analytics(self, client, classroom, badge, student, teacher_headers):
        client.post(f"/api/badges/{badge['id']}/award", headers=teacher_headers,
                    json={"student_id": student["id"]})
        resp = client.get(f"/api/classrooms/{classroom['id']}/badges/analytics", headers=teacher_headers)
        assert resp.get_json()["badges"][0]["awarded_count"] == 1


class TestChallenges:
    def test_create_validates_target(self, client, classroom, teacher_headers):
        resp = client.post("/api/challenges", headers=teacher_headers, json={
            "classroom_id": classroom["id"], "name": "Nothing", "target_value": 0,
        })
        assert resp.status_code == 400

    def test_create_from_template(self, client, classroom, teacher_headers):
        resp = client.post("/api/challenges", headers=teacher_headers, json={
            "classroom_id": classroom["id"], "template_id": "reading_marathon",
        })
        assert resp.status_code == 201
        data = resp.get_json()["challenge"]
        assert (data["target_value"], data["token_reward"]) == (10, 50)

    def test_completion_rewards_once(self, app, client, classroom, challenge, student, teacher_headers):
        url = f"/api/challenges/{challenge['id']}/progress"
        first = client.post(url, headers=teacher_headers, json={"student_id": student["id"], "increment": 2})
        assert first.get_json()["newly_completed"] is False
        done = client.post(url, headers=teacher_headers, json={"student_id": student["id"], "increment": 5})
        data = done.get_json()
        assert data["newly_completed"] is True
        assert data["progress"]["current_value"] == 3
        assert data["award"]["wallets"][0]["current_balance"] == 20
        after = client.post(url, headers=teacher_headers, json={"student_id": student["id"]})
        assert after.get_json()["newly_completed"] is False
        from wallet import WalletStoreDB
        with app.app_context():
            assert WalletStoreDB(student["id"], classroom["id"]).balance() == 20

    def test_failed_reward_leaves_challenge_open(self, app, classroom, challenge, student):
        from db_stores import ChallengeStoreDB, ClassroomStoreDB
        with app.app_context():
            ClassroomStoreDB.unenroll(classroom["id"], student["id"])
            result = ChallengeStoreDB.record_progress(challenge["id"], student["id"], 3)
            progress = ChallengeStoreDB.student_progress(student["id"], classroom["id"])
        assert result["success"] is False
        assert (progress[0]["current_value"], progress[0]["completed"]) == (0, 0)

    def test_inactive_challenge(self, client, challenge, student, teacher_headers):
        client.put(f"/api/challenges/{challenge['id']}/toggle", headers=teacher_headers, json={})
        resp = client.post(f"/api/challenges/{challenge['id']}/progress", headers=teacher_headers,
                           json={"student_id": student["id"]})
        assert resp.status_code == 400

    def test_expired_challenge(self, app, classroom, student):
        from db_stores import ChallengeStoreDB
        with app.app_context():
            expired = ChallengeStoreDB.create(classroom["id"], "Spring Sprint", 2,
                                              expires_at="2026-03-01T00:00:00+00:00")
            result = ChallengeStoreDB.record_progress(expired["id"], student["id"], 1,
                                                      now=datetime(2026, 4, 1))
        assert result["error"] == "Challenge has expired"

    def test_student_sees_progress(self, client, classroom, challenge, student, teacher_headers, student_headers):
        client.post(f"/api/challenges/{challenge['id']}/progress", headers=teacher_headers,
                    json={"student_id": student["id"], "increment": 1})
        resp = client.get(f"/api/students/me/challenges/{classroom['id']}", headers=student_headers)
        row = resp.get_json()["challenges"][0]
        assert (row["current_value"], row["completed"]) == (1, 0)

    def test_challenge_analytics(self, client, classroom, challenge, student, make_student, teacher_headers):
        other = make_student("lu")
        url = f"/api/challenges/{challenge['id']}/progress"
        client.post(url, headers=teacher_headers, json={"student_id": student["id"], "increment": 3})
        client.post(url, headers=teacher_headers, json={"student_id": other, "increment": 1})
        resp = client.get(f"/api/classrooms/{classroom['id']}/challenges/analytics", headers=teacher_headers)
        row = resp.get_json()["challenges"][0]
        assert (row["participants"], row["completions"], row["completion_rate"]) == (2, 1, 50.0)
