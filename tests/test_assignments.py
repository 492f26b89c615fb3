"""Tests for assignments, submissions and review awards."""

from __future__ import annotations

from datetime import datetime

import pytest


@pytest.fixture
def assignment(app, classroom, teacher):
    from db_stores import AssignmentStoreDB
    with app.app_context():
        return AssignmentStoreDB.create(classroom["id"], teacher["id"], "Reading Log",
                                        token_reward=15, due_date="2026-03-01T17:00:00")


class TestAssignments:
    def test_create(self, client, classroom, teacher_headers):
        resp = client.post("/api/assignments", headers=teacher_headers, json={
            "classroom_id": classroom["id"], "title": "Essay", "token_reward": 20,
            "due_date": "2026-04-01",
        })
        assert resp.status_code == 201
        data = resp.get_json()["assignment"]
        assert data["token_reward"] == 20
        assert data["is_active"] == 1

    @pytest.mark.parametrize("body", [
        {"title": ""},
        {"title": "Essay", "token_reward": -5},
        {"title": "Essay", "due_date": "next week"},
    ])
    def test_create_validation(self, client, classroom, teacher_headers, body):
        resp = client.post("/api/assignments", headers=teacher_headers,
                           json={"classroom_id": classroom["id"], **body})
        assert resp.status_code == 400

    def test_deactivated_hidden_from_students(self, client, classroom, assignment,
                                              teacher_headers, student_headers):
        client.delete(f"/api/assignments/{assignment['id']}", headers=teacher_headers)
        assert client.get(f"/api/assignments/{assignment['id']}", headers=student_headers).status_code == 404
        listed = client.get(f"/api/classrooms/{classroom['id']}/assignments", headers=student_headers)
        assert listed.get_json()["assignments"] == []
        teacher_view = client.get(f"/api/assignments/{assignment['id']}", headers=teacher_headers)
        assert teacher_view.get_json()["assignment"]["is_active"] == 0

    def test_partial_update(self, client, assignment, teacher_headers):
        resp = client.put(f"/api/assignments/{assignment['id']}", headers=teacher_headers,
                          json={"token_reward": 30})
        data = resp.get_json()["assignment"]
        assert data["token_reward"] == 30
        assert data["title"] == "Reading Log"


class TestSubmissions:
    def test_late_flag(self, app, assignment, student):
        from db_stores import SubmissionStoreDB
        with app.app_context():
            on_time = SubmissionStoreDB.submit(assignment, student["id"], "done",
                                               now=datetime(2026, 3, 1, 9, 0))
        assert on_time["submission"]["is_late"] == 0

    def test_late_submission(self, app, assignment, student):
        from db_stores import SubmissionStoreDB
        with app.app_context():
            late = SubmissionStoreDB.submit(assignment, student["id"], "done",
                                            now=datetime(2026, 3, 2, 9, 0))
        assert late["submission"]["is_late"] == 1

    def test_aware_due_date_is_compared_in_local_time(self, app, classroom, teacher, student):
        from db_stores import AssignmentStoreDB, SubmissionStoreDB
        with app.app_context():
            overdue = AssignmentStoreDB.create(classroom["id"], teacher["id"], "Lab Report",
                                               due_date="2020-01-01T00:00:00+00:00")
            result = SubmissionStoreDB.submit(overdue, student["id"], "done")
        assert result["submission"]["is_late"] == 1

    def test_submit_requires_content(self, client, assignment, student_headers):
        resp = client.post(f"/api/assignments/{assignment['id']}/submissions",
                           headers=student_headers, json={})
        assert resp.status_code == 400

    def test_only_rejected_can_resubmit(self, client, assignment, teacher_headers, student_headers):
        url = f"/api/assignments/{assignment['id']}/submissions"
        first = client.post(url, headers=student_headers, json={"submission_text": "v1"})
        assert first.status_code == 201
        assert client.post(url, headers=student_headers, json={"submission_text": "v2"}).status_code == 400

        submission_id = first.get_json()["submission"]["id"]
        client.put(f"/api/submissions/{submission_id}/review", headers=teacher_headers,
                   json={"status": "rejected", "feedback": "Add more detail"})
        again = client.post(url, headers=student_headers, json={"submission_text": "v3"})
        assert again.status_code == 201
        data = again.get_json()
        assert data["resubmitted"] is True
        assert data["submission"]["id"] == submission_id
        assert data["submission"]["feedback"] == ""

    def test_pending_queue(self, client, classroom, assignment, teacher_headers, student_headers):
        client.post(f"/api/assignments/{assignment['id']}/submissions",
                    headers=student_headers, json={"submission_url": "https://example.org/log"})
        resp = client.get(f"/api/classrooms/{classroom['id']}/submissions/pending", headers=teacher_headers)
        assert [s["nickname"] for s in resp.get_json()["submissions"]] == ["sam"]


class TestReview:
    def _submit(self, client, assignment, student_headers) -> int:
        resp = client.post(f"/api/assignments/{assignment['id']}/submissions",
                           headers=student_headers, json={"submission_text": "done"})
        return resp.get_json()["submission"]["id"]

    def test_approval_awards_reward_once(self, app, client, classroom, student, assignment,
                                         teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        url = f"/api/submissions/{submission_id}/review"
        resp = client.put(url, headers=teacher_headers, json={"status": "approved"})
        assert resp.status_code == 200
        assert resp.get_json()["award"]["wallets"][0]["current_balance"] == 15
        again = client.put(url, headers=teacher_headers, json={"status": "approved"})
        assert again.status_code == 400
        from wallet import WalletStoreDB
        with app.app_context():
            assert WalletStoreDB(student["id"], classroom["id"]).balance() == 15

    def test_unenrolled_student_keeps_submission_pending(self, app, client, classroom, student, assignment,
                                                         teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        client.delete(f"/api/classrooms/{classroom['id']}/students/{student['id']}",
                      headers=teacher_headers)
        resp = client.put(f"/api/submissions/{submission_id}/review", headers=teacher_headers,
                          json={"status": "approved"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Students not enrolled in this classroom"
        from db_stores import SubmissionStoreDB
        from wallet import WalletStoreDB
        with app.app_context():
            submission = SubmissionStoreDB.get(submission_id)
            balance = WalletStoreDB(student["id"], classroom["id"]).balance()
        assert (submission["status"], submission["tokens_awarded"], balance) == ("pending", 0, 0)

    def test_custom_award(self, client, assignment, teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        resp = client.put(f"/api/submissions/{submission_id}/review", headers=teacher_headers,
                          json={"status": "approved", "tokens_awarded": 40})
        assert resp.get_json()["submission"]["tokens_awarded"] == 40

    def test_zero_award_skips_wallet(self, client, assignment, teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        resp = client.put(f"/api/submissions/{submission_id}/review", headers=teacher_headers,
                          json={"status": "approved", "tokens_awarded": 0})
        assert resp.get_json()["award"] is None

    def test_invalid_status(self, client, assignment, teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        resp = client.put(f"/api/submissions/{submission_id}/review", headers=teacher_headers,
                          json={"status": "pending"})
        assert resp.status_code == 400

    def test_foreign_teacher(self, client, assignment, other_teacher_headers, student_headers):
        submission_id = self._submit(client, assignment, student_headers)
        resp = client.put(f"/api/submissions/{submission_id}/review", headers=other_teacher_headers,
                          json={"status": "approved"})
        assert resp.status_code == 404

    def test_student_history(self, client, classroom, assignment, student_headers):
        self._submit(client, assignment, student_headers)
        resp = client.get(f"/api/students/me/submissions?classroom_id={classroom['id']}",
                          headers=student_headers)
        assert [s["assignment_title"] for s in resp.get_json()["submissions"]] == ["Reading Log"]
