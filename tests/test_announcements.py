"""Tests for announcements and read receipts."""

from __future__ import annotations


def _post(client, classroom, headers, **body):
    body.setdefault("title", "Field trip Friday")
    return client.post(f"/api/classrooms/{classroom['id']}/announcements", headers=headers, json=body)


class TestAnnouncements:
    def test_create(self, client, classroom, teacher_headers):
        resp = _post(client, classroom, teacher_headers, content="Bring lunch", priority="high")
        assert resp.status_code == 201
        data = resp.get_json()["announcement"]
        assert (data["priority"], data["content"]) == ("high", "Bring lunch")

    def test_bad_priority(self, client, classroom, teacher_headers):
        assert _post(client, classroom, teacher_headers, priority="urgent").status_code == 400

    def test_title_required(self, client, classroom, teacher_headers):
        assert _post(client, classroom, teacher_headers, title=" ").status_code == 400

    def test_students_cannot_post(self, client, classroom, student_headers):
        assert _post(client, classroom, student_headers).status_code == 403

    def test_read_tracking(self, client, classroom, student, teacher_headers, student_headers):
        announcement_id = _post(client, classroom, teacher_headers).get_json()["announcement"]["id"]
        url = f"/api/classrooms/{classroom['id']}/announcements"

        unread = client.get(url, headers=student_headers).get_json()["announcements"][0]
        assert unread["is_read"] is False

        first = client.post(f"/api/announcements/{announcement_id}/read", headers=student_headers)
        second = client.post(f"/api/announcements/{announcement_id}/read", headers=student_headers)
        assert first.get_json()["newly_read"] is True
        assert second.get_json()["newly_read"] is False

        read = client.get(url, headers=student_headers).get_json()["announcements"][0]
        assert read["is_read"] is True
        teacher_view = client.get(url, headers=teacher_headers).get_json()["announcements"][0]
        assert teacher_view["read_count"] == 1

        receipts = client.get(f"/api/announcements/{announcement_id}/reads", headers=teacher_headers)
        assert [r["nickname"] for r in receipts.get_json()["reads"]] == ["sam"]

    def test_outsider_cannot_mark_read(self, app, client, teacher, classroom, make_student,
                                       headers_for, teacher_headers):
        from db_stores import ClassroomStoreDB
        announcement_id = _post(client, classroom, teacher_headers).get_json()["announcement"]["id"]
        with app.app_context():
            other = ClassroomStoreDB.create(teacher["id"], "Drama")
        outsider = headers_for(make_student("vic", classroom_id=other["id"]))
        resp = client.post(f"/api/announcements/{announcement_id}/read", headers=outsider)
        assert resp.status_code == 404
