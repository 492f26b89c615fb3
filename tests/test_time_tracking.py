"""Tests for time-tracking sessions, idle detection and token conversion."""

from __future__ import annotations

from datetime import datetime, timedelta

NINE = datetime(2026, 3, 2, 9, 0)


def at(minutes: int) -> datetime:
    return NINE + timedelta(minutes=minutes)


class TestSessionLifecycle:
    def test_one_active_session_at_a_time(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            first = service.start_session(student["id"], classroom["id"], now=NINE)
            second = service.start_session(student["id"], classroom["id"], now=at(1))
        assert first["success"]
        assert not second["success"]
        assert second["active_session"]["id"] == first["session_id"]

    def test_hour_earns_four_tokens(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        from wallet import WalletStoreDB
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            result = service.end_session(session_id, now=at(60))
            balance = WalletStoreDB(student["id"], classroom["id"]).balance()
        assert result["status"] == "completed"
        assert (result["duration"], result["idle_time"], result["tokens_earned"]) == (60, 0, 4)
        assert balance == 4

    def test_idle_gap_is_subtracted(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            beat = service.update_heartbeat(session_id, "click", now=at(20))
            result = service.end_session(session_id, now=at(60))
        assert beat["warning"].startswith("Session has been idle")
        assert result["idle_time"] == 15
        assert result["effective_minutes"] == 45
        assert result["tokens_earned"] == 3

    def test_short_session_is_abandoned(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            result = service.end_session(session_id, now=at(3))
            again = service.end_session(session_id, now=at(4))
        assert result["status"] == "abandoned"
        assert result["tokens_earned"] == 0
        assert not again["success"]

    def test_idle_warning_rounds_half_up(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            beat = service.update_heartbeat(session_id, "click", now=NINE + timedelta(minutes=16, seconds=30))
        assert beat["warning"] == "Session has been idle for 17 minutes"

    def test_ended_session_refuses_heartbeat_and_second_end(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            first = service.end_session(session_id, now=at(30))
            beat = service.update_heartbeat(session_id, "click", now=at(31))
            again = service.end_session(session_id, now=at(32))
            session = service.get_session(session_id)
        assert first["status"] == "completed"
        assert beat == {"success": False, "error": "Session is not active"}
        assert again == {"success": False, "error": "Session has already ended"}
        assert (session["end_time"], session["tokens_earned"]) == (at(30).isoformat(), 2)

    def test_unknown_activity(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            result = service.update_heartbeat(session_id, "dance", now=at(1))
        assert not result["success"]


class TestDailyLimit:
    def test_cap_trims_second_session(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService({"MAX_DAILY_HOURS": 1})
            first = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            service.end_session(first, now=at(45))
            second = service.start_session(student["id"], classroom["id"], now=at(60))["session_id"]
            result = service.end_session(second, now=at(120))
            check = service.can_start_session(student["id"], classroom["id"], now=at(150))
        assert result["effective_minutes"] == 15
        assert result["duration"] == 15
        assert result["tokens_earned"] == 1
        assert not check["can_start"]
        assert check["reason"] == "Daily limit of 1 hours reached"

    def test_cap_below_minimum_abandons_session(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        from wallet import WalletStoreDB
        with app.app_context():
            service = TimeTrackingService({"MAX_DAILY_HOURS": 1})
            first = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            service.end_session(first, now=at(57))
            second = service.start_session(student["id"], classroom["id"], now=at(60))["session_id"]
            result = service.end_session(second, now=at(120))
            minutes = service.minutes_today(student["id"], classroom["id"], at(130))
            balance = WalletStoreDB(student["id"], classroom["id"]).balance()
        assert (result["status"], result["tokens_earned"]) == ("abandoned", 0)
        assert minutes == 57
        assert balance == 3

    def test_classroom_setting_overrides(self, app, classroom, student):
        from db_stores import ClassroomStoreDB
        from time_tracking import TimeTrackingService
        with app.app_context():
            ClassroomStoreDB.update_settings(classroom["id"], {"minutes_per_token": 10})
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            result = service.end_session(session_id, now=at(60))
        assert result["tokens_earned"] == 6

    def test_today_summary(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            service.end_session(session_id, now=at(30))
            summary = service.today_summary(student["id"], classroom["id"], now=at(40))
        assert summary["session_count"] == 1
        assert summary["minutes_today"] == 30
        assert summary["tokens_today"] == 2
        assert summary["remaining_minutes"] == 8 * 60 - 30
        assert summary["active_session"] is None


class TestMaintenance:
    def test_cleanup_ends_at_last_heartbeat(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            session_id = service.start_session(student["id"], classroom["id"], now=NINE)["session_id"]
            for minute in (4, 8, 12):
                service.update_heartbeat(session_id, now=at(minute))
            cleaned = service.cleanup_abandoned_sessions(now=at(40))
            session = service.get_session(session_id)
        assert cleaned == 1
        assert session["termination_reason"] == "timeout"
        assert session["end_time"] == at(12).isoformat()
        assert session["duration"] == 12

    def test_recent_sessions_left_alone(self, app, classroom, student):
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            service.start_session(student["id"], classroom["id"], now=NINE)
            assert service.cleanup_abandoned_sessions(now=at(6)) == 0

    def test_suspicious_activity(self, app, classroom, student, make_student):
        other = make_student("twin")
        from time_tracking import TimeTrackingService
        with app.app_context():
            service = TimeTrackingService()
            first = service.start_session(student["id"], classroom["id"], "10.0.0.7", now=NINE)
            service.start_session(other, classroom["id"], "10.0.0.7", now=at(1))
            service.end_session(first["session_id"], now=at(60))
            report = service.detect_suspicious_activity(classroom["id"], now=at(90))
        assert report["ip_conflicts"] == [
            {"ip_address": "10.0.0.7", "student_count": 2, "students": ["sam", "twin"]},
        ]
        assert [s["session_id"] for s in report["suspicious_sessions"]] == [first["session_id"]]

    def test_fingerprint_includes_metadata(self):
        from time_tracking import TimeTrackingService
        plain = TimeTrackingService.fingerprint_hash("UA", "1.2.3.4")
        tagged = TimeTrackingService.fingerprint_hash("UA", "1.2.3.4", {"screen": "1024x768"})
        assert plain != tagged
        assert len(plain) == 64


class TestTimeTrackingRoutes:
    def test_start_and_end(self, client, classroom, student_headers):
        resp = client.post("/api/time-tracking/start", headers={**student_headers, "X-Forwarded-For": "10.1.1.1, 10.0.0.1"},
                           json={"classroom_id": classroom["id"]})
        assert resp.status_code == 201
        session = resp.get_json()["session"]
        assert session["ip_address"] == "10.1.1.1"
        active = client.get("/api/time-tracking/active", headers=student_headers)
        assert active.get_json()["session"]["id"] == session["id"]
        end = client.post("/api/time-tracking/end", headers=student_headers, json={"session_id": session["id"]})
        assert end.status_code == 200
        assert end.get_json()["status"] == "abandoned"

    def test_student_cannot_use_admin_reason(self, client, classroom, student_headers):
        session_id = client.post("/api/time-tracking/start", headers=student_headers,
                                 json={"classroom_id": classroom["id"]}).get_json()["session_id"]
        resp = client.post("/api/time-tracking/end", headers=student_headers,
                           json={"session_id": session_id, "reason": "admin"})
        assert resp.status_code == 400

    def test_other_students_session_is_hidden(self, client, classroom, make_student, headers_for,
                                               student_headers):
        other_headers = headers_for(make_student("kim"))
        session_id = client.post("/api/time-tracking/start", headers=other_headers,
                                 json={"classroom_id": classroom["id"]}).get_json()["session_id"]
        resp = client.post("/api/time-tracking/heartbeat", headers=student_headers,
                           json={"session_id": session_id})
        assert resp.status_code == 404

    def test_teacher_terminates(self, app, client, classroom, student_headers, teacher_headers):
        session_id = client.post("/api/time-tracking/start", headers=student_headers,
                                 json={"classroom_id": classroom["id"]}).get_json()["session_id"]
        resp = client.post(f"/api/time-tracking/{session_id}/terminate", headers=teacher_headers)
        assert resp.status_code == 200
        from time_tracking import TimeTrackingService
        with app.app_context():
            session = TimeTrackingService().get_session(session_id)
        assert session["termination_reason"] == "admin"
        assert session["terminated_by"] is not None

    def test_student_cannot_end_terminated_session(self, app, client, classroom, student_headers,
                                                   teacher_headers):
        session_id = client.post("/api/time-tracking/start", headers=student_headers,
                                 json={"classroom_id": classroom["id"]}).get_json()["session_id"]
        client.post(f"/api/time-tracking/{session_id}/terminate", headers=teacher_headers)
        resp = client.post("/api/time-tracking/end", headers=student_headers,
                           json={"session_id": session_id})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Session has already ended"
        from time_tracking import TimeTrackingService
        with app.app_context():
            session = TimeTrackingService().get_session(session_id)
        assert session["termination_reason"] == "admin"

    def test_not_enrolled_classroom(self, app, client, teacher, student_headers):
        from db_stores import ClassroomStoreDB
        with app.app_context():
            other = ClassroomStoreDB.create(teacher["id"], "Lab")
        resp = client.post("/api/time-tracking/start", headers=student_headers,
                           json={"classroom_id": other["id"]})
        assert resp.status_code == 404
