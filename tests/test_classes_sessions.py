"""
Classes, custom sessions, cancellation and attendance through the API.
"""
from datetime import datetime, timedelta

from lms.models.enrollment import Enrollment, EnrollmentPaymentStatus
from lms.models.lms_class import LmsClass
from lms.models.session import ClassSession
from tests.conftest import headers_for, make_class

SCHEDULE = {"day": 6, "start_time": "08:00", "end_time": "10:00", "timezone": "Asia/Colombo"}


class TestClasses:
    async def test_create_generates_sessions(self, client, admin_headers):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "Financial Accounting", "time_schedules": [SCHEDULE], "total_sessions": 3},
            headers=admin_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["slug"] == "financial-accounting"
        assert body["sessions_created"] == 3
        sessions = await ClassSession.find({"class_id": body["id"]}).sort("index").to_list()
        assert [s.index for s in sessions] == [1, 2, 3]
        assert all((s.end_at - s.start_at) == timedelta(hours=2) for s in sessions)

    async def test_offset_aware_first_session_date(self, client, admin_headers):
        # Saturday 5 January 2030, 08:00 in Colombo
        response = await client.post(
            "/api/v1/classes/",
            json={
                "name": "Cost Accounting",
                "time_schedules": [SCHEDULE],
                "total_sessions": 2,
                "first_session_date": "2030-01-05T08:00:00+05:30",
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        body = response.json()
        stored = await LmsClass.get(body["id"])
        assert stored.first_session_date == datetime(2030, 1, 5, 2, 30)
        sessions = await ClassSession.find({"class_id": body["id"]}).sort("index").to_list()
        assert [s.start_at for s in sessions] == [datetime(2030, 1, 5, 2, 30), datetime(2030, 1, 12, 2, 30)]

    async def test_utc_suffixed_first_session_date(self, client, admin_headers):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "Auditing", "time_schedules": [SCHEDULE], "total_sessions": 1, "first_session_date": "2030-01-01T00:00:00Z"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["sessions_created"] == 1

    async def test_duplicate_names_get_unique_slugs(self, client, admin_headers):
        first = await client.post("/api/v1/classes/", json={"name": "Tax"}, headers=admin_headers)
        second = await client.post("/api/v1/classes/", json={"name": "Tax"}, headers=admin_headers)
        assert first.json()["slug"] != second.json()["slug"]

    async def test_unknown_timezone_rejected(self, client, admin_headers):
        response = await client.post(
            "/api/v1/classes/",
            json={"name": "Audit", "time_schedules": [{**SCHEDULE, "timezone": "Mars/Base"}]},
            headers=admin_headers,
        )
        assert response.status_code == 400

    async def test_students_only_see_published(self, client, student_headers):
        await make_class("Published", is_published=True)
        await make_class("Draft", is_published=False)
        response = await client.get("/api/v1/classes/", headers=student_headers)
        assert [c["name"] for c in response.json()] == ["Published"]

    async def test_soft_delete_removes_sessions(self, client, admin_headers):
        created = await client.post(
            "/api/v1/classes/",
            json={"name": "Costing", "time_schedules": [SCHEDULE], "total_sessions": 2},
            headers=admin_headers,
        )
        class_id = created.json()["id"]

        response = await client.delete(f"/api/v1/classes/{class_id}", headers=admin_headers)

        assert response.json()["sessions_removed"] == 2
        assert (await LmsClass.get(created.json()["id"])).is_deleted is True
        assert await ClassSession.find({"class_id": class_id}).count() == 0


class TestSessions:
    async def test_custom_session_gets_next_index(self, client, admin_headers):
        lms_class = await make_class()
        url = f"/api/v1/sessions/classes/{lms_class.id}"
        first = await client.post(url, json={"date": "2026-11-07", "time": "08:00", "skip_zoom": True}, headers=admin_headers)
        second = await client.post(
            url, json={"start_at": "2026-11-14T02:30:00Z", "duration_minutes": 90}, headers=admin_headers
        )

        assert first.status_code == 201
        assert first.json()["index"] == 1
        assert first.json()["start_at"].startswith("2026-11-07T02:30:00")
        assert second.json()["index"] == 2
        stored = await LmsClass.get(lms_class.id)
        assert len(stored.sessions) == 2

    async def test_missing_start_is_400(self, client, admin_headers):
        lms_class = await make_class()
        response = await client.post(f"/api/v1/sessions/classes/{lms_class.id}", json={}, headers=admin_headers)
        assert response.status_code == 400

    async def test_other_instructor_cannot_add_sessions(self, client, instructor_user):
        lms_class = await make_class(instructor_id="someone-else")
        response = await client.post(
            f"/api/v1/sessions/classes/{lms_class.id}",
            json={"date": "2026-11-07", "time": "08:00"},
            headers=headers_for(instructor_user),
        )
        assert response.status_code == 403

    async def test_cancel(self, client, admin_headers):
        lms_class = await make_class()
        created = await client.post(
            f"/api/v1/sessions/classes/{lms_class.id}",
            json={"date": "2026-11-07", "time": "08:00"},
            headers=admin_headers,
        )
        session_id = created.json()["id"]

        response = await client.post(
            f"/api/v1/sessions/{session_id}/cancel", json={"reason": "Public holiday"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["is_cancelled"] is True

        again = await client.post(f"/api/v1/sessions/{session_id}/cancel", json={}, headers=admin_headers)
        assert again.status_code == 400

    async def test_student_needs_active_enrollment(self, client, student_user, student_headers):
        lms_class = await make_class()
        response = await client.get("/api/v1/sessions/", params={"class_id": str(lms_class.id)}, headers=student_headers)
        assert response.status_code == 403

        await Enrollment(
            student_id=str(student_user.id),
            class_id=str(lms_class.id),
            payment_status=EnrollmentPaymentStatus.PAID,
            access_end_date=datetime.utcnow() + timedelta(days=10),
        ).insert()
        response = await client.get("/api/v1/sessions/", params={"class_id": str(lms_class.id)}, headers=student_headers)
        assert response.status_code == 200


class TestAttendance:
    async def test_student_start_and_end(self, client, student_user, student_headers):
        lms_class = await make_class()
        await Enrollment(student_id=str(student_user.id), class_id=str(lms_class.id)).insert()
        s = ClassSession(
            class_id=str(lms_class.id),
            index=1,
            start_at=datetime.utcnow(),
            end_at=datetime.utcnow() + timedelta(hours=2),
            timezone="Asia/Colombo",
        )
        await s.insert()

        start = await client.post("/api/v1/attendance/start", json={"session_id": str(s.id)}, headers=student_headers)
        end = await client.post("/api/v1/attendance/end", json={"session_id": str(s.id)}, headers=student_headers)

        assert start.status_code == 200
        assert end.status_code == 200
        assert end.json()["attendance"]["duration_minutes"] == 0
        stored = await ClassSession.get(s.id)
        assert stored.attendance[0].student_id == str(student_user.id)

    async def test_end_without_start(self, client, student_user, student_headers):
        lms_class = await make_class()
        await Enrollment(student_id=str(student_user.id), class_id=str(lms_class.id)).insert()
        s = ClassSession(
            class_id=str(lms_class.id),
            index=1,
            start_at=datetime.utcnow(),
            end_at=datetime.utcnow() + timedelta(hours=2),
            timezone="Asia/Colombo",
        )
        await s.insert()
        response = await client.post("/api/v1/attendance/end", json={"session_id": str(s.id)}, headers=student_headers)
        assert response.status_code == 400
