"""
Email verification, password reset codes, the contact inbox and Zoom recording events.
"""
import hashlib
import hmac
import json
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from lms.api.sessions import session_to_dict
from lms.config import settings
from lms.models.contact import ContactMessage
from lms.models.session import ClassSession
from lms.models.user import User, UserRole
from lms.services.otp import MAX_OTP_ATTEMPTS, OtpPurpose, check_otp, issue_otp
from lms.services.recordings import best_recording_file
from tests.conftest import TEST_PASSWORD, fake, make_class, make_user


async def _user_with_code(purpose: OtpPurpose, verified: bool = True) -> tuple[User, str]:
    user = await make_user(UserRole.STUDENT)
    user.is_verified = verified
    code = issue_otp(user, purpose)
    await user.save()
    return user, code


class TestOtp:
    def test_code_is_stored_hashed(self):
        user = User(email="a@example.com", hashed_password="x", first_name="A")
        code = issue_otp(user, OtpPurpose.VERIFY_EMAIL, now=datetime(2026, 10, 1))
        assert len(code) == 6 and code.isdigit()
        assert user.otp_hash != code
        assert user.otp_expires_at == datetime(2026, 10, 1, 0, 10)

    def test_expired_code_is_cleared(self):
        user = User(email="a@example.com", hashed_password="x", first_name="A")
        code = issue_otp(user, OtpPurpose.RESET_PASSWORD, now=datetime(2026, 10, 1))
        with pytest.raises(HTTPException) as exc:
            check_otp(user, OtpPurpose.RESET_PASSWORD, code, now=datetime(2026, 10, 1, 0, 11))
        assert exc.value.status_code == 400
        assert user.otp_hash is None

    def test_code_is_bound_to_purpose(self):
        user = User(email="a@example.com", hashed_password="x", first_name="A")
        code = issue_otp(user, OtpPurpose.VERIFY_EMAIL)
        with pytest.raises(HTTPException):
            check_otp(user, OtpPurpose.RESET_PASSWORD, code)

    def test_attempt_limit(self):
        user = User(email="a@example.com", hashed_password="x", first_name="A")
        code = issue_otp(user, OtpPurpose.VERIFY_EMAIL)
        for _ in range(MAX_OTP_ATTEMPTS):
            with pytest.raises(HTTPException):
                check_otp(user, OtpPurpose.VERIFY_EMAIL, "000000" if code != "000000" else "111111")
        with pytest.raises(HTTPException) as exc:
            check_otp(user, OtpPurpose.VERIFY_EMAIL, code)
        assert exc.value.status_code == 429


class TestEmailVerification:
    async def test_register_sends_code_and_verify_activates(self, client):
        with patch("lms.api.auth.send_otp", new_callable=AsyncMock) as send:
            response = await client.post(
                "/api/v1/auth/register",
                json={"email": "kasun@example.com", "password": "longenough1", "first_name": "Kasun"},
            )
        assert response.status_code == 201
        user, code, purpose = send.await_args.args
        assert purpose == OtpPurpose.VERIFY_EMAIL
        stored = await User.find_one({"email": "kasun@example.com"})
        assert stored.is_verified is False

        response = await client.post("/api/v1/auth/verify-email", json={"email": "kasun@example.com", "code": code})

        assert response.json() == {"status": "verified"}
        stored = await User.find_one({"email": "kasun@example.com"})
        assert stored.is_verified is True
        assert stored.otp_hash is None

    async def test_wrong_code_counts_attempts(self, client):
        user, code = await _user_with_code(OtpPurpose.VERIFY_EMAIL, verified=False)
        wrong = "000000" if code != "000000" else "111111"

        response = await client.post("/api/v1/auth/verify-email", json={"email": user.email, "code": wrong})

        assert response.status_code == 400
        stored = await User.get(user.id)
        assert stored.otp_attempts == 1
        assert stored.is_verified is False

    async def test_locked_after_too_many_attempts(self, client):
        user, code = await _user_with_code(OtpPurpose.VERIFY_EMAIL, verified=False)
        user.otp_attempts = MAX_OTP_ATTEMPTS
        await user.save()

        response = await client.post("/api/v1/auth/verify-email", json={"email": user.email, "code": code})

        assert response.status_code == 429

    async def test_expired_code(self, client):
        user, code = await _user_with_code(OtpPurpose.VERIFY_EMAIL, verified=False)
        user.otp_expires_at = datetime.utcnow() - timedelta(minutes=1)
        await user.save()

        response = await client.post("/api/v1/auth/verify-email", json={"email": user.email, "code": code})

        assert response.status_code == 400
        assert (await User.get(user.id)).otp_hash is None

    async def test_resend_replaces_code(self, client):
        user, old_code = await _user_with_code(OtpPurpose.VERIFY_EMAIL, verified=False)
        with patch("lms.api.auth.send_otp", new_callable=AsyncMock) as send:
            response = await client.post("/api/v1/auth/resend-otp", json={"email": user.email})
        assert response.status_code == 200
        new_code = send.await_args.args[1]
        stored = await User.get(user.id)
        assert stored.otp_hash == hashlib.sha256(new_code.encode()).hexdigest()


class TestPasswordReset:
    async def test_unknown_email_gets_same_answer(self, client, student_user):
        with patch("lms.api.auth.send_otp", new_callable=AsyncMock) as send:
            known = await client.post("/api/v1/auth/forgot-password", json={"email": student_user.email})
            unknown = await client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert send.await_count == 1

    async def test_reset_changes_password(self, client, student_user):
        with patch("lms.api.auth.send_otp", new_callable=AsyncMock) as send:
            await client.post("/api/v1/auth/forgot-password", json={"email": student_user.email})
        code = send.await_args.args[1]

        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"email": student_user.email, "code": code, "new_password": "brand-new-pass"},
        )
        assert response.status_code == 200
        assert (await User.get(student_user.id)).otp_hash is None

        old = await client.post("/api/v1/auth/login", json={"email": student_user.email, "password": TEST_PASSWORD})
        new = await client.post("/api/v1/auth/login", json={"email": student_user.email, "password": "brand-new-pass"})
        assert old.status_code == 401
        assert new.status_code == 200

    async def test_reset_rejects_verification_code(self, client):
        user, code = await _user_with_code(OtpPurpose.VERIFY_EMAIL)
        response = await client.post(
            "/api/v1/auth/reset-password",
            json={"email": user.email, "code": code, "new_password": "brand-new-pass"},
        )
        assert response.status_code == 400


class TestContactMessages:
    async def test_anyone_can_write_in(self, client):
        response = await client.post(
            "/api/v1/contacts/",
            json={"name": "Amara", "email": "amara@example.com", "message": "Do you run weekend classes?"},
        )
        assert response.status_code == 201
        assert await ContactMessage.find().count() == 1

    async def test_students_cannot_read_inbox(self, client, student_headers):
        response = await client.get("/api/v1/contacts/", headers=student_headers)
        assert response.status_code == 403

    async def test_admin_replies_and_deletes(self, client, admin_headers):
        message = ContactMessage(name="Amara", email=fake.email(), message="Fees for paper class?")
        await message.insert()

        pending = await client.get("/api/v1/contacts/", params={"replied": False}, headers=admin_headers)
        assert [m["id"] for m in pending.json()] == [str(message.id)]

        response = await client.put(
            f"/api/v1/contacts/{message.id}/reply", json={"reply": "LKR 1500 a month."}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["reply"] == "LKR 1500 a month."

        answered = await client.get("/api/v1/contacts/", params={"replied": True}, headers=admin_headers)
        assert len(answered.json()) == 1

        response = await client.delete(f"/api/v1/contacts/{message.id}", headers=admin_headers)
        assert response.status_code == 200
        assert await ContactMessage.find().count() == 0


def _signed(body: dict, secret: str, timestamp: str = "1760000000") -> tuple[bytes, dict]:
    raw = json.dumps(body).encode()
    digest = hmac.new(secret.encode(), f"v0:{timestamp}:{raw.decode()}".encode(), hashlib.sha256).hexdigest()
    return raw, {
        "content-type": "application/json",
        "x-zm-request-timestamp": timestamp,
        "x-zm-signature": f"v0={digest}",
    }


async def _zoom_session(meeting_id: str = "8123456789") -> ClassSession:
    lms_class = await make_class()
    s = ClassSession(
        class_id=str(lms_class.id),
        index=1,
        start_at=datetime(2026, 10, 3, 2, 30),
        end_at=datetime(2026, 10, 3, 4, 30),
        timezone="Asia/Colombo",
        zoom_meeting_id=meeting_id,
    )
    await s.insert()
    return s


RECORDING_EVENT = {
    "event": "recording.completed",
    "payload": {
        "object": {
            "id": 8123456789,
            "share_url": "https://zoom.us/rec/share/abc",
            "recording_files": [
                {"file_type": "M4A", "file_size": 10, "play_url": "https://zoom.us/rec/play/audio"},
                {"file_type": "MP4", "file_size": 500, "play_url": "https://zoom.us/rec/play/small"},
                {"file_type": "MP4", "file_size": 900, "play_url": "https://zoom.us/rec/play/large"},
            ],
        }
    },
}


class TestZoomRecordingWebhook:
    def test_largest_mp4_wins(self):
        best = best_recording_file(RECORDING_EVENT["payload"]["object"]["recording_files"])
        assert best["play_url"] == "https://zoom.us/rec/play/large"

    async def test_url_validation(self, client, monkeypatch):
        monkeypatch.setattr(settings, "zoom_webhook_secret", "hook-secret")
        response = await client.post(
            "/api/v1/sessions/zoom/webhook",
            json={"event": "endpoint.url_validation", "payload": {"plainToken": "abc123"}},
        )
        expected = hmac.new(b"hook-secret", b"abc123", hashlib.sha256).hexdigest()
        assert response.json() == {"plainToken": "abc123", "encryptedToken": expected}

    async def test_recording_links_session(self, client, monkeypatch):
        monkeypatch.setattr(settings, "zoom_webhook_secret", "hook-secret")
        s = await _zoom_session()
        raw, headers = _signed(RECORDING_EVENT, "hook-secret")

        response = await client.post("/api/v1/sessions/zoom/webhook", content=raw, headers=headers)

        assert response.json() == {"status": "linked"}
        stored = await ClassSession.get(s.id)
        assert stored.recording_url == "https://zoom.us/rec/play/large"
        assert stored.recording_shared is True
        assert stored.recording_ready_at is not None

    async def test_bad_signature_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "zoom_webhook_secret", "hook-secret")
        s = await _zoom_session()
        raw, headers = _signed(RECORDING_EVENT, "wrong-secret")

        response = await client.post("/api/v1/sessions/zoom/webhook", content=raw, headers=headers)

        assert response.status_code == 401
        assert (await ClassSession.get(s.id)).recording_url is None

    async def test_unknown_meeting_ignored(self, client, monkeypatch):
        monkeypatch.setattr(settings, "zoom_webhook_secret", "")
        response = await client.post("/api/v1/sessions/zoom/webhook", json=RECORDING_EVENT)
        assert response.json() == {"status": "ignored"}

    async def test_unshared_recording_hidden_from_students(self):
        s = await _zoom_session()
        s.recording_url = "https://zoom.us/rec/play/large"

        assert "recording_url" not in session_to_dict(s, show_host_url=False)
        s.recording_shared = True
        assert session_to_dict(s, show_host_url=False)["recording_url"] == s.recording_url
