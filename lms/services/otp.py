"""Six-digit one-time codes for email verification and password reset."""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from fastapi import HTTPException

from lms.models.user import User
from lms.services.email import get_email_service, otp_email
from lms.services.sms import get_sms_service

logger = logging.getLogger(__name__)

OTP_TTL_MINUTES = 10
MAX_OTP_ATTEMPTS = 5


class OtpPurpose(str, Enum):
    VERIFY_EMAIL = "verify_email"
    RESET_PASSWORD = "reset_password"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def issue_otp(user: User, purpose: OtpPurpose, now: Optional[datetime] = None) -> str:
    """Store a fresh code on ``user`` (not saved) and return the plain code."""
    code = f"{secrets.randbelow(1_000_000):06d}"
    now = now or datetime.utcnow()
    user.otp_hash = hash_code(code)
    user.otp_purpose = purpose.value
    user.otp_expires_at = now + timedelta(minutes=OTP_TTL_MINUTES)
    user.otp_attempts = 0
    return code


def clear_otp(user: User) -> None:
    user.otp_hash = None
    user.otp_purpose = None
    user.otp_expires_at = None
    user.otp_attempts = 0


def check_otp(user: User, purpose: OtpPurpose, code: str, now: Optional[datetime] = None) -> None:
    """Consume the active code or raise.

    Raises 400 for a missing, expired or wrong code and 429 once the attempt
    limit is reached. A wrong code bumps ``otp_attempts``; the caller saves
    the user whatever the outcome.
    """
    now = now or datetime.utcnow()
    if not user.otp_hash or user.otp_purpose != purpose.value or user.otp_expires_at is None:
        raise HTTPException(status_code=400, detail="No active code. Request a new one.")
    if now > user.otp_expires_at:
        clear_otp(user)
        raise HTTPException(status_code=400, detail="Code expired. Request a new one.")
    if user.otp_attempts >= MAX_OTP_ATTEMPTS:
        raise HTTPException(status_code=429, detail="Too many attempts. Request a new code.")
    if not hmac.compare_digest(hash_code(code.strip()), user.otp_hash):
        user.otp_attempts += 1
        raise HTTPException(status_code=400, detail="Invalid code")
    clear_otp(user)


async def send_otp(user: User, code: str, purpose: OtpPurpose) -> None:
    """Deliver the code by email and SMS, best-effort on both channels."""
    subject, html = otp_email(user.first_name, code, purpose.value, OTP_TTL_MINUTES)
    emailed = await get_email_service().send_quietly(user.email, subject, html)
    sms = get_sms_service()
    texted = await sms.send_quietly(user.phone, sms.verification(code))
    if not (emailed or texted):
        logger.warning("No %s code delivered to user %s", purpose.value, user.id)
