"""JWT authentication with login lockout and refresh-token rotation."""
import logging
from datetime import datetime

from beanie import PydanticObjectId
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, EmailStr, Field

from lms.api.deps import (
    CurrentUser,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from lms.config import settings
from lms.models.user import User, UserOut, UserRole, UserUpdate
from lms.services.email import get_email_service, welcome_email
from lms.services.otp import OtpPurpose, check_otp, issue_otp, send_otp
from lms.services.sms import get_sms_service

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_REFRESH_TOKENS = 5

CODE_SENT_MESSAGE = "If an account exists for this email, a code has been sent."


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str
    last_name: str = ""
    phone: str | None = None
    batch_id: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class EmailRequest(BaseModel):
    email: str


class VerifyEmailRequest(BaseModel):
    email: str
    code: str = Field(min_length=6, max_length=6)


class ResetPasswordRequest(BaseModel):
    email: str
    code: str = Field(min_length=6, max_length=6)
    new_password: str = Field(min_length=8)


async def _find_account(email: str) -> User | None:
    return await User.find_one({"email": email.strip().lower(), "is_deleted": False})


async def _issue_tokens(user: User) -> TokenResponse:
    access_token = create_access_token(str(user.id), user.role.value)
    refresh_token = create_refresh_token(str(user.id))
    user.refresh_tokens = [*user.refresh_tokens, refresh_token][-MAX_REFRESH_TOKENS:]
    user.updated_at = datetime.utcnow()
    await user.save()
    return TokenResponse(access_token=access_token, refresh_token=refresh_token)


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest):
    user = await User.find_one({"email": req.email.strip().lower(), "is_deleted": False})
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.is_locked:
        raise HTTPException(status_code=403, detail="Account locked. Contact an administrator.")
    if not verify_password(req.password, user.hashed_password):
        user.login_attempts += 1
        if user.login_attempts >= settings.max_login_attempts:
            user.is_locked = True
            user.locked_at = datetime.utcnow()
            logger.warning("Account %s locked after %d failed logins", user.email, user.login_attempts)
        await user.save()
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user.login_attempts = 0
    user.last_login_at = datetime.utcnow()
    return await _issue_tokens(user)


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(data: RegisterRequest):
    """Self sign-up always creates a student account."""
    existing = await User.find_one({"email": data.email.lower()})
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(
        email=data.email,
        hashed_password=get_password_hash(data.password),
        role=UserRole.STUDENT,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        phone=data.phone,
        batch_id=data.batch_id,
    )
    code = issue_otp(user, OtpPurpose.VERIFY_EMAIL)
    await user.insert()
    tokens = await _issue_tokens(user)
    await send_otp(user, code, OtpPurpose.VERIFY_EMAIL)
    return tokens


@router.post("/verify-email")
async def verify_email(data: VerifyEmailRequest):
    user = await _find_account(data.email)
    if not user:
        raise HTTPException(status_code=400, detail="No active code. Request a new one.")
    if user.is_verified:
        return {"status": "already_verified"}
    try:
        check_otp(user, OtpPurpose.VERIFY_EMAIL, data.code)
        user.is_verified = True
    finally:
        user.updated_at = datetime.utcnow()
        await user.save()

    sms = get_sms_service()
    await sms.send_quietly(user.phone, sms.welcome(user.first_name))
    subject, html = welcome_email(user.first_name)
    await get_email_service().send_quietly(user.email, subject, html)
    return {"status": "verified"}


@router.post("/resend-otp")
async def resend_verification_code(data: EmailRequest):
    user = await _find_account(data.email)
    if user and user.is_active and not user.is_verified:
        code = issue_otp(user, OtpPurpose.VERIFY_EMAIL)
        await user.save()
        await send_otp(user, code, OtpPurpose.VERIFY_EMAIL)
    return {"message": CODE_SENT_MESSAGE}


@router.post("/forgot-password")
async def forgot_password(data: EmailRequest):
    """Send a reset code. The answer is the same whether or not the account exists."""
    user = await _find_account(data.email)
    if user and user.is_active:
        code = issue_otp(user, OtpPurpose.RESET_PASSWORD)
        await user.save()
        await send_otp(user, code, OtpPurpose.RESET_PASSWORD)
    return {"message": CODE_SENT_MESSAGE}


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest):
    user = await _find_account(data.email)
    if not user or not user.is_active:
        raise HTTPException(status_code=400, detail="No active code. Request a new one.")
    try:
        check_otp(user, OtpPurpose.RESET_PASSWORD, data.code)
        user.hashed_password = get_password_hash(data.new_password)
        user.is_verified = True
        user.refresh_tokens = []
        user.login_attempts = 0
    finally:
        user.updated_at = datetime.utcnow()
        await user.save()
    logger.info("Password reset for user %s", user.id)
    return {"status": "ok"}


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(req: RefreshRequest):
    payload = decode_token(req.refresh_token, expected_type="refresh")
    if not payload:
        raise HTTPException(status_code=401, detail="Expired or invalid refresh token")
    try:
        user = await User.get(PydanticObjectId(payload["sub"]))
    except Exception:
        user = None
    if not user or not user.is_active or user.is_deleted or user.is_locked:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    if req.refresh_token not in user.refresh_tokens:
        # A rotated-out token came back: treat the whole chain as stolen.
        logger.warning("Refresh token reuse detected for user %s", user.id)
        user.refresh_tokens = []
        await user.save()
        raise HTTPException(status_code=401, detail="Refresh token reuse detected")

    user.refresh_tokens = [t for t in user.refresh_tokens if t != req.refresh_token]
    return await _issue_tokens(user)


@router.post("/logout")
async def logout(req: RefreshRequest, user: CurrentUser):
    user.refresh_tokens = [t for t in user.refresh_tokens if t != req.refresh_token]
    await user.save()
    return {"status": "ok"}


@router.get("/me", response_model=UserOut)
async def me(user: CurrentUser):
    return UserOut.from_user(user)


@router.patch("/me", response_model=UserOut)
async def update_me(data: UserUpdate, user: CurrentUser):
    update_data = data.model_dump(exclude_unset=True, exclude={"is_active", "is_locked"})
    for field, value in update_data.items():
        setattr(user, field, value)
    user.updated_at = datetime.utcnow()
    await user.save()
    return UserOut.from_user(user)


@router.post("/change-password")
async def change_password(data: ChangePasswordRequest, user: CurrentUser):
    if not verify_password(data.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    user.hashed_password = get_password_hash(data.new_password)
    user.refresh_tokens = []
    user.updated_at = datetime.utcnow()
    await user.save()
    return {"status": "ok"}
