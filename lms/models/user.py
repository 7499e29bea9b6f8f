"""Accounts: admins, instructors and students."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, EmailStr, Field, field_validator


class UserRole(str, Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


class User(Document):
    """Login account. Email is stored lowercased."""

    email: Indexed(EmailStr, unique=True)
    hashed_password: str
    role: UserRole = UserRole.STUDENT
    role_key: Optional[str] = None
    first_name: str
    last_name: str = ""
    phone: Optional[str] = None
    batch_id: Optional[str] = None
    profile_image: Optional[str] = None

    login_attempts: int = 0
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    refresh_tokens: list[str] = Field(default_factory=list)
    last_login_at: Optional[datetime] = None

    # one active code at a time, stored as a SHA-256 hash
    otp_hash: Optional[str] = None
    otp_purpose: Optional[str] = None
    otp_expires_at: Optional[datetime] = None
    otp_attempts: int = 0

    is_verified: bool = False
    is_active: bool = True
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def permission_role_key(self) -> str:
        return self.role_key or self.role.value

    class Settings:
        name = "users"
        use_state_management = True


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    role: UserRole = UserRole.STUDENT
    first_name: str
    last_name: str = ""
    phone: Optional[str] = None
    batch_id: Optional[str] = None


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    batch_id: Optional[str] = None
    profile_image: Optional[str] = None
    is_active: Optional[bool] = None
    is_locked: Optional[bool] = None


class UserOut(BaseModel):
    id: str
    email: str
    role: UserRole
    role_key: Optional[str] = None
    first_name: str
    last_name: str
    phone: Optional[str] = None
    batch_id: Optional[str] = None
    profile_image: Optional[str] = None
    is_active: bool
    is_locked: bool
    is_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=str(user.id),
            email=user.email,
            role=user.role,
            role_key=user.role_key,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            batch_id=user.batch_id,
            profile_image=user.profile_image,
            is_active=user.is_active,
            is_locked=user.is_locked,
            is_verified=user.is_verified,
        )
