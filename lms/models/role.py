"""Permission roles.

A user's ``role`` is the account type (admin, instructor, student). The
permission role that gates module access is ``User.role_key`` when an admin
assigned a custom one, else the default role with the account type's key.
"""
from __future__ import annotations

from datetime import datetime

from beanie import Document, Indexed
from pydantic import BaseModel, Field, field_validator

from lms.models.user import UserRole
from lms.rbac import SYSTEM_MODULES

MODULE_KEYS = {m["key"] for m in SYSTEM_MODULES}


def _check_module(key: str) -> str:
    if key not in MODULE_KEYS:
        raise ValueError(f"Unsupported module: {key}")
    return key


class PermissionSet(BaseModel):
    view: bool = False
    add: bool = False
    edit: bool = False
    delete: bool = False


class Role(Document):
    key: Indexed(str, unique=True)
    name: str
    description: str | None = None
    # Account types this role may be assigned to.
    applies_to: list[UserRole] = Field(default_factory=lambda: list(UserRole))
    is_active: bool = True
    is_default: bool = False
    permissions: dict[str, PermissionSet] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: dict[str, PermissionSet]) -> dict[str, PermissionSet]:
        for key in value:
            _check_module(key)
        return value

    class Settings:
        name = "roles"
        use_state_management = True


class ModulePermission(PermissionSet):
    module: str

    @field_validator("module")
    @classmethod
    def validate_module(cls, value: str) -> str:
        return _check_module(value)


class RoleCreateRequest(BaseModel):
    name: str
    description: str | None = None
    applies_to: list[UserRole] = Field(default_factory=lambda: [UserRole.INSTRUCTOR])
    is_active: bool = True
    permissions: list[ModulePermission] = Field(default_factory=list)


class RoleUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    applies_to: list[UserRole] | None = None
    is_active: bool | None = None
    permissions: list[ModulePermission] | None = None


class RoleAssignRequest(BaseModel):
    user_id: str


class RoleResponse(BaseModel):
    id: str
    key: str
    name: str
    description: str | None = None
    applies_to: list[UserRole]
    is_active: bool
    is_default: bool
    editable: bool
    permissions: list[ModulePermission]
