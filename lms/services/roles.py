"""Role lifecycle helpers and permission checks."""
from __future__ import annotations

from datetime import datetime
import re

from lms.config import settings
from lms.models.role import ModulePermission, PermissionSet, Role, RoleResponse
from lms.models.user import User, UserRole
from lms.rbac import DEFAULT_ROLE_PERMISSIONS, SYSTEM_MODULES


def slugify_role_key(name: str) -> str:
    key = re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")
    return key or "role"


def permissions_from_inputs(items: list[ModulePermission]) -> dict[str, PermissionSet]:
    return {item.module: PermissionSet(**item.model_dump(exclude={"module"})) for item in items}


def _permission_rows(permissions: dict[str, PermissionSet]) -> list[ModulePermission]:
    rows = []
    for module in SYSTEM_MODULES:
        perm = permissions.get(module["key"], PermissionSet())
        rows.append(ModulePermission(module=module["key"], **perm.model_dump()))
    return rows


def can_edit_role(role: Role) -> bool:
    if not role.is_default:
        return True
    return settings.allow_edit_default_roles


def role_to_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=str(role.id),
        key=role.key,
        name=role.name,
        description=role.description,
        applies_to=role.applies_to,
        is_active=role.is_active,
        is_default=role.is_default,
        editable=can_edit_role(role),
        permissions=_permission_rows(role.permissions),
    )


def has_permission(role: Role | None, module: str, action: str) -> bool:
    if not role or not role.is_active:
        return False
    permission = role.permissions.get(module)
    if not permission:
        return False
    return bool(getattr(permission, action, False))


async def role_for_user(user: User) -> Role | None:
    """Custom role when assigned and still active, else the account type's default role."""
    if user.role_key:
        role = await Role.find_one({"key": user.role_key})
        if role and role.is_active:
            return role
    return await Role.find_one({"key": user.role.value})


async def ensure_default_roles() -> None:
    """Ensure built-in roles exist and include current module keys."""
    module_keys = [m["key"] for m in SYSTEM_MODULES]
    blank = {"view": False, "add": False, "edit": False, "delete": False}
    for role_key, defaults in DEFAULT_ROLE_PERMISSIONS.items():
        default_permissions = {
            module: PermissionSet(**defaults.get(module, blank)) for module in module_keys
        }
        role = await Role.find_one({"key": role_key})
        if role:
            # Keep customised permissions; only backfill modules added since.
            role.permissions = {
                module: role.permissions.get(module, default_permissions[module])
                for module in module_keys
            }
            role.is_default = True
            role.applies_to = [UserRole(role_key)]
            role.updated_at = datetime.utcnow()
            await role.save()
            continue

        await Role(
            key=role_key,
            name=role_key.title(),
            description=f"Default {role_key} role",
            applies_to=[UserRole(role_key)],
            is_active=True,
            is_default=True,
            permissions=default_permissions,
        ).insert()
