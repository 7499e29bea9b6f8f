"""Dynamic roles and permissions API."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException

from lms.api.deps import AdminOnly, get_object_or_404
from lms.models.role import Role, RoleAssignRequest, RoleCreateRequest, RoleUpdateRequest
from lms.models.user import User
from lms.rbac import SYSTEM_MODULES
from lms.services.roles import (
    can_edit_role,
    permissions_from_inputs,
    role_to_response,
    slugify_role_key,
)

router = APIRouter()


@router.get("/modules")
async def list_modules(user: AdminOnly):
    return {"items": SYSTEM_MODULES}


@router.get("/")
async def list_roles(user: AdminOnly):
    roles = await Role.find_all().sort("name").to_list()
    return {"items": [role_to_response(role).model_dump() for role in roles]}


@router.get("/{role_id}")
async def get_role(role_id: str, user: AdminOnly):
    return role_to_response(await get_object_or_404(Role, role_id, "Role"))


@router.post("/", status_code=201)
async def create_role(data: RoleCreateRequest, user: AdminOnly):
    key = slugify_role_key(data.name)
    if await Role.find_one({"key": key}):
        raise HTTPException(status_code=409, detail="Role with same name already exists")

    role = Role(
        key=key,
        name=data.name.strip(),
        description=(data.description or "").strip() or None,
        applies_to=data.applies_to,
        is_active=data.is_active,
        is_default=False,
        permissions=permissions_from_inputs(data.permissions),
    )
    await role.insert()
    return role_to_response(role)


@router.patch("/{role_id}")
async def update_role(role_id: str, data: RoleUpdateRequest, user: AdminOnly):
    role = await get_object_or_404(Role, role_id, "Role")
    if not can_edit_role(role):
        raise HTTPException(status_code=403, detail="Editing default roles is disabled by system settings")

    update_data = data.model_dump(exclude_unset=True)
    if "name" in update_data:
        role.name = (update_data["name"] or "").strip() or role.name
    if "description" in update_data:
        role.description = (update_data["description"] or "").strip() or None
    if "is_active" in update_data:
        role.is_active = bool(update_data["is_active"])
    if data.applies_to is not None and not role.is_default:
        role.applies_to = data.applies_to
    if data.permissions is not None:
        role.permissions = permissions_from_inputs(data.permissions)
    role.updated_at = datetime.utcnow()
    await role.save()
    return role_to_response(role)


@router.post("/{role_id}/assign")
async def assign_role(role_id: str, data: RoleAssignRequest, user: AdminOnly):
    """Give a user this permission role. Assigning a default role clears the override."""
    role = await get_object_or_404(Role, role_id, "Role")
    target = await get_object_or_404(User, data.user_id, "User")
    if target.role not in role.applies_to:
        raise HTTPException(status_code=400, detail=f"Role {role.key} cannot be assigned to {target.role.value} accounts")
    target.role_key = None if role.is_default else role.key
    target.updated_at = datetime.utcnow()
    await target.save()
    return {"user_id": str(target.id), "role_key": target.permission_role_key}


@router.delete("/{role_id}")
async def delete_role(role_id: str, user: AdminOnly):
    role = await get_object_or_404(Role, role_id, "Role")
    if role.is_default:
        raise HTTPException(status_code=400, detail="Default roles cannot be deleted")
    await User.find({"role_key": role.key}).update({"$set": {"role_key": None}})
    await role.delete()
    return {"id": role_id, "deleted": True}
