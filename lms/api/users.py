"""User administration."""
from datetime import datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from lms.api.deps import AdminOnly, StaffOnly, get_object_or_404, get_password_hash
from lms.models.user import User, UserCreate, UserOut, UserRole, UserUpdate

router = APIRouter()


class PasswordUpdate(BaseModel):
    password: str = Field(min_length=8)


@router.get("/")
async def list_users(
    user: StaffOnly,
    role: UserRole | None = None,
    batch_id: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
):
    query: dict = {}
    if not include_deleted:
        query["is_deleted"] = False
    if user.role == UserRole.INSTRUCTOR:
        query["role"] = UserRole.STUDENT.value
    elif role:
        query["role"] = role.value
    if batch_id:
        query["batch_id"] = batch_id
    users = await User.find(query).sort("first_name").to_list()
    if search:
        needle = search.strip().lower()
        users = [u for u in users if needle in u.full_name.lower() or needle in u.email]
    return [UserOut.from_user(u) for u in users]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: str, admin: AdminOnly):
    return UserOut.from_user(await get_object_or_404(User, user_id, "User"))


@router.post("/", status_code=201, response_model=UserOut)
async def create_user(data: UserCreate, admin: AdminOnly):
    existing = await User.find_one({"email": data.email.lower()})
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")
    u = User(
        email=data.email,
        hashed_password=get_password_hash(data.password),
        role=data.role,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        batch_id=data.batch_id,
        is_verified=True,
    )
    await u.insert()
    return UserOut.from_user(u)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(user_id: str, data: UserUpdate, admin: AdminOnly):
    u = await get_object_or_404(User, user_id, "User")
    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(u, field, value)
    if update_data.get("is_locked") is False:
        u.login_attempts = 0
        u.locked_at = None
    u.updated_at = datetime.utcnow()
    await u.save()
    return UserOut.from_user(u)


@router.post("/{user_id}/set-password")
async def set_user_password(user_id: str, data: PasswordUpdate, admin: AdminOnly):
    """Set or reset a user's password; also clears lockout and sessions."""
    u = await get_object_or_404(User, user_id, "User")
    u.hashed_password = get_password_hash(data.password)
    u.login_attempts = 0
    u.is_locked = False
    u.refresh_tokens = []
    u.updated_at = datetime.utcnow()
    await u.save()
    return {"id": str(u.id)}


@router.delete("/{user_id}")
async def delete_user(user_id: str, admin: AdminOnly):
    u = await get_object_or_404(User, user_id, "User")
    if str(u.id) == str(admin.id):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    u.is_deleted = True
    u.is_active = False
    u.refresh_tokens = []
    u.updated_at = datetime.utcnow()
    await u.save()
    return {"id": str(u.id), "deleted": True}
