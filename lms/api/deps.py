"""Shared dependencies: JWT auth, role checks and permissions."""
import uuid
from datetime import datetime, timedelta
from typing import Annotated, Optional

import bcrypt
from beanie import PydanticObjectId
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from lms.config import settings
from lms.models.role import Role
from lms.models.user import User, UserRole
from lms.rbac import ACTION_BY_METHOD
from lms.services.roles import has_permission, role_for_user

security = HTTPBearer(auto_error=False)


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(subject: str, role: str) -> str:
    expire = datetime.utcnow() + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_refresh_token(subject: str) -> str:
    expire = datetime.utcnow() + timedelta(days=settings.jwt_refresh_token_expire_days)
    # jti keeps two tokens minted in the same second distinct for rotation.
    to_encode = {"sub": subject, "exp": expire, "type": "refresh", "jti": uuid.uuid4().hex}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, expected_type: str = "access") -> Optional[dict]:
    """Claims of a valid token of ``expected_type``, else ``None``."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != expected_type or not payload.get("sub"):
        return None
    return payload


async def user_from_token(token: str) -> Optional[User]:
    payload = decode_token(token)
    if not payload:
        return None
    try:
        user = await User.get(PydanticObjectId(payload["sub"]))
    except Exception:
        return None
    if not user or not user.is_active or user.is_deleted or user.is_locked:
        return None
    return user


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> User:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not decode_token(credentials.credentials):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = await user_from_token(credentials.credentials)
    if not user:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def require_roles(*allowed: UserRole):
    allowed_values = [role.value for role in allowed]

    async def checker(user: Annotated[User, Depends(get_current_user)]):
        if user.role.value not in allowed_values:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return checker


async def get_current_role(user: Annotated[User, Depends(get_current_user)]) -> Role | None:
    return await role_for_user(user)


def require_module_permission(module: str):
    async def checker(
        request: Request,
        user: Annotated[User, Depends(get_current_user)],
        role: Annotated[Role | None, Depends(get_current_role)],
    ):
        method = request.method.upper()
        action = ACTION_BY_METHOD.get(method)
        if not action:
            raise HTTPException(status_code=405, detail=f"Unsupported method for permission check: {method}")
        if not has_permission(role, module, action):
            raise HTTPException(status_code=403, detail=f"Missing {module}.{action} permission")
        return user

    return checker


async def get_object_or_404(model, object_id: str, label: str):
    try:
        oid = PydanticObjectId(object_id)
    except Exception:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    obj = await model.get(oid)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


# Type aliases for route injection
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminOnly = Annotated[User, Depends(require_roles(UserRole.ADMIN))]
StaffOnly = Annotated[User, Depends(require_roles(UserRole.ADMIN, UserRole.INSTRUCTOR))]
