# =============================================================================
# User Directory Routes
# =============================================================================
#
# Endpoints:
#   GET    /users            - List users (user:read_all)
#   POST   /users            - Create a user with any role (user:create)
#   GET    /users/{user_id}  - Read one user (self, or user:read_all)
#   PATCH  /users/{user_id}  - Update one user (self, or user:update)
#   DELETE /users/{user_id}  - Delete a user (user:delete)
#
#   GET    /admin/dashboard  - Counters for the admin panel (admin:dashboard)
#
# =============================================================================

import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field

from usergate.auth.context import AuthContext
from usergate.auth.credentials import hash_password_async, score_password
from usergate.auth.permissions import Permission, Role
from usergate.auth.policies import require, require_self_or
from usergate.auth.recovery import MSG_WEAK_PASSWORD
from usergate.core.errors import AuthorizationError, NotFoundError, ValidationError
from usergate.core.utils import generate_id
from usergate.services import AuthServices, get_services
from usergate.storage.base import UserRecord, UserResponse

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("usergate.audit")

router = APIRouter(prefix="/users", tags=["users"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(default="", max_length=100)
    role: Role = Role.USUARIO


class UpdateUserRequest(BaseModel):
    email: EmailStr | None = None
    name: str | None = Field(default=None, max_length=100)
    role: Role | None = None
    email_verified: bool | None = None


async def _get_or_404(services: AuthServices, user_id: str) -> UserRecord:
    user = await services.users.find_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


# =============================================================================
# Users
# =============================================================================

@router.get("")
async def list_users(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    ctx: AuthContext = Depends(require(Permission.USER_READ_ALL)),
    services: AuthServices = Depends(get_services),
):
    users = await services.users.list_users(limit=limit, offset=offset)
    return {
        "success": True,
        "data": {
            "users": [UserResponse.from_record(u) for u in users],
            "total": await services.users.count(),
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    data: CreateUserRequest,
    ctx: AuthContext = Depends(require(Permission.USER_CREATE)),
    services: AuthServices = Depends(get_services),
):
    """Create a user on someone else's behalf; any role may be assigned."""
    strength = score_password(data.password, services.settings)
    if not strength.is_valid:
        raise ValidationError(MSG_WEAK_PASSWORD, details={"feedback": strength.feedback})

    user = await services.users.create(UserRecord(
        id=generate_id("user"),
        email=data.email.lower(),
        name=data.name,
        password_hash=await hash_password_async(data.password, rounds=services.settings.bcrypt_rounds),
        role=data.role,
    ))
    audit_logger.info(f"user created subject={user.id} role={user.role.value} by={ctx.subject_id}")

    return {"success": True, "message": "User created", "data": {"user": UserResponse.from_record(user)}}


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    ctx: AuthContext = Depends(require_self_or(Permission.USER_READ_ALL)),
    services: AuthServices = Depends(get_services),
):
    user = await _get_or_404(services, user_id)
    return {"success": True, "data": {"user": UserResponse.from_record(user)}}


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    data: UpdateUserRequest,
    ctx: AuthContext = Depends(require_self_or(Permission.USER_UPDATE)),
    services: AuthServices = Depends(get_services),
):
    """
    Update profile fields.

    Owners may change their own name and email. Changing a role or the
    verified flag always needs user:update, even on one's own record.
    """
    await _get_or_404(services, user_id)

    fields = data.model_dump(exclude_none=True)
    privileged = {"role", "email_verified"} & fields.keys()
    if privileged and not ctx.can(Permission.USER_UPDATE):
        raise AuthorizationError("Insufficient permissions for this resource")

    if "email" in fields:
        fields["email"] = fields["email"].lower()

    user = await services.users.update(user_id, **fields)
    audit_logger.info(f"user updated subject={user_id} fields={sorted(fields)} by={ctx.subject_id}")

    if "role" in fields:
        # Outstanding tokens still carry the old role
        await services.tokens.revoke_all_for_subject(user_id, reason="role changed")

    return {"success": True, "message": "User updated", "data": {"user": UserResponse.from_record(user)}}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    ctx: AuthContext = Depends(require(Permission.USER_DELETE)),
    services: AuthServices = Depends(get_services),
):
    if user_id == ctx.subject_id:
        raise ValidationError("You cannot delete your own account")

    if not await services.users.delete(user_id):
        raise NotFoundError("User not found")

    revoked = await services.tokens.revoke_all_for_subject(user_id, reason="user deleted")
    audit_logger.info(f"user deleted subject={user_id} revoked={revoked} by={ctx.subject_id}")

    return {"success": True, "message": "User deleted"}


# =============================================================================
# Admin
# =============================================================================

@admin_router.get("/dashboard")
async def dashboard(
    ctx: AuthContext = Depends(require(Permission.ADMIN_DASHBOARD)),
    services: AuthServices = Depends(get_services),
):
    users = await services.users.list_users(limit=await services.users.count())
    by_role = {role.value: 0 for role in Role}
    for user in users:
        by_role[user.role.value] += 1

    return {
        "success": True,
        "data": {
            "users": {"total": len(users), "by_role": by_role},
            "tokens": await services.tokens.stats(),
        },
    }
