# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /auth/register        - Create account
#   POST /auth/login           - Get tokens
#   POST /auth/refresh         - Rotate refresh token, get new access token
#   POST /auth/logout          - Denylist access token, revoke refresh token
#   GET  /auth/me              - Get current user
#   POST /auth/change-password - Change password (current password required)
#
# Password recovery:
#   POST /auth/forgot          - Email a 6-digit verification code
#   POST /auth/verify-code     - Exchange the code for a reset token
#   POST /auth/reset           - Set a new password with the reset token
#
# =============================================================================

import logging

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, EmailStr, Field

from usergate.auth.context import AuthContext
from usergate.auth.credentials import hash_password_async, score_password, verify_password_async
from usergate.auth.permissions import Permission, Role
from usergate.auth.policies import require, require_auth
from usergate.auth.rate_limit import client_ip
from usergate.auth.recovery import MSG_WEAK_PASSWORD
from usergate.core.errors import AuthenticationError, NotFoundError, ValidationError
from usergate.core.utils import generate_id, mask_email, utc_now
from usergate.services import AuthServices, get_services
from usergate.storage.base import UserRecord, UserResponse

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("usergate.audit")

router = APIRouter(prefix="/auth", tags=["auth"])

MSG_INVALID_CREDENTIALS = "Invalid credentials"
MSG_INVALID_REFRESH = "Invalid or expired refresh token"


# =============================================================================
# Request/Response Models
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(default="", max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ForgotRequest(BaseModel):
    email: EmailStr


class VerifyCodeRequest(BaseModel):
    email: EmailStr
    code: str


class ResetRequest(BaseModel):
    token: str
    new_password: str


def _check_strength(password: str, services: AuthServices) -> None:
    strength = score_password(password, services.settings)
    if not strength.is_valid:
        raise ValidationError(MSG_WEAK_PASSWORD, details={"feedback": strength.feedback})


# =============================================================================
# Public Endpoints
# =============================================================================

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, services: AuthServices = Depends(get_services)):
    """
    Create a new account with the `usuario` role.

    Returns access and refresh tokens on success.
    """
    _check_strength(data.password, services)

    user = await services.users.create(UserRecord(
        id=generate_id("user"),
        email=data.email.lower(),
        name=data.name,
        password_hash=await hash_password_async(data.password, rounds=services.settings.bcrypt_rounds),
        role=Role.USUARIO,
    ))
    audit_logger.info(f"user registered subject={user.id} email={mask_email(user.email)}")

    tokens = await services.tokens.issue_token_pair(user.id, user.email, user.role)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": UserResponse.from_record(user), "tokens": tokens},
    }


@router.post("/login")
async def login(data: LoginRequest, request: Request, services: AuthServices = Depends(get_services)):
    """
    Authenticate and get tokens.

    Unknown email and wrong password give the same answer in about the same time.
    """
    ip = client_ip(request, services.settings.trusted_proxies)
    await services.rate_limiter.hit(ip, "login")

    user = await services.users.find_by_email(data.email)
    password_hash = user.password_hash if user else None
    matches = await verify_password_async(data.password, password_hash, rounds=services.settings.bcrypt_rounds)
    if user is None or not matches:
        audit_logger.info(f"login failed email={mask_email(data.email)} ip={ip}")
        raise AuthenticationError(MSG_INVALID_CREDENTIALS)

    user = await services.users.update(user.id, last_login_at=utc_now())
    audit_logger.info(f"login subject={user.id} ip={ip}")

    tokens = await services.tokens.issue_token_pair(user.id, user.email, user.role)
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": UserResponse.from_record(user), "tokens": tokens},
    }


@router.post("/refresh")
async def refresh(data: RefreshRequest, services: AuthServices = Depends(get_services)):
    """
    Use refresh token to get a new token pair.

    The presented refresh token is revoked (rotation).
    """
    subject_id = await services.tokens.verify_refresh_token(data.refresh_token)
    if subject_id is None:
        raise AuthenticationError(MSG_INVALID_REFRESH)

    user = await services.users.find_by_id(subject_id)
    if user is None:
        await services.tokens.revoke_refresh_token(data.refresh_token, reason="user deleted")
        raise AuthenticationError(MSG_INVALID_REFRESH)

    await services.tokens.revoke_refresh_token(data.refresh_token, reason="rotated")
    tokens = await services.tokens.issue_token_pair(user.id, user.email, user.role)
    return {"success": True, "message": "Token refreshed", "data": {"tokens": tokens}}


@router.post("/forgot")
async def forgot_password(data: ForgotRequest, request: Request, services: AuthServices = Depends(get_services)):
    """
    Request a password reset code.

    Always returns success to prevent email enumeration.
    """
    client = client_ip(request, services.settings.trusted_proxies)
    result = await services.recovery.request_code(data.email, client=client)
    return result.model_dump(exclude_none=True)


@router.post("/verify-code")
async def verify_code(data: VerifyCodeRequest, request: Request, services: AuthServices = Depends(get_services)):
    """Exchange the emailed code for a reset token."""
    client = client_ip(request, services.settings.trusted_proxies)
    result = await services.recovery.verify_code(data.email, data.code, client=client)
    return result.model_dump(exclude_none=True)


@router.post("/reset")
async def reset_password(data: ResetRequest, services: AuthServices = Depends(get_services)):
    result = await services.recovery.reset_password(data.token, data.new_password)
    return result.model_dump(exclude_none=True)


# =============================================================================
# Protected Endpoints
# =============================================================================

@router.post("/logout")
async def logout(
    data: LogoutRequest | None = None,
    ctx: AuthContext = Depends(require_auth()),
    services: AuthServices = Depends(get_services),
):
    """
    Denylist the presented access token until it expires.

    A refresh token in the body is revoked as well.
    """
    await services.tokens.denylist(ctx.token, reason="logout", subject_id=ctx.subject_id)
    if data and data.refresh_token:
        await services.tokens.revoke_refresh_token(data.refresh_token, reason="logout")

    audit_logger.info(f"logout subject={ctx.subject_id}")
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def get_current_user(
    ctx: AuthContext = Depends(require(Permission.PROFILE_READ)),
    services: AuthServices = Depends(get_services),
):
    """Get the current authenticated user."""
    user = await services.users.find_by_id(ctx.subject_id)
    if user is None:
        raise NotFoundError("User not found")

    return {
        "success": True,
        "data": {
            "user": UserResponse.from_record(user),
            "permissions": sorted(p.value for p in ctx.permissions),
        },
    }


@router.post("/change-password")
async def change_password(
    data: ChangePasswordRequest,
    ctx: AuthContext = Depends(require(Permission.PROFILE_UPDATE)),
    services: AuthServices = Depends(get_services),
):
    """
    Change the caller's password.

    Other sessions lose their refresh tokens; the current access token
    stays valid until it expires.
    """
    user = await services.users.find_by_id(ctx.subject_id)
    if user is None:
        raise NotFoundError("User not found")

    if not await verify_password_async(data.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")

    _check_strength(data.new_password, services)

    password_hash = await hash_password_async(data.new_password, rounds=services.settings.bcrypt_rounds)
    await services.users.update(user.id, password_hash=password_hash, recovery=None)
    await services.tokens.revoke_all_for_subject(user.id, reason="password changed")
    audit_logger.info(f"password changed subject={user.id}")

    try:
        await services.notifier.send_password_changed(user.email)
    except Exception:
        logger.exception(f"Password change notice to {mask_email(user.email)} failed")

    return {"success": True, "message": "Password updated successfully"}
