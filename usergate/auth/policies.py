"""
Policies - the clean interface for route authorization.

Just use: `ctx: AuthContext = Depends(require(Permission.USER_READ_ALL))`

Design:
- `Authorizer.authorize()` is the whole decision: request in, allow/deny out.
  It knows nothing about FastAPI and is what the tests exercise directly.
- `require()` and friends wrap it in a FastAPI dependency that resolves to
  AuthContext, or raises the matching AppError (401/403/500).
- Every decision writes one audit line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping

from fastapi import Request

from usergate.auth.context import AuthContext
from usergate.auth.permissions import Permission, has_all, has_any, has_permission
from usergate.auth.rate_limit import client_ip
from usergate.auth.tokens import TokenService
from usergate.config import Settings
from usergate.core.errors import AuthenticationError, AuthorizationError, InternalError
from usergate.integrations.sentry import set_user

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("usergate.audit")


MSG_TOKEN_REQUIRED = "Authorization token required"
MSG_TOKEN_INVALID = "Invalid or expired token"
MSG_VERIFY_FAILED = "Error verifying authorization token"
MSG_FORBIDDEN = "Insufficient permissions"
MSG_FORBIDDEN_RESOURCE = "Insufficient permissions for this resource"


# =============================================================================
# Request / Requirement / Decision
# =============================================================================


class Mode(str, Enum):
    ALL = "all"
    ANY = "any"


@dataclass
class AuthRequest:
    """The parts of an inbound request the authorizer looks at."""
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    client_ip: str = "unknown"
    path_params: Mapping[str, str] = field(default_factory=dict)
    
    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass
class RouteRequirement:
    """
    What a route demands of its caller.
    
    permissions: checked in `mode` (all of them, or at least one)
    owner_param: path parameter naming the resource owner; when set the
                 caller must be that owner or hold `owner_override`
    """
    permissions: tuple[Permission, ...] = ()
    mode: Mode = Mode.ALL
    owner_param: str | None = None
    owner_override: Permission = Permission.USER_READ_ALL


@dataclass
class AuthDecision:
    allowed: bool
    context: AuthContext | None = None
    status_code: int = 200
    message: str | None = None
    
    @classmethod
    def allow(cls, context: AuthContext | None) -> AuthDecision:
        return cls(allowed=True, context=context)
    
    @classmethod
    def deny(cls, status_code: int, message: str) -> AuthDecision:
        return cls(allowed=False, status_code=status_code, message=message)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from 'Bearer <token>', or None if absent or malformed."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


# =============================================================================
# Authorizer
# =============================================================================


class Authorizer:
    """
    Per-request state machine with terminal states only:
    
        public path        → allow (no identity)
        no bearer token    → 401
        token not valid    → 401
        verification error → 500
        missing permission → 403
        not owner/override → 403
        otherwise          → allow (identity attached)
    """
    
    def __init__(self, tokens: TokenService, settings: Settings):
        self.tokens = tokens
        self.settings = settings
    
    def is_public(self, path: str) -> bool:
        return any(
            path == public or path.startswith(public.rstrip("/") + "/")
            for public in self.settings.public_paths
        )
    
    async def authorize(self, request: AuthRequest, requirement: RouteRequirement) -> AuthDecision:
        if self.is_public(request.path):
            decision = AuthDecision.allow(None)
            self._audit(request, decision, reason="public")
            return decision
        
        token = extract_bearer_token(request.header("authorization"))
        if token is None:
            decision = AuthDecision.deny(401, MSG_TOKEN_REQUIRED)
            self._audit(request, decision)
            return decision
        
        try:
            payload = await self.tokens.verify_access_token(token)
        except Exception:
            logger.exception("Token verification failed unexpectedly")
            decision = AuthDecision.deny(500, MSG_VERIFY_FAILED)
            self._audit(request, decision)
            return decision
        
        if payload is None:
            decision = AuthDecision.deny(401, MSG_TOKEN_INVALID)
            self._audit(request, decision)
            return decision
        
        ctx = AuthContext(subject_id=payload.sub, email=payload.email, role=payload.role, token=token)
        decision = self.check(ctx, request, requirement)
        self._audit(request, decision, subject=ctx.subject_id)
        return decision
    
    def check(self, ctx: AuthContext, request: AuthRequest, requirement: RouteRequirement) -> AuthDecision:
        """Permission and ownership checks for an already verified identity."""
        if requirement.permissions:
            if requirement.mode == Mode.ALL:
                granted = has_all(ctx.role, requirement.permissions)
            else:
                granted = has_any(ctx.role, requirement.permissions)
            if not granted:
                return AuthDecision.deny(403, MSG_FORBIDDEN)
        
        if requirement.owner_param:
            owner_id = request.path_params.get(requirement.owner_param)
            if not (ctx.owns(owner_id) or has_permission(ctx.role, requirement.owner_override)):
                return AuthDecision.deny(403, MSG_FORBIDDEN_RESOURCE)
        
        return AuthDecision.allow(ctx)
    
    def recheck(self, ctx: AuthContext, request: AuthRequest, requirement: RouteRequirement) -> AuthDecision:
        """check() for an identity verified earlier in the same request, audited like authorize()."""
        decision = self.check(ctx, request, requirement)
        self._audit(request, decision, subject=ctx.subject_id)
        return decision
    
    def _audit(self, request: AuthRequest, decision: AuthDecision, subject: str | None = None, reason: str | None = None) -> None:
        try:
            outcome = "allow" if decision.allowed else f"deny:{decision.status_code}"
            audit_logger.info(
                f"authz {outcome} ip={request.client_ip} {request.method} {request.path} "
                f"subject={subject or '-'} reason={reason or decision.message or '-'}"
            )
        except Exception:
            # Audit output must never decide the request
            pass


# =============================================================================
# FastAPI Integration
# =============================================================================


def _to_auth_request(request: Request, settings: Settings) -> AuthRequest:
    return AuthRequest(
        method=request.method,
        path=request.url.path,
        headers=request.headers,
        client_ip=client_ip(request, settings.trusted_proxies),
        path_params=request.path_params,
    )


def _raise_for(decision: AuthDecision) -> None:
    if decision.status_code == 401:
        raise AuthenticationError(decision.message)
    if decision.status_code == 403:
        raise AuthorizationError(decision.message)
    raise InternalError(decision.message)


def _create_dependency(requirement: RouteRequirement) -> Callable:
    """Create a FastAPI dependency from a requirement."""
    
    async def dependency(request: Request) -> AuthContext:
        authorizer: Authorizer = request.app.state.services.authorizer
        auth_request = _to_auth_request(request, authorizer.settings)
        
        # Verified once per request; later dependencies re-check permissions only
        ctx: AuthContext | None = getattr(request.state, "auth", None)
        if ctx is not None:
            decision = authorizer.recheck(ctx, auth_request, requirement)
        else:
            decision = await authorizer.authorize(auth_request, requirement)
        
        if not decision.allowed:
            _raise_for(decision)
        
        if decision.context is None:
            # Public path reached through a protected dependency
            raise AuthenticationError(MSG_TOKEN_REQUIRED)
        
        request.state.auth = decision.context
        set_user(decision.context.subject_id)
        return decision.context
    
    return dependency


def require(*permissions: Permission | str) -> Callable:
    """
    Require ALL of the listed permissions.
    
    Usage:
        @router.get("/admin/dashboard")
        async def dashboard(ctx: AuthContext = Depends(require(Permission.ADMIN_DASHBOARD))):
            ...
    """
    return _create_dependency(RouteRequirement(
        permissions=tuple(Permission(p) for p in permissions),
        mode=Mode.ALL,
    ))


def require_any(*permissions: Permission | str) -> Callable:
    """Require ANY of the listed permissions."""
    return _create_dependency(RouteRequirement(
        permissions=tuple(Permission(p) for p in permissions),
        mode=Mode.ANY,
    ))


def require_auth() -> Callable:
    """Just require a valid token, no specific permission."""
    return _create_dependency(RouteRequirement())


def require_self_or(
    override: Permission | str = Permission.USER_READ_ALL,
    *permissions: Permission | str,
    param: str = "user_id",
) -> Callable:
    """
    Require the caller to own the resource named by `param`, or hold `override`.
    
    Usage:
        @router.get("/users/{user_id}")
        async def get_user(user_id: str, ctx: AuthContext = Depends(require_self_or(Permission.USER_READ_ALL))):
            ...
    """
    return _create_dependency(RouteRequirement(
        permissions=tuple(Permission(p) for p in permissions),
        owner_param=param,
        owner_override=Permission(override),
    ))
