# =============================================================================
# Token Service
# =============================================================================
#
# Issues and verifies:
#   - Access tokens (JWT, 24h, bound to subject id + email + role)
#   - Refresh tokens (JWT with their own secret, tracked server-side)
#   - Verification codes and reset tokens for password recovery
#
# Revocation state (denylist, refresh tokens) lives in injected
# ExpiringStores, so a shared backend can replace the in-memory one.
#
# =============================================================================

from __future__ import annotations

import hashlib
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from pydantic import BaseModel

from usergate.auth.permissions import Role
from usergate.config import Settings
from usergate.core.errors import TokenIssuanceError
from usergate.core.utils import generate_id, utc_now
from usergate.storage.base import ExpiringStore

logger = logging.getLogger(__name__)


CODE_LENGTH = 6
RESET_TOKEN_LENGTH = 32
_RESET_TOKEN_ALPHABET = string.ascii_letters + string.digits


# =============================================================================
# Models
# =============================================================================

class TokenPayload(BaseModel):
    """Verified access token claims."""
    sub: str  # subject (user) id
    email: str
    role: Role
    iat: datetime
    exp: datetime
    iss: str
    aud: str
    jti: str  # unique token ID


class TokenPair(BaseModel):
    """Access and refresh token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


class DenylistEntry(BaseModel):
    subject_id: str | None
    reason: str
    denylisted_at: datetime
    expires_at: datetime


class RefreshRecord(BaseModel):
    subject_id: str
    created_at: datetime
    expires_at: datetime
    last_used_at: datetime | None = None


class TokenStats(BaseModel):
    active_refresh_tokens: int
    denylisted_tokens: int
    subjects_with_refresh_tokens: int


def _fingerprint(token: str) -> str:
    """Short, stable log handle for a token; never any part of the token itself."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


# =============================================================================
# Service
# =============================================================================


class TokenService:
    """Token issuance and verification."""
    
    def __init__(
        self,
        settings: Settings,
        denylist: ExpiringStore,
        refresh_store: ExpiringStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.denylist_store = denylist
        self.refresh_store = refresh_store
        self.clock = clock
    
    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.jwt_access_token_expire_minutes)
    
    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.jwt_refresh_token_expire_days)
    
    # -------------------------------------------------------------------------
    # Access tokens
    # -------------------------------------------------------------------------
    
    def issue_access_token(self, subject_id: str, email: str, role: Role | str) -> str:
        """Create a signed access token."""
        now = self.clock()
        payload = {
            "sub": subject_id,
            "email": email,
            "role": Role(role).value,
            "iat": now,
            "exp": now + self.access_token_ttl,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "jti": generate_id("tok"),
            "type": "access",
        }
        
        try:
            return jwt.encode(payload, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Failed to sign access token for {subject_id}: {e}")
            raise TokenIssuanceError() from e
    
    async def verify_access_token(self, token: str) -> TokenPayload | None:
        """
        Verify an access token.
        
        Returns None for anything that is not a live, untampered access token:
        malformed, bad signature, wrong issuer/audience/type, expired or
        denylisted. Callers treat None as unauthenticated.
        """
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret_key,
                algorithms=[self.settings.jwt_algorithm],
                issuer=self.settings.jwt_issuer,
                audience=self.settings.jwt_audience,
                options={"require": ["sub", "exp", "iat", "iss", "aud"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Access token rejected: {e}")
            return None
        
        if claims.get("type") != "access":
            return None
        
        # Checked again against our own clock, whatever the library decided
        expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        if expires_at <= self.clock():
            return None
        
        if await self.is_denylisted(token):
            return None
        
        try:
            return TokenPayload(
                sub=claims["sub"],
                email=claims.get("email", ""),
                role=claims.get("role"),
                iat=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
                exp=expires_at,
                iss=claims["iss"],
                aud=claims["aud"] if isinstance(claims["aud"], str) else claims["aud"][0],
                jti=claims.get("jti", ""),
            )
        except ValueError:
            # Unknown role or malformed claim
            return None
    
    # -------------------------------------------------------------------------
    # Refresh tokens
    # -------------------------------------------------------------------------
    
    async def issue_refresh_token(self, subject_id: str) -> str:
        """Create a refresh token and remember it server-side."""
        now = self.clock()
        expires_at = now + self.refresh_token_ttl
        payload = {
            "sub": subject_id,
            "iat": now,
            "exp": expires_at,
            "jti": generate_id("rtok"),
            "type": "refresh",
        }
        
        try:
            token = jwt.encode(payload, self.settings.jwt_refresh_secret_key, algorithm=self.settings.jwt_algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.error(f"Failed to sign refresh token for {subject_id}: {e}")
            raise TokenIssuanceError("Error issuing refresh token") from e
        
        record = RefreshRecord(subject_id=subject_id, created_at=now, expires_at=expires_at, last_used_at=now)
        await self.refresh_store.set(token, record, ttl=self.refresh_token_ttl.total_seconds())
        return token
    
    async def issue_token_pair(self, subject_id: str, email: str, role: Role | str) -> TokenPair:
        """Create both access and refresh tokens."""
        return TokenPair(
            access_token=self.issue_access_token(subject_id, email, role),
            refresh_token=await self.issue_refresh_token(subject_id),
            expires_in=int(self.access_token_ttl.total_seconds()),
        )
    
    async def verify_refresh_token(self, token: str) -> str | None:
        """
        Verify a refresh token.
        
        Returns the subject id if the token is valid AND still tracked.
        """
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_refresh_secret_key,
                algorithms=[self.settings.jwt_algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Refresh token rejected: {e}")
            return None
        
        if claims.get("type") != "refresh":
            return None
        
        record: RefreshRecord | None = await self.refresh_store.get(token)
        if record is None or record.expires_at <= self.clock():
            await self.refresh_store.delete(token)
            return None
        
        record.last_used_at = self.clock()
        return record.subject_id
    
    async def revoke_refresh_token(self, token: str, reason: str = "revoked") -> bool:
        removed = await self.refresh_store.delete(token)
        if removed:
            logger.info(f"Refresh token revoked ({reason}): {_fingerprint(token)}")
        return removed
    
    async def revoke_all_for_subject(self, subject_id: str, reason: str) -> int:
        """Revoke every refresh token belonging to a subject."""
        revoked = 0
        for token, record in await self.refresh_store.items():
            if record.subject_id == subject_id and await self.refresh_store.delete(token):
                revoked += 1
        
        logger.info(f"All refresh tokens revoked for {subject_id} ({reason}): {revoked}")
        return revoked
    
    # -------------------------------------------------------------------------
    # Denylist
    # -------------------------------------------------------------------------
    
    async def denylist(self, token: str, reason: str, subject_id: str | None = None) -> bool:
        """
        Invalidate an access token before its natural expiry.
        
        The entry lives exactly as long as the token would have. Tokens that
        are already expired or unreadable are not stored.
        """
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        except (jwt.PyJWTError, KeyError, TypeError, ValueError):
            logger.warning("Ignoring denylist request for an unreadable token")
            return False
        
        now = self.clock()
        ttl = (expires_at - now).total_seconds()
        if ttl <= 0:
            return False
        
        entry = DenylistEntry(
            subject_id=subject_id or claims.get("sub"),
            reason=reason,
            denylisted_at=now,
            expires_at=expires_at,
        )
        await self.denylist_store.set(token, entry, ttl=ttl)
        logger.info(f"Token denylisted ({reason}): {_fingerprint(token)}")
        return True
    
    async def is_denylisted(self, token: str) -> bool:
        return await self.denylist_store.get(token) is not None
    
    # -------------------------------------------------------------------------
    # Recovery secrets
    # -------------------------------------------------------------------------
    
    def issue_verification_code(self) -> str:
        """A 6-digit numeric code (never starts with 0)."""
        return str(secrets.randbelow(900_000) + 100_000)
    
    def code_expiry(self) -> datetime:
        return self.clock() + timedelta(minutes=self.settings.verification_code_ttl_minutes)
    
    def issue_reset_token(self) -> str:
        """A 32-character alphanumeric opaque token."""
        return "".join(secrets.choice(_RESET_TOKEN_ALPHABET) for _ in range(RESET_TOKEN_LENGTH))
    
    def reset_token_expiry(self) -> datetime:
        return self.clock() + timedelta(minutes=self.settings.reset_token_ttl_minutes)
    
    def is_expired(self, expires_at: datetime) -> bool:
        return self.clock() > expires_at
    
    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------
    
    async def stats(self) -> TokenStats:
        refresh = await self.refresh_store.items()
        denylisted = await self.denylist_store.items()
        return TokenStats(
            active_refresh_tokens=len(refresh),
            denylisted_tokens=len(denylisted),
            subjects_with_refresh_tokens=len({record.subject_id for _, record in refresh}),
        )
    
    async def sweep(self) -> int:
        """Purge expired denylist and refresh token entries."""
        return await self.denylist_store.sweep() + await self.refresh_store.sweep()
