"""
Password recovery flow.

Three steps, addressed by email:

    request_code(email)          REQUESTED    → CODE_ISSUED
    verify_code(email, code)     CODE_ISSUED  → TOKEN_ISSUED
    reset_password(token, pw)    TOKEN_ISSUED → COMPLETE

The state lives on the user record (`UserRecord.recovery`), so a user has
at most one attempt in flight and every new request overwrites the last.
Responses never reveal whether an email is registered.
"""

from __future__ import annotations

import logging
import re
import secrets
from enum import Enum

from pydantic import BaseModel

from usergate.auth.credentials import hash_password_async, score_password
from usergate.auth.rate_limit import RateLimiter
from usergate.auth.tokens import TokenService
from usergate.config import Settings
from usergate.core.errors import ValidationError
from usergate.core.utils import mask_email
from usergate.integrations.email import Notifier
from usergate.storage.base import PendingCode, PendingReset, UserRecord, UserStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("usergate.audit")


MSG_CODE_SENT = "If the email is registered, a verification code has been sent."
MSG_CODE_VERIFIED = "Code verified successfully"
MSG_CODE_INVALID = "Invalid or expired verification code"
MSG_CODE_FORMAT = "The code must be 6 digits"
MSG_TOKEN_INVALID = "Invalid or expired reset token"
MSG_WEAK_PASSWORD = "Password does not meet the strength requirements"
MSG_PASSWORD_RESET = "Password updated successfully"

_CODE_PATTERN = re.compile(r"^\d{6}$")


class RecoveryPhase(str, Enum):
    REQUESTED = "requested"
    CODE_ISSUED = "code_issued"
    TOKEN_ISSUED = "token_issued"
    COMPLETE = "complete"


class RecoveryResult(BaseModel):
    success: bool
    message: str
    token: str | None = None


def phase_of(user: UserRecord | None) -> RecoveryPhase:
    """Where a user currently stands in the flow."""
    if user is None or user.recovery is None:
        return RecoveryPhase.REQUESTED
    if isinstance(user.recovery, PendingCode):
        return RecoveryPhase.CODE_ISSUED
    return RecoveryPhase.TOKEN_ISSUED


class RecoveryFlow:
    """Orchestrates the code → token → new password exchange."""
    
    def __init__(
        self,
        users: UserStore,
        tokens: TokenService,
        notifier: Notifier,
        rate_limiter: RateLimiter,
        settings: Settings,
    ):
        self.users = users
        self.tokens = tokens
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.settings = settings
    
    async def request_code(self, email: str, client: str = "unknown") -> RecoveryResult:
        """
        Issue a verification code if the email belongs to a user.
        
        Always reports success (unless rate limited) so the response can't
        be used to probe for registered emails.
        """
        await self.rate_limiter.hit(client, "forgot_password")
        
        user = await self.users.find_by_email(email)
        if user is None:
            audit_logger.info(f"recovery code requested for unknown email {mask_email(email)} ip={client}")
            return RecoveryResult(success=True, message=MSG_CODE_SENT)
        
        code = self.tokens.issue_verification_code()
        await self.users.update(user.id, recovery=PendingCode(code=code, expires_at=self.tokens.code_expiry()))
        audit_logger.info(f"recovery {RecoveryPhase.CODE_ISSUED.value} subject={user.id} ip={client}")
        
        if not await self._notify(self.notifier.send_verification_code, user.email, code):
            logger.error(f"Verification code for {mask_email(user.email)} could not be delivered")
        
        return RecoveryResult(success=True, message=MSG_CODE_SENT)
    
    async def verify_code(self, email: str, code: str, client: str = "unknown") -> RecoveryResult:
        """
        Exchange a correct, unexpired code for a reset token.
        
        Any failure leaves the stored state untouched.
        """
        await self.rate_limiter.hit(client, "verify_code")
        
        if not _CODE_PATTERN.match(code or ""):
            raise ValidationError(MSG_CODE_FORMAT)
        
        user = await self.users.find_by_email(email)
        pending = user.recovery if user else None
        
        if not isinstance(pending, PendingCode) or not secrets.compare_digest(pending.code, code):
            audit_logger.info(f"recovery code rejected for {mask_email(email)} ip={client}")
            raise ValidationError(MSG_CODE_INVALID)
        
        if self.tokens.is_expired(pending.expires_at):
            audit_logger.info(f"recovery code expired subject={user.id} ip={client}")
            raise ValidationError(MSG_CODE_INVALID)
        
        token = self.tokens.issue_reset_token()
        await self.users.update(
            user.id,
            recovery=PendingReset(token=token, expires_at=self.tokens.reset_token_expiry()),
        )
        audit_logger.info(f"recovery {RecoveryPhase.TOKEN_ISSUED.value} subject={user.id} ip={client}")
        
        return RecoveryResult(success=True, message=MSG_CODE_VERIFIED, token=token)
    
    async def reset_password(self, token: str, new_password: str) -> RecoveryResult:
        """
        Consume a reset token and set the new password.
        
        An expired token is discarded; the user has to start over.
        """
        user = await self.users.find_by_reset_token(token) if token else None
        pending = user.recovery if user else None
        
        if not isinstance(pending, PendingReset):
            raise ValidationError(MSG_TOKEN_INVALID)
        
        if self.tokens.is_expired(pending.expires_at):
            await self.users.update(user.id, recovery=None)
            audit_logger.info(f"recovery reset token expired subject={user.id}")
            raise ValidationError(MSG_TOKEN_INVALID)
        
        strength = score_password(new_password, self.settings)
        if not strength.is_valid:
            raise ValidationError(MSG_WEAK_PASSWORD, details={"feedback": strength.feedback})
        
        password_hash = await hash_password_async(new_password, rounds=self.settings.bcrypt_rounds)
        await self.users.update(user.id, password_hash=password_hash, recovery=None)
        audit_logger.info(f"recovery {RecoveryPhase.COMPLETE.value} subject={user.id}")
        
        # Sessions opened with the old password stop refreshing
        await self.tokens.revoke_all_for_subject(user.id, reason="password reset")
        
        # The password is already changed; a failed confirmation is only logged
        await self._notify(self.notifier.send_password_changed, user.email)
        
        return RecoveryResult(success=True, message=MSG_PASSWORD_RESET)
    
    async def _notify(self, send, *args) -> bool:
        try:
            return await send(*args)
        except Exception:
            logger.exception("Notification failed")
            return False
