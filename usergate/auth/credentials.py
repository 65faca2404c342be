# =============================================================================
# Password Hashing & Strength
# =============================================================================
#
# bcrypt with a configurable cost factor (12 by default). Hashing or
# verifying only raises when the primitive itself fails; a wrong password
# is a plain False.
#
# =============================================================================

from __future__ import annotations

import logging
import re
import secrets
from functools import lru_cache

import bcrypt
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from usergate.config import Settings, get_settings
from usergate.core.errors import CredentialProcessingError

logger = logging.getLogger(__name__)


# bcrypt ignores everything past 72 bytes (and newer releases refuse it)
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with a fresh salt."""
    rounds = rounds or get_settings().bcrypt_rounds
    try:
        digest = bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=rounds))
    except (ValueError, TypeError, MemoryError) as e:
        logger.error(f"Password hashing failed: {e}")
        raise CredentialProcessingError("Error processing password") from e
    return digest.decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("ascii"))
    except (ValueError, TypeError, MemoryError) as e:
        logger.error(f"Password verification failed: {e}")
        raise CredentialProcessingError("Error verifying password") from e


@lru_cache
def dummy_hash(rounds: int) -> str:
    """Hash of a random secret; logins for unknown accounts are verified against it."""
    return hash_password(secrets.token_urlsafe(16), rounds=rounds)


# Async wrappers: bcrypt runs in a worker thread, off the event loop

async def hash_password_async(password: str, rounds: int | None = None) -> str:
    return await run_in_threadpool(hash_password, password, rounds=rounds)


async def verify_password_async(password: str, password_hash: str | None, rounds: int | None = None) -> bool:
    """
    verify_password() in a worker thread.
    
    A missing hash (unknown account) is still checked, against dummy_hash(),
    and always fails.
    """
    if password_hash is None:
        stand_in = await run_in_threadpool(dummy_hash, rounds or get_settings().bcrypt_rounds)
        await run_in_threadpool(verify_password, password, stand_in)
        return False
    return await run_in_threadpool(verify_password, password, password_hash)


# =============================================================================
# Strength Scoring
# =============================================================================


COMMON_PATTERNS = [
    re.compile(r"123456"),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"qwerty", re.IGNORECASE),
    re.compile(r"abc123", re.IGNORECASE),
    re.compile(r"admin", re.IGNORECASE),
    re.compile(r"user", re.IGNORECASE),
]

SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

MAX_SCORE = 7


class PasswordStrength(BaseModel):
    """Result of scoring a candidate password."""
    is_valid: bool
    score: int
    feedback: list[str]
    strength: str  # weak | medium | strong | very_strong


def _label(score: int) -> str:
    if score < 3:
        return "weak"
    if score < 5:
        return "medium"
    if score < MAX_SCORE:
        return "strong"
    return "very_strong"


def score_password(password: str, settings: Settings | None = None) -> PasswordStrength:
    """
    Score a password against the strength rules.
    
    One point per rule met. The minimum length rule is mandatory; whether
    the other rules are also required depends on `password_min_score`.
    `feedback` lists every unmet rule.
    """
    settings = settings or get_settings()
    
    if not password:
        return PasswordStrength(
            is_valid=False,
            score=0,
            feedback=["Password is required"],
            strength="weak",
        )
    
    feedback: list[str] = []
    score = 0
    
    long_enough = len(password) >= settings.password_min_length
    if long_enough:
        score += 1
    else:
        feedback.append(f"Must be at least {settings.password_min_length} characters long")
    
    if len(password) >= settings.password_strong_length:
        score += 1
    else:
        feedback.append(f"Use {settings.password_strong_length} or more characters for a stronger password")
    
    if re.search(r"[a-z]", password):
        score += 1
    else:
        feedback.append("Add at least one lowercase letter")
    
    if re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("Add at least one uppercase letter")
    
    if re.search(r"\d", password):
        score += 1
    else:
        feedback.append("Add at least one number")
    
    if SPECIAL_CHARACTERS.search(password):
        score += 1
    else:
        feedback.append("Add at least one special character")
    
    if not any(pattern.search(password) for pattern in COMMON_PATTERNS):
        score += 1
    else:
        feedback.append("Avoid common patterns such as 123456, password or qwerty")
    
    return PasswordStrength(
        is_valid=long_enough and score >= settings.password_min_score,
        score=score,
        feedback=feedback,
        strength=_label(score),
    )
