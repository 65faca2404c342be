"""
Error taxonomy.

Every error the service raises on purpose is an AppError. Each subclass
knows the HTTP status it maps to, so the API layer converts them without
a lookup table. Anything that is not an AppError is treated as an
unexpected failure and becomes a generic 500.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMIT = "RATE_LIMIT"
    CREDENTIAL_ERROR = "CREDENTIAL_ERROR"
    TOKEN_ERROR = "TOKEN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base exception for errors with a well-defined HTTP mapping."""
    
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "Internal server error"
    
    def __init__(self, message: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)
    
    @property
    def is_internal(self) -> bool:
        return self.status_code >= 500


class ValidationError(AppError):
    """Malformed or unacceptable input."""
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400
    default_message = "Invalid input data"


class AuthenticationError(AppError):
    """Missing, invalid or expired credentials."""
    code = ErrorCode.AUTHENTICATION_ERROR
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(AppError):
    """Valid identity without the required permission."""
    code = ErrorCode.AUTHORIZATION_ERROR
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    code = ErrorCode.CONFLICT
    status_code = 409
    default_message = "Resource already exists"


class RateLimitError(AppError):
    """Too many requests from one client within the window."""
    code = ErrorCode.RATE_LIMIT
    status_code = 429
    default_message = "Too many requests, please try again later"
    
    def __init__(self, message: str | None = None, retry_after: int = 0):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class CredentialProcessingError(AppError):
    """The password hashing primitive failed (not a mismatch)."""
    code = ErrorCode.CREDENTIAL_ERROR
    default_message = "Error processing credentials"


class TokenIssuanceError(AppError):
    """Signing a token failed."""
    code = ErrorCode.TOKEN_ERROR
    default_message = "Error issuing authentication token"


class InternalError(AppError):
    pass
