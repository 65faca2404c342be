"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""
    
    # ==========================================================================
    # Environment
    # ==========================================================================
    
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    
    # ==========================================================================
    # API Server
    # ==========================================================================
    
    app_url: str = "http://localhost:3000"
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    
    # Peers allowed to set X-Forwarded-For / X-Real-IP; empty trusts nobody
    trusted_proxies: list[str] = []
    
    # Paths that never require a token (exact match or prefix + "/")
    public_paths: list[str] = [
        "/health",
        "/docs",
        "/openapi.json",
        "/auth/login",
        "/auth/register",
        "/auth/refresh",
        "/auth/forgot",
        "/auth/verify-code",
        "/auth/reset",
    ]
    
    # ==========================================================================
    # Authentication
    # ==========================================================================
    
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_refresh_secret_key: str = "dev-jwt-refresh-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "grupousuarios-tp"
    jwt_audience: str = "grupousuarios-tp-users"
    jwt_access_token_expire_minutes: int = 24 * 60
    jwt_refresh_token_expire_days: int = 7
    
    # ==========================================================================
    # Passwords
    # ==========================================================================
    
    bcrypt_rounds: int = 12
    password_min_length: int = 8
    password_strong_length: int = 12
    # Minimum strength score for a password to be accepted. The minimum
    # length rule is always mandatory; 1 accepts any password that meets it.
    password_min_score: int = 1
    
    # ==========================================================================
    # Password Recovery
    # ==========================================================================
    
    verification_code_ttl_minutes: int = 10
    reset_token_ttl_minutes: int = 15
    
    # ==========================================================================
    # Rate Limits (requests per window)
    # ==========================================================================
    
    rate_limit_forgot_password: int = 5
    rate_limit_forgot_password_window_seconds: int = 15 * 60
    rate_limit_verify_code: int = 10
    rate_limit_verify_code_window_seconds: int = 5 * 60
    rate_limit_login: int = 10
    rate_limit_login_window_seconds: int = 15 * 60
    rate_limit_default: int = 10
    rate_limit_default_window_seconds: int = 15 * 60
    
    # Interval for purging expired denylist, refresh token and rate limit entries
    sweep_interval_seconds: int = 60 * 60
    
    # ==========================================================================
    # Email (AWS SES)
    # ==========================================================================
    
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_ses_from_email: str = ""
    
    # ==========================================================================
    # Optional Services
    # ==========================================================================
    
    sentry_dsn: str = ""
    
    # ==========================================================================
    # Helpers
    # ==========================================================================
    
    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
    
    @property
    def is_production(self) -> bool:
        return self.environment == "production"
    
    @property
    def use_aws(self) -> bool:
        """Whether AWS services should be used."""
        return bool(self.aws_access_key_id and self.aws_secret_access_key)
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
