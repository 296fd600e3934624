"""Application configuration settings."""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "HealthVault API"
    app_env: str = "development"
    debug: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./healthvault.db"

    # JWT Authentication (access and refresh tokens are signed independently)
    jwt_access_secret: str = "change-this-access-secret"
    jwt_refresh_secret: str = "change-this-refresh-secret"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    refresh_cookie_name: str = "refreshToken"

    # One-time codes
    otp_expire_minutes: int = 5
    password_reset_expire_minutes: int = 60
    email_verification_expire_hours: int = 24

    # Passwords
    bcrypt_rounds: int = 10

    # Login throttling
    login_max_failed_attempts: int = 5
    login_lockout_minutes: int = 15

    # Session housekeeping
    revoked_session_retention_days: int = 7
    session_sweep_interval_minutes: int = 60

    # IP / email rate limiting on auth routes
    rate_limit_enabled: bool = True

    # SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "no-reply@healthvault.local"
    smtp_from_name: str = "HealthVault EHR"
    smtp_use_tls: bool = True

    # Frontend (used to build verification / reset links)
    frontend_origin: str = "http://localhost:3000"

    # CORS
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Security
    allowed_hosts: str = "*"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def allowed_hosts_list(self) -> List[str]:
        """Get allowed hosts as a list."""
        return [host.strip() for host in self.allowed_hosts.split(",")]

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class AuthConfig:
    """
    Auth options frozen at startup.

    Passed into the token issuer and the session / one-time-code stores so
    none of them read the environment on their own.
    """

    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    otp_ttl: timedelta = timedelta(minutes=5)
    reset_ttl: timedelta = timedelta(hours=1)
    verify_ttl: timedelta = timedelta(hours=24)
    algorithm: str = "HS256"
    bcrypt_rounds: int = 10
    max_failed_logins: int = 5
    lockout_window: timedelta = timedelta(minutes=15)
    revoked_retention: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            otp_ttl=timedelta(minutes=settings.otp_expire_minutes),
            reset_ttl=timedelta(minutes=settings.password_reset_expire_minutes),
            verify_ttl=timedelta(hours=settings.email_verification_expire_hours),
            algorithm=settings.jwt_algorithm,
            bcrypt_rounds=settings.bcrypt_rounds,
            max_failed_logins=settings.login_max_failed_attempts,
            lockout_window=timedelta(minutes=settings.login_lockout_minutes),
            revoked_retention=timedelta(days=settings.revoked_session_retention_days),
        )


@lru_cache()
def get_auth_config() -> AuthConfig:
    """Get the auth config derived from the cached settings."""
    return AuthConfig.from_settings(get_settings())
