"""Domain exceptions raised by the auth flows and rendered by the API layer."""

from typing import Any, Dict, Optional


class HealthVaultError(Exception):
    """Base exception for all API errors"""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str = "Internal server error",
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)


class ValidationError(HealthVaultError):
    """Malformed input"""
    status_code = 400
    code = "validation_error"


class DuplicateUserError(HealthVaultError):
    """An account with this email already exists"""
    status_code = 409
    code = "duplicate_user"

    def __init__(self, message: str = "User already exists"):
        super().__init__(message)


class InvalidCredentialsError(HealthVaultError):
    status_code = 401
    code = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid credentials")


class EmailNotVerifiedError(HealthVaultError):
    status_code = 403
    code = "email_not_verified"

    def __init__(self):
        super().__init__(
            "Please verify your email before logging in",
            details={"email_verified": False},
        )


class AccountDeactivatedError(HealthVaultError):
    status_code = 403
    code = "account_deactivated"

    def __init__(self):
        super().__init__("Account is deactivated. Please contact support.")


class TooManyAttemptsError(HealthVaultError):
    """Too many failed logins for one account within the lockout window"""
    status_code = 429
    code = "too_many_attempts"

    def __init__(self, lockout_minutes: int):
        super().__init__(
            f"Too many failed login attempts. Please try again in {lockout_minutes} minutes.",
            headers={"Retry-After": str(lockout_minutes * 60)},
        )


class RateLimitedError(HealthVaultError):
    """Too many requests from one IP or for one email"""
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int):
        super().__init__(
            f"Too many requests. Please try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


class InvalidOrExpiredCodeError(HealthVaultError):
    """Covers codes that were consumed, expired or never issued"""
    status_code = 400
    code = "invalid_or_expired_code"

    def __init__(self, message: str = "Invalid or expired code"):
        super().__init__(message)


class AlreadyVerifiedError(HealthVaultError):
    status_code = 400
    code = "already_verified"

    def __init__(self):
        super().__init__("Email already verified")


class InvalidTokenError(HealthVaultError):
    status_code = 401
    code = "invalid_token"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class NoTokenError(HealthVaultError):
    status_code = 401
    code = "no_token"

    def __init__(self):
        super().__init__("No token provided")


class NotFoundError(HealthVaultError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")


class EmailDeliveryError(HealthVaultError):
    status_code = 500
    code = "email_delivery_failed"
