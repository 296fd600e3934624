"""Services for business logic."""

from healthvault.services.audit_service import AuditService
from healthvault.services.auth_service import AuthService, get_auth_service
from healthvault.services.code_service import OneTimeCodeService
from healthvault.services.email_service import EmailService
from healthvault.services.session_service import SessionService
from healthvault.services.user_service import UserService

__all__ = [
    "AuditService",
    "AuthService",
    "get_auth_service",
    "OneTimeCodeService",
    "EmailService",
    "SessionService",
    "UserService",
]
