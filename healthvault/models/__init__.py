"""Database models."""

from healthvault.models.user import User, UserRole
from healthvault.models.refresh_token import RefreshToken
from healthvault.models.one_time_code import OneTimeCode, CodePurpose
from healthvault.models.audit_log import AuditLog, AuditAction, AuditStatus
from healthvault.models.profile import Patient, Doctor

__all__ = [
    "User",
    "UserRole",
    "RefreshToken",
    "OneTimeCode",
    "CodePurpose",
    "AuditLog",
    "AuditAction",
    "AuditStatus",
    "Patient",
    "Doctor",
]
