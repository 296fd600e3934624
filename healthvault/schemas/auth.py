"""Auth request/response schemas for API validation."""

import re
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from healthvault.models.audit_log import AuditAction, AuditStatus
from healthvault.models.user import UserRole

SPECIAL_CHARACTERS = "@$!%*?&#"
FULL_NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")


def check_password_strength(password: str) -> str:
    password = password.strip()
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[0-9]", password):
        raise ValueError("Password must contain at least one number")
    if not any(ch in SPECIAL_CHARACTERS for ch in password):
        raise ValueError(f"Password must contain at least one special character ({SPECIAL_CHARACTERS})")
    return password


def check_full_name(full_name: str) -> str:
    full_name = full_name.strip()
    if not 2 <= len(full_name) <= 100:
        raise ValueError("Full name must be between 2 and 100 characters")
    if not FULL_NAME_PATTERN.match(full_name):
        raise ValueError("Full name can only contain letters and spaces")
    return full_name


class EmailRequest(BaseModel):
    """Schema for endpoints that take only an email (send-otp, resend, forgot)."""
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class OTPRegister(EmailRequest):
    """Schema for OTP-based registration, with optional role-specific profile details."""
    model_config = ConfigDict(populate_by_name=True)

    otp: str = Field(pattern=r"^\d{6}$")
    full_name: str
    password: str
    role: UserRole = UserRole.PATIENT

    # Patient details
    dob: Optional[date] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = Field(None, alias="bloodGroup", max_length=10)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None

    # Doctor details
    specialty: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None
    years_experience: Optional[int] = Field(None, alias="yearsExperience", ge=0)
    license_number: Optional[str] = Field(None, alias="licenseNumber", max_length=100)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return check_password_strength(v)

    @field_validator("role")
    @classmethod
    def self_service_role(cls, v: UserRole) -> UserRole:
        if v == UserRole.ADMIN:
            raise ValueError("Role must be patient or doctor")
        return v

    @field_validator("gender")
    @classmethod
    def known_gender(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.lower() not in ("male", "female", "other"):
            raise ValueError("Gender must be 'male', 'female', or 'other'")
        return v.lower() if v else v

    @field_validator("full_name")
    @classmethod
    def valid_full_name(cls, v: str) -> str:
        return check_full_name(v)

    def profile_details(self) -> dict:
        return self.model_dump(
            include={
                "dob", "gender", "blood_group", "phone", "address",
                "specialty", "bio", "years_experience", "license_number",
            },
            exclude_none=True,
        )


class UserCreate(EmailRequest):
    """Schema for direct registration."""
    password: str
    full_name: str

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return check_password_strength(v)

    @field_validator("full_name")
    @classmethod
    def valid_full_name(cls, v: str) -> str:
        return check_full_name(v)


class UserLogin(EmailRequest):
    """Schema for user login."""
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def strip_password(cls, v: str) -> str:
        # Same normalization the password got before it was hashed
        return v.strip()


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1)


class PasswordResetConfirm(BaseModel):
    """Schema for setting a new password with a reset token."""
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(min_length=1)
    new_password: str = Field(alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return check_password_strength(v)


class RevokeSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


# ─────────────────────────────────────────────
# Responses
# ─────────────────────────────────────────────

class MessageResponse(BaseModel):
    """Simple message response."""
    message: str


class RegisterResponse(MessageResponse):
    email: str


class UserSummary(BaseModel):
    """User fields returned with a fresh access token."""
    model_config = ConfigDict(from_attributes=True)

    email: str
    full_name: Optional[str] = None
    email_verified: bool
    role: UserRole


class AuthResponse(BaseModel):
    """Login / OTP registration response. The refresh token travels in a cookie."""
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(serialization_alias="accessToken")
    user: UserSummary


class AccessTokenResponse(BaseModel):
    access_token: str = Field(serialization_alias="accessToken")


class UserResponse(BaseModel):
    """Schema for user response (never includes the password hash)."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    role: UserRole
    email_verified: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime
    last_login: Optional[datetime] = None


class ProfileResponse(BaseModel):
    user: UserResponse


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: AuditAction
    status: AuditStatus
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime


class ActivityListResponse(BaseModel):
    activities: List[ActivityResponse]


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_info: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
