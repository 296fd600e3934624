"""Authentication endpoints."""

import logging

from fastapi import APIRouter, Request, Response

from healthvault.core.config import get_settings
from healthvault.core.dependencies import Auth, Client, CurrentUser, DbSession, Mailer
from healthvault.core.rate_limiter import rate_limiter
from healthvault.schemas.auth import (
    AccessTokenResponse,
    ActivityListResponse,
    ActivityResponse,
    AuthResponse,
    EmailRequest,
    MessageResponse,
    OTPRegister,
    PasswordResetConfirm,
    ProfileResponse,
    RegisterResponse,
    RevokeSessionRequest,
    SessionListResponse,
    SessionResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    UserSummary,
    VerifyEmailRequest,
)
from healthvault.services.auth_service import AuthResult

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


# ─────────────────────────────────────────────
# Refresh Cookie
# ─────────────────────────────────────────────

def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def signed_in(response: Response, result: AuthResult) -> AuthResponse:
    set_refresh_cookie(response, result.refresh_token)
    return AuthResponse(
        access_token=result.access_token,
        user=UserSummary.model_validate(result.user),
    )


# ─────────────────────────────────────────────
# OTP Registration
# ─────────────────────────────────────────────

@router.post("/send-otp", response_model=MessageResponse)
async def send_otp(body: EmailRequest, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    """Email a 6-digit code that proves ownership of the address."""
    rate_limiter.check("otp_send_email", body.email)
    await auth.send_otp(db, body.email, mailer)
    return MessageResponse(message="OTP sent successfully to your email")


@router.post("/verify-otp", response_model=AuthResponse)
async def verify_otp(
    body: OTPRegister,
    response: Response,
    client: Client,
    db: DbSession,
    auth: Auth,
    mailer: Mailer,
):
    """
    Register with a previously emailed OTP.
    The account is created already verified and signed in.
    """
    result = await auth.verify_otp_and_register(db, body, client, mailer)
    return signed_in(response, result)


# ─────────────────────────────────────────────
# Direct Registration
# ─────────────────────────────────────────────

@router.post("/register", response_model=RegisterResponse)
async def register(body: UserCreate, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    """Create an unverified account and email a verification link."""
    message = await auth.register(db, body, client, mailer)
    return RegisterResponse(message=message, email=body.email)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(body: VerifyEmailRequest, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    await auth.verify_email(db, body.token, client, mailer)
    return MessageResponse(message="Email verified successfully! You can now log in.")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(body: EmailRequest, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    await auth.resend_verification(db, body.email, mailer)
    return MessageResponse(message="Verification email sent successfully!")


# ─────────────────────────────────────────────
# Login / Refresh / Logout
# ─────────────────────────────────────────────

@router.post("/login", response_model=AuthResponse)
async def login(credentials: UserLogin, response: Response, client: Client, db: DbSession, auth: Auth):
    """
    Authenticate a user.
    Returns an access token; the refresh token is set as an httpOnly cookie.
    """
    result = await auth.login(db, credentials.email, credentials.password, client)
    return signed_in(response, result)


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh_token(request: Request, response: Response, client: Client, db: DbSession, auth: Auth):
    """
    Rotate the refresh cookie and get a new access token.
    The presented refresh token is revoked and cannot be used again.
    """
    token = request.cookies.get(settings.refresh_cookie_name)
    result = await auth.refresh(db, token, client)
    set_refresh_cookie(response, result.refresh_token)
    return AccessTokenResponse(access_token=result.access_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response, client: Client, db: DbSession, auth: Auth):
    """Revoke the current session. Always succeeds."""
    token = request.cookies.get(settings.refresh_cookie_name)
    await auth.logout(db, token, client)
    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out successfully")


# ─────────────────────────────────────────────
# Password Reset
# ─────────────────────────────────────────────

@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(body: EmailRequest, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    """
    Request a password reset link.

    Always returns the same message to prevent user enumeration.
    """
    rate_limiter.check("password_reset_email", body.email)
    message = await auth.forgot_password(db, body.email, client, mailer)
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(body: PasswordResetConfirm, client: Client, db: DbSession, auth: Auth, mailer: Mailer):
    """
    Reset the password using the emailed token.
    Signs the user out of every session.
    """
    await auth.reset_password(db, body.token, body.new_password, client, mailer)
    return MessageResponse(message="Password reset successfully. Please log in with your new password.")


# ─────────────────────────────────────────────
# Current User
# ─────────────────────────────────────────────

@router.get("/profile", response_model=ProfileResponse)
async def get_profile(current_user: CurrentUser):
    return ProfileResponse(user=UserResponse.model_validate(current_user))


@router.get("/activity", response_model=ActivityListResponse)
async def get_activity(current_user: CurrentUser, db: DbSession, auth: Auth):
    """Most recent security events for the current user."""
    activities = await auth.get_activity(db, current_user)
    return ActivityListResponse(
        activities=[ActivityResponse.model_validate(entry) for entry in activities]
    )


@router.get("/sessions", response_model=SessionListResponse)
async def get_sessions(current_user: CurrentUser, db: DbSession, auth: Auth):
    """Live sessions for the current user, most recently used first."""
    sessions = await auth.list_sessions(db, current_user)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(session) for session in sessions]
    )


@router.post("/revoke-session", response_model=MessageResponse)
async def revoke_session(body: RevokeSessionRequest, current_user: CurrentUser, db: DbSession, auth: Auth):
    await auth.revoke_session(db, current_user, body.session_id)
    return MessageResponse(message="Session revoked successfully")
