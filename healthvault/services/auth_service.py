"""
Authentication orchestrator.

Composes the credential store, one-time codes, token issuer, session store
and audit log into the registration, login, refresh, logout and password
reset flows.

Audit policy: every security-relevant rejection is recorded. Only unknown
user / wrong password count as failed_login (and so toward the lockout);
lockout hits and the unverified / deactivated branches are recorded as
login failures.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.core.config import AuthConfig, get_auth_config
from healthvault.core.exceptions import (
    AccountDeactivatedError,
    AlreadyVerifiedError,
    DuplicateUserError,
    EmailDeliveryError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    InvalidTokenError,
    NoTokenError,
    NotFoundError,
    TooManyAttemptsError,
)
from healthvault.core.security import TokenIssuer, get_token_issuer
from healthvault.models.audit_log import AuditAction, AuditLog, AuditStatus
from healthvault.models.one_time_code import CodePurpose
from healthvault.models.refresh_token import RefreshToken
from healthvault.models.user import User
from healthvault.schemas.auth import OTPRegister, UserCreate
from healthvault.services.audit_service import AuditService
from healthvault.services.code_service import OneTimeCodeService, get_code_service
from healthvault.services.email_service import EmailService
from healthvault.services.profile_service import provisioner_for
from healthvault.services.session_service import SessionService, get_session_service
from healthvault.services.user_service import UserService, normalize_email
from healthvault.utils.device import ClientContext

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If your email is registered, you will receive a password reset link."


@dataclass
class AuthResult:
    """A signed-in user: access token for the body, refresh token for the cookie."""
    user: User
    access_token: str
    refresh_token: str


def _mask(email: str) -> str:
    return f"{email[:3]}***"


class AuthService:
    """Request-scoped auth flows. Holds no per-request state."""

    def __init__(
        self,
        config: AuthConfig,
        tokens: TokenIssuer,
        sessions: SessionService,
        codes: OneTimeCodeService,
    ):
        self.config = config
        self.tokens = tokens
        self.sessions = sessions
        self.codes = codes

    # ─── Token pair ─────────────────────────────
    async def _sign_in(self, db: AsyncSession, user: User, client: ClientContext) -> AuthResult:
        access_token = self.tokens.issue_access_token(user.id)
        refresh_token = await self.sessions.start(db, user.id, client.device_info)
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_token)

    @staticmethod
    async def _ensure_profile(db: AsyncSession, user: User, details: Optional[dict] = None) -> None:
        provisioner = provisioner_for(user.role)
        if provisioner is not None:
            await provisioner.ensure_profile(db, user, details)

    # ─────────────────────────────────────────────────────────────
    # OTP registration
    # ─────────────────────────────────────────────────────────────

    async def send_otp(self, db: AsyncSession, email: str, mailer: EmailService) -> None:
        """
        Email a registration OTP.

        Older outstanding OTPs for the address are invalidated first. The
        code is committed before delivery and withdrawn if delivery fails.
        """
        email = normalize_email(email)
        otp = await self.codes.issue(db, CodePurpose.OTP, email)
        await db.commit()

        expiry_minutes = int(self.config.otp_ttl.total_seconds() // 60)
        if not await mailer.send_otp(email, otp, expiry_minutes=expiry_minutes):
            await self.codes.invalidate(db, CodePurpose.OTP, email)
            await db.commit()
            logger.error(f"Failed to send OTP email to {_mask(email)}")
            raise EmailDeliveryError(
                "Failed to send OTP email. Please check your email address or try again later."
            )

    async def verify_otp_and_register(
        self,
        db: AsyncSession,
        data: OTPRegister,
        client: ClientContext,
        mailer: EmailService,
    ) -> AuthResult:
        email = normalize_email(data.email)

        record = await self.codes.find_valid(db, CodePurpose.OTP, data.otp, subject=email)
        if record is None:
            await AuditService.record(
                db, AuditAction.REGISTER, AuditStatus.FAILURE,
                email=email, client=client, include_device=False,
                error_message="Invalid or expired OTP",
            )
            raise InvalidOrExpiredCodeError("Invalid or expired OTP")

        if await UserService.get_by_email(db, email):
            await AuditService.record(
                db, AuditAction.REGISTER, AuditStatus.FAILURE,
                email=email, client=client, error_message="User already registered",
            )
            raise DuplicateUserError("User already registered")

        try:
            user = await UserService.create(
                db,
                email=email,
                password=data.password,
                full_name=data.full_name,
                role=data.role,
                email_verified=True,
            )
        except DuplicateUserError:
            await AuditService.record(
                db, AuditAction.REGISTER, AuditStatus.FAILURE,
                email=email, client=client, error_message="User already registered",
            )
            raise

        await self.codes.consume(db, record)
        await self._ensure_profile(db, user, data.profile_details())
        result = await self._sign_in(db, user, client)

        await AuditService.record(
            db, AuditAction.REGISTER, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client,
        )
        logger.info(f"User registered via OTP: {_mask(user.email)} ({user.role.value})")

        # Best-effort: the account already exists either way
        if not await mailer.send_welcome(user.email, user.full_name):
            logger.warning(f"Welcome email failed for {_mask(user.email)}")

        return result

    # ─────────────────────────────────────────────────────────────
    # Direct registration + email verification
    # ─────────────────────────────────────────────────────────────

    async def register(
        self,
        db: AsyncSession,
        data: UserCreate,
        client: ClientContext,
        mailer: EmailService,
    ) -> str:
        """
        Create an unverified user and email a verification link.

        Returns the response message. Delivery failure changes the message
        only: the user row is committed before the email is attempted.
        """
        email = normalize_email(data.email)
        if await UserService.get_by_email(db, email):
            await AuditService.record(
                db, AuditAction.REGISTER, AuditStatus.FAILURE,
                email=email, client=client, error_message="User already exists",
            )
            raise DuplicateUserError()

        try:
            user = await UserService.create(
                db,
                email=email,
                password=data.password,
                full_name=data.full_name,
                email_verified=False,
            )
        except DuplicateUserError:
            await AuditService.record(
                db, AuditAction.REGISTER, AuditStatus.FAILURE,
                email=email, client=client, error_message="User already exists",
            )
            raise

        token = await self.codes.issue(db, CodePurpose.EMAIL_VERIFICATION, user.id)
        # Commits the user and the verification code along with the entry
        await AuditService.record(
            db, AuditAction.REGISTER, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client,
        )

        if await mailer.send_verification_email(user.email, token):
            return "Registration successful! Please check your email to verify your account."

        logger.error(f"Verification email failed for {_mask(user.email)}")
        return "Registration successful! Verification email could not be sent. Please contact support."

    async def verify_email(
        self,
        db: AsyncSession,
        token: str,
        client: ClientContext,
        mailer: EmailService,
    ) -> None:
        record = await self.codes.find_valid(db, CodePurpose.EMAIL_VERIFICATION, token)
        user = await UserService.get_by_id(db, record.subject) if record else None
        if user is None:
            await AuditService.record(
                db, AuditAction.EMAIL_VERIFY, AuditStatus.FAILURE,
                client=client, include_device=False,
                error_message="Invalid or expired verification token",
            )
            raise InvalidOrExpiredCodeError("Invalid or expired verification token")

        if user.email_verified:
            await AuditService.record(
                db, AuditAction.EMAIL_VERIFY, AuditStatus.FAILURE,
                user_id=user.id, email=user.email, client=client, include_device=False,
                error_message="Email already verified",
            )
            raise AlreadyVerifiedError()

        await UserService.mark_verified(db, user)
        await self.codes.consume(db, record)
        await AuditService.record(
            db, AuditAction.EMAIL_VERIFY, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client, include_device=False,
        )

        if not await mailer.send_welcome(user.email, user.full_name):
            logger.warning(f"Welcome email failed for {_mask(user.email)}")

    async def resend_verification(self, db: AsyncSession, email: str, mailer: EmailService) -> None:
        user = await UserService.get_by_email(db, email)
        if user is None:
            raise NotFoundError("User")
        if user.email_verified:
            raise AlreadyVerifiedError()

        token = await self.codes.issue(db, CodePurpose.EMAIL_VERIFICATION, user.id)
        await db.commit()

        if not await mailer.send_verification_email(user.email, token):
            logger.error(f"Verification email failed for {_mask(user.email)}")
            raise EmailDeliveryError("Failed to send verification email")

    # ─────────────────────────────────────────────────────────────
    # Login
    # ─────────────────────────────────────────────────────────────

    async def login(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        client: ClientContext,
    ) -> AuthResult:
        """
        Authenticate with email and password.

        Checks run in order, each failing fast: lockout, user exists,
        password matches, email verified, account active.
        """
        email = normalize_email(email)
        lockout_minutes = int(self.config.lockout_window.total_seconds() // 60)

        failed = await AuditService.count_recent_failed_logins(db, email, minutes=lockout_minutes)
        if failed >= self.config.max_failed_logins:
            await AuditService.record(
                db, AuditAction.LOGIN, AuditStatus.FAILURE,
                email=email, client=client, include_device=False,
                error_message="Account temporarily locked due to multiple failed attempts",
            )
            raise TooManyAttemptsError(lockout_minutes)

        user = await UserService.get_by_email(db, email)
        if not UserService.verify_password(password, user.hashed_password if user else None):
            await AuditService.record(
                db, AuditAction.FAILED_LOGIN, AuditStatus.FAILURE,
                user_id=user.id if user else None, email=email, client=client, include_device=False,
                error_message="Invalid password" if user else "User not found",
            )
            raise InvalidCredentialsError()

        if not user.email_verified:
            await AuditService.record(
                db, AuditAction.LOGIN, AuditStatus.FAILURE,
                user_id=user.id, email=email, client=client, include_device=False,
                error_message="Email not verified",
            )
            raise EmailNotVerifiedError()

        if not user.is_active:
            await AuditService.record(
                db, AuditAction.LOGIN, AuditStatus.FAILURE,
                user_id=user.id, email=email, client=client, include_device=False,
                error_message="Account deactivated",
            )
            raise AccountDeactivatedError()

        # Legacy accounts may predate profile records
        await self._ensure_profile(db, user)

        user.last_login = datetime.now(timezone.utc)
        result = await self._sign_in(db, user, client)

        await AuditService.record(
            db, AuditAction.LOGIN, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client,
        )
        logger.info(f"Login successful for {_mask(user.email)} ({user.role.value})")
        return result

    # ─────────────────────────────────────────────────────────────
    # Refresh (Rotation) / Logout
    # ─────────────────────────────────────────────────────────────

    async def refresh(
        self,
        db: AsyncSession,
        refresh_token: Optional[str],
        client: ClientContext,
    ) -> AuthResult:
        """
        Exchange a refresh token for a new access token and a new refresh token.

        Rotated-out tokens are rejected: replaying one, or racing two
        refreshes with the same token, fails with InvalidTokenError for all
        but the first caller.
        """
        if not refresh_token:
            raise NoTokenError()

        user: Optional[User] = None
        try:
            payload = self.tokens.verify_refresh_token(refresh_token)
            user = await UserService.get_by_id(db, payload["user_id"])
            if user is None or not user.is_active:
                raise InvalidTokenError()
            if not await self.sessions.validate(db, refresh_token):
                raise InvalidTokenError("Refresh token has been revoked")
            # validate and rotate both condition on a live row; rotate decides races
            new_refresh = await self.sessions.rotate(db, refresh_token, user.id, client.device_info)
        except InvalidTokenError as exc:
            await AuditService.record(
                db, AuditAction.TOKEN_REFRESH, AuditStatus.FAILURE,
                user_id=user.id if user else None, email=user.email if user else None,
                client=client, error_message=exc.message,
            )
            raise

        access_token = self.tokens.issue_access_token(user.id)
        await AuditService.record(
            db, AuditAction.TOKEN_REFRESH, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client,
        )
        return AuthResult(user=user, access_token=access_token, refresh_token=new_refresh)

    async def logout(
        self,
        db: AsyncSession,
        refresh_token: Optional[str],
        client: ClientContext,
    ) -> None:
        """Revoke the cookie's session if any. Idempotent; never fails on a bad token."""
        if not refresh_token:
            return

        await self.sessions.revoke(db, refresh_token)

        claims = self.tokens.read_refresh_claims(refresh_token)
        user = await UserService.get_by_id(db, claims["user_id"]) if claims and claims.get("user_id") else None
        if user is None:
            logger.warning("Logout with an undecodable or orphaned refresh token")
            await AuditService.record(
                db, AuditAction.LOGOUT, AuditStatus.FAILURE,
                client=client, error_message="Refresh token could not be attributed to a user",
            )
            return

        await AuditService.record(
            db, AuditAction.LOGOUT, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client,
        )

    # ─────────────────────────────────────────────────────────────
    # Password reset
    # ─────────────────────────────────────────────────────────────

    async def forgot_password(
        self,
        db: AsyncSession,
        email: str,
        client: ClientContext,
        mailer: EmailService,
    ) -> str:
        """
        Start a password reset.

        Returns the same message whether or not the email is registered. The
        one exception: a delivery failure for a registered user raises
        EmailDeliveryError.
        """
        user = await UserService.get_by_email(db, email)
        if user is None:
            return FORGOT_PASSWORD_MESSAGE

        token = await self.codes.issue(db, CodePurpose.PASSWORD_RESET, user.id)
        await db.commit()

        if not await mailer.send_password_reset(user.email, token):
            await AuditService.record(
                db, AuditAction.PASSWORD_RESET, AuditStatus.FAILURE,
                user_id=user.id, email=user.email, client=client, include_device=False,
                error_message="Password reset email could not be sent",
            )
            raise EmailDeliveryError("Failed to send password reset email")

        await AuditService.record(
            db, AuditAction.PASSWORD_RESET, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client, include_device=False,
        )
        return FORGOT_PASSWORD_MESSAGE

    async def reset_password(
        self,
        db: AsyncSession,
        token: str,
        new_password: str,
        client: ClientContext,
        mailer: EmailService,
    ) -> None:
        """Set a new password and sign the user out everywhere."""
        record = await self.codes.find_valid(db, CodePurpose.PASSWORD_RESET, token)
        user = await UserService.get_by_id(db, record.subject) if record else None
        if user is None:
            await AuditService.record(
                db, AuditAction.PASSWORD_RESET, AuditStatus.FAILURE,
                client=client, include_device=False,
                error_message="Invalid or expired reset token",
            )
            raise InvalidOrExpiredCodeError("Invalid or expired reset token")

        await UserService.set_password(db, user, new_password)
        await self.codes.consume(db, record)
        revoked = await self.sessions.revoke_all_for_user(db, user.id)

        await AuditService.record(
            db, AuditAction.PASSWORD_RESET, AuditStatus.SUCCESS,
            user_id=user.id, email=user.email, client=client, include_device=False,
        )
        logger.info(f"Password reset completed for {_mask(user.email)}, {revoked} sessions revoked")

        if not await mailer.send_password_changed(user.email, user.full_name):
            logger.warning(f"Password change confirmation failed for {_mask(user.email)}")

    # ─────────────────────────────────────────────────────────────
    # Account views
    # ─────────────────────────────────────────────────────────────

    async def get_activity(self, db: AsyncSession, user: User, limit: int = 20) -> List[AuditLog]:
        return await AuditService.recent_for_user(db, user.id, limit=limit)

    async def list_sessions(self, db: AsyncSession, user: User) -> List[RefreshToken]:
        return await self.sessions.list_active(db, user.id)

    async def revoke_session(self, db: AsyncSession, user: User, session_id: str) -> None:
        await self.sessions.revoke_by_id(db, user.id, session_id)


_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get or create the auth service singleton."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService(
            get_auth_config(),
            get_token_issuer(),
            get_session_service(),
            get_code_service(),
        )
    return _auth_service
