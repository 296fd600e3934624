"""
Email delivery for HealthVault.

Supports:
- SMTP (any provider)
- Console logging (development fallback when SMTP is not configured)

IMPORTANT: Never log OTP values, tokens or links that carry them.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from healthvault.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def _layout(heading: str, body_html: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2 style="color: #4F46E5;">{heading}</h2>
    {body_html}
    <hr style="border: none; border-top: 1px solid #e0e0e0; margin: 25px 0;">
    <p style="font-size: 12px; color: #999; text-align: center;">
        This is an automated message from HealthVault. Please do not reply to this email.
    </p>
</body>
</html>
"""


def _button(url: str, label: str) -> str:
    return f"""
    <div style="text-align: center; margin: 30px 0;">
        <a href="{url}" style="background-color: #4F46E5; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; display: inline-block;">{label}</a>
    </div>
    <p>Or copy and paste this link into your browser:</p>
    <p style="color: #6B7280; word-break: break-all;">{url}</p>
"""


class EmailService:
    """Email service with SMTP support."""

    def __init__(self):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from_email = settings.smtp_from_email
        self.smtp_from_name = settings.smtp_from_name
        self.smtp_use_tls = settings.smtp_use_tls
        self.frontend_origin = settings.frontend_origin.rstrip("/")

        self.is_configured = bool(
            self.smtp_host and
            self.smtp_port and
            self.smtp_user and
            self.smtp_password
        )

        if self.is_configured:
            logger.info(f"Email service configured with SMTP: {self.smtp_host}:{self.smtp_port}")
        else:
            logger.warning("Email service not configured - emails will be logged to console")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """
        Send an email asynchronously.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML content
            text_body: Plain text fallback (optional)

        Returns:
            True if sent successfully
        """
        if not self.is_configured:
            # Development fallback - log the envelope only, never the body
            logger.info(f"[EMAIL] To: {to_email}, Subject: {subject}")
            return True

        try:
            # Run SMTP send in thread pool to avoid blocking
            return await asyncio.to_thread(
                self._send_smtp,
                to_email,
                subject,
                html_body,
                text_body,
            )
        except Exception as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False

    def _send_smtp(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send email via SMTP (synchronous)."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.smtp_from_name} <{self.smtp_from_email}>"
        msg["To"] = to_email

        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    server.starttls(context=context)
                    server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.smtp_from_email, to_email, msg.as_string())
            else:
                # SSL connection (port 465)
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context) as server:
                    server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.smtp_from_email, to_email, msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed - check credentials")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error sending to {to_email}: {e}")
            return False
        except Exception as e:
            logger.error(f"Email send error: {e}")
            return False

    # ─────────────────────────────────────────────────────────────
    # Templates
    # ─────────────────────────────────────────────────────────────

    async def send_otp(self, to_email: str, otp: str, expiry_minutes: int = 5) -> bool:
        """Send the registration OTP (the code is in the email only, NOT logged)."""
        html_body = _layout(
            "HealthVault Authentication",
            f"""
    <p>Your One-Time Password (OTP) for registration is:</p>
    <div style="background-color: #F3F4F6; padding: 20px; text-align: center; border-radius: 8px; margin: 20px 0;">
        <h1 style="color: #4F46E5; font-size: 32px; margin: 0; letter-spacing: 5px;">{otp}</h1>
    </div>
    <p>This OTP will expire in <strong>{expiry_minutes} minutes</strong>.</p>
    <p style="color: #6B7280; font-size: 14px;">If you didn't request this OTP, please ignore this email.</p>
""",
        )
        text_body = (
            f"Your HealthVault registration code is {otp}.\n"
            f"It expires in {expiry_minutes} minutes."
        )
        logger.info(f"Sending OTP email to {to_email}")
        return await self.send_email(to_email, "Your OTP for HealthVault Registration", html_body, text_body)

    async def send_verification_email(self, to_email: str, token: str) -> bool:
        url = f"{self.frontend_origin}/verify-email?token={token}"
        html_body = _layout(
            "Verify Your Email",
            "<p>Thanks for registering with HealthVault. Please confirm your email address:</p>"
            + _button(url, "Verify Email")
            + "<p>This link will expire in <strong>24 hours</strong>.</p>",
        )
        text_body = f"Verify your HealthVault email address: {url}\nThis link expires in 24 hours."
        return await self.send_email(to_email, "Verify your HealthVault email", html_body, text_body)

    async def send_password_reset(self, to_email: str, token: str) -> bool:
        url = f"{self.frontend_origin}/reset-password?token={token}"
        html_body = _layout(
            "Password Reset Request",
            "<p>You requested to reset your password. Click the button below to reset it:</p>"
            + _button(url, "Reset Password")
            + "<p>This link will expire in <strong>1 hour</strong>.</p>"
            + '<p style="color: #6B7280; font-size: 14px;">If you didn\'t request this, please ignore this email.</p>',
        )
        text_body = f"Reset your HealthVault password: {url}\nThis link expires in 1 hour."
        return await self.send_email(to_email, "Password Reset Request", html_body, text_body)

    async def send_welcome(self, to_email: str, full_name: Optional[str]) -> bool:
        name = full_name or "there"
        html_body = _layout(
            "Welcome to HealthVault",
            f"<p>Hi {name},</p><p>Your account is ready. You can now sign in and manage your health records.</p>",
        )
        return await self.send_email(to_email, "Welcome to HealthVault", html_body, f"Hi {name}, your HealthVault account is ready.")

    async def send_password_changed(self, to_email: str, full_name: Optional[str]) -> bool:
        name = full_name or "there"
        html_body = _layout(
            "Password Changed",
            f"""
    <p>Hi {name},</p>
    <p>Your password has been successfully changed.</p>
    <p style="font-size: 14px; color: #666;">
        For your security, all your active sessions have been logged out. You'll need to sign in again on all your devices.
    </p>
    <p style="font-size: 14px; color: #e74c3c;">
        <strong>If you didn't make this change</strong>, please contact our support team immediately.
    </p>
""",
        )
        text_body = (
            f"Hi {name},\n\nYour HealthVault password has been changed and all sessions were signed out.\n"
            "If you didn't make this change, please contact support immediately."
        )
        return await self.send_email(to_email, "HealthVault - Password Changed", html_body, text_body)


# Singleton instance
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create the email service singleton."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
