"""One-time code model shared by OTP, email verification and password reset."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Enum as SQLEnum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from healthvault.db.session import Base


class CodePurpose(str, Enum):
    """What a one-time code proves."""
    OTP = "otp"  # subject is an email, no account exists yet
    EMAIL_VERIFICATION = "email_verification"  # subject is a user id
    PASSWORD_RESET = "password_reset"  # subject is a user id


class OneTimeCode(Base):
    """
    Short-lived, single-use code.

    - Expiry is fixed at issue time from the purpose's TTL
    - A successful use deletes the row
    - Issuing a new code deletes the subject's outstanding codes first
    """

    __tablename__ = "one_time_codes"
    __table_args__ = (
        UniqueConstraint("purpose", "subject", "code", name="uq_one_time_code"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    purpose: Mapped[CodePurpose] = mapped_column(
        SQLEnum(CodePurpose, values_callable=lambda e: [m.value for m in e]),
        index=True,
    )
    subject: Mapped[str] = mapped_column(String(255), index=True)
    code: Mapped[str] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<OneTimeCode(id={self.id}, purpose={self.purpose.value})>"
