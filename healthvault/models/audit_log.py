"""Append-only audit log of security-relevant events."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from healthvault.db.session import Base


class AuditAction(str, Enum):
    """Types of audited events."""
    LOGIN = "login"
    LOGOUT = "logout"
    REGISTER = "register"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFY = "email_verify"
    FAILED_LOGIN = "failed_login"
    TOKEN_REFRESH = "token_refresh"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_user_time", "user_id", "timestamp"),
        Index("ix_audit_logs_email_time", "email", "timestamp"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    # Soft reference: entries outlive the user they describe
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, values_callable=lambda e: [m.value for m in e])
    )
    status: Mapped[AuditStatus] = mapped_column(
        SQLEnum(AuditStatus, values_callable=lambda e: [m.value for m in e]),
        default=AuditStatus.SUCCESS,
    )

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    device_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, status={self.status})>"
