"""
One-time code store.

Backs three flows with the same rules:
- OTP before OTP-based registration (6 digits, subject = email)
- Email verification after direct registration (uuid, subject = user id)
- Password reset (uuid, subject = user id)

Issuing a code deletes the subject's outstanding codes for that purpose, and
a successful use deletes the row, so a code can never be replayed.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.core.config import AuthConfig, get_auth_config
from healthvault.core.exceptions import InvalidOrExpiredCodeError
from healthvault.models.one_time_code import CodePurpose, OneTimeCode

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


class OneTimeCodeService:
    """Issue, look up and consume one-time codes."""

    def __init__(self, config: AuthConfig):
        self.config = config

    def ttl_for(self, purpose: CodePurpose) -> timedelta:
        if purpose == CodePurpose.OTP:
            return self.config.otp_ttl
        if purpose == CodePurpose.EMAIL_VERIFICATION:
            return self.config.verify_ttl
        return self.config.reset_ttl

    @staticmethod
    def generate_code(purpose: CodePurpose) -> str:
        """Six CSPRNG digits for OTPs, a uuid4 for link tokens."""
        if purpose == CodePurpose.OTP:
            return str(secrets.randbelow(900000) + 100000)
        return str(uuid.uuid4())

    # ─────────────────────────────────────────────────────────────
    # Issue
    # ─────────────────────────────────────────────────────────────

    async def issue(self, db: AsyncSession, purpose: CodePurpose, subject: str) -> str:
        """Invalidate the subject's outstanding codes and store a fresh one."""
        await self.invalidate(db, purpose, subject)

        now = datetime.now(timezone.utc)
        code = self.generate_code(purpose)
        db.add(
            OneTimeCode(
                purpose=purpose,
                subject=subject,
                code=code,
                created_at=now,
                expires_at=now + self.ttl_for(purpose),
            )
        )
        await db.flush()

        logger.info(f"Issued {purpose.value} code for subject {subject[:3]}***")
        return code

    async def invalidate(self, db: AsyncSession, purpose: CodePurpose, subject: str) -> int:
        result = await db.execute(
            delete(OneTimeCode)
            .where(OneTimeCode.purpose == purpose, OneTimeCode.subject == subject)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ─────────────────────────────────────────────────────────────
    # Lookup / Consume
    # ─────────────────────────────────────────────────────────────

    async def find_valid(
        self,
        db: AsyncSession,
        purpose: CodePurpose,
        code: str,
        subject: Optional[str] = None,
    ) -> Optional[OneTimeCode]:
        """Return the unexpired code row, or None for expired, consumed or unknown codes."""
        query = select(OneTimeCode).where(
            OneTimeCode.purpose == purpose,
            OneTimeCode.code == code,
            OneTimeCode.expires_at > datetime.now(timezone.utc),
        )
        if subject is not None:
            query = query.where(OneTimeCode.subject == subject)
        result = await db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def consume(self, db: AsyncSession, record: OneTimeCode) -> None:
        """Delete a code that was just accepted. Losing a concurrent use is a failure."""
        result = await db.execute(
            delete(OneTimeCode)
            .where(OneTimeCode.id == record.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidOrExpiredCodeError()

    # ─────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────

    async def sweep(self, db: AsyncSession) -> int:
        """Global cleanup of all expired codes. Call periodically."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            delete(OneTimeCode)
            .where(OneTimeCode.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} expired one-time codes")
        return count


_code_service: Optional[OneTimeCodeService] = None


def get_code_service() -> OneTimeCodeService:
    """Get or create the one-time code service singleton."""
    global _code_service
    if _code_service is None:
        _code_service = OneTimeCodeService(get_auth_config())
    return _code_service
