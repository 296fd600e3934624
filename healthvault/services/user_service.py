"""Credential store: user lookup, creation and password hashing."""

import logging
from datetime import datetime, timezone
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.core.config import get_auth_config
from healthvault.core.exceptions import DuplicateUserError
from healthvault.models.user import User, UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_auth_config().bcrypt_rounds,
)

# Precomputed fake hash to mitigate timing attacks
FAKE_HASHED_PASSWORD = pwd_context.hash(
    "this_is_a_fake_user_that_never_exists_2025"
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """User persistence. Passwords only ever leave here as bcrypt hashes."""

    # ─── Password ────────────────────────────────
    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain: str, hashed: Optional[str]) -> bool:
        """Check a password; an unknown user is checked against a fake hash."""
        if hashed is None:
            pwd_context.verify(plain, FAKE_HASHED_PASSWORD)
            return False
        return pwd_context.verify(plain, hashed)

    # ─── User Lookup ─────────────────────────────
    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    # ─── Creation ────────────────────────────────
    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password: str,
        full_name: Optional[str],
        role: UserRole = UserRole.PATIENT,
        email_verified: bool = False,
    ) -> User:
        """
        Insert a user.

        The unique index on email is the real guard against duplicates: two
        concurrent registrations can both pass an existence check, and the
        loser surfaces here as DuplicateUserError.
        """
        user = User(
            email=normalize_email(email),
            hashed_password=UserService.hash_password(password),
            full_name=full_name,
            role=role,
            email_verified=email_verified,
            is_active=True,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Duplicate registration rejected for {user.email[:3]}***")
            raise DuplicateUserError()
        return user

    # ─── Mutations ───────────────────────────────
    @staticmethod
    async def set_password(db: AsyncSession, user: User, new_password: str) -> None:
        user.hashed_password = UserService.hash_password(new_password)
        user.updated_at = datetime.now(timezone.utc)
        await db.flush()

    @staticmethod
    async def mark_verified(db: AsyncSession, user: User) -> None:
        user.email_verified = True
        user.updated_at = datetime.now(timezone.utc)
        await db.flush()
