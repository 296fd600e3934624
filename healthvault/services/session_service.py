"""Refresh-token session store: issue, validate, rotate, revoke, sweep."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.core.config import AuthConfig, get_auth_config
from healthvault.core.exceptions import InvalidTokenError, NotFoundError
from healthvault.core.security import TokenIssuer, get_token_issuer
from healthvault.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)


class SessionService:
    """
    Lifecycle of persisted refresh tokens.

    A session is valid iff it is not revoked and expires_at is in the
    future. Validity is always computed from those two columns, never from
    row presence, so the sweep is housekeeping only.
    """

    def __init__(self, config: AuthConfig, tokens: TokenIssuer):
        self.config = config
        self.tokens = tokens

    # ─────────────────────────────────────────────────────────────
    # Issue
    # ─────────────────────────────────────────────────────────────

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        token: str,
        expires_at: datetime,
        device_info: Optional[str] = None,
    ) -> RefreshToken:
        session = RefreshToken(
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            revoked=False,
            device_info=device_info,
            last_used_at=datetime.now(timezone.utc),
        )
        db.add(session)
        await db.flush()
        return session

    async def start(
        self,
        db: AsyncSession,
        user_id: str,
        device_info: Optional[str] = None,
    ) -> str:
        """Mint a refresh token for the user and persist its session row."""
        token = self.tokens.issue_refresh_token(user_id)
        payload = self.tokens.verify_refresh_token(token)
        await self.create(db, user_id, token, self.tokens.expiry_of(payload), device_info)
        return token

    # ─────────────────────────────────────────────────────────────
    # Validate / Rotate
    # ─────────────────────────────────────────────────────────────

    async def validate(self, db: AsyncSession, token: str) -> bool:
        """Touch last_used_at on a live session. False if revoked, expired or unknown."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token == token,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .values(last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def rotate(
        self,
        db: AsyncSession,
        old_token: str,
        user_id: str,
        device_info: Optional[str] = None,
    ) -> str:
        """
        Revoke old_token and issue its replacement.

        The revoke is a conditional update on a live row, so of two
        concurrent rotations of the same token exactly one succeeds and the
        other (and any later replay) raises InvalidTokenError.
        """
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token == old_token,
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .values(revoked=True, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTokenError("Refresh token has been revoked")

        return await self.start(db, user_id, device_info)

    # ─────────────────────────────────────────────────────────────
    # Revoke
    # ─────────────────────────────────────────────────────────────

    async def revoke(self, db: AsyncSession, token: str) -> bool:
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.token == token, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def revoke_all_for_user(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_by_id(self, db: AsyncSession, user_id: str, session_id: str) -> None:
        """Revoke one of the caller's own live sessions."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == session_id,
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Session")

    # ─────────────────────────────────────────────────────────────
    # Listing / Maintenance
    # ─────────────────────────────────────────────────────────────

    async def list_active(self, db: AsyncSession, user_id: str) -> List[RefreshToken]:
        now = datetime.now(timezone.utc)
        result = await db.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.last_used_at.desc())
        )
        return list(result.scalars().all())

    async def sweep(self, db: AsyncSession) -> int:
        """Delete expired sessions and revoked ones older than the retention period."""
        now = datetime.now(timezone.utc)
        cutoff = now - self.config.revoked_retention
        result = await db.execute(
            delete(RefreshToken).where(
                or_(
                    RefreshToken.expires_at < now,
                    (RefreshToken.revoked == True) & (RefreshToken.created_at < cutoff),  # noqa: E712
                )
            ).execution_options(synchronize_session=False)
        )
        count = result.rowcount
        if count > 0:
            logger.info(f"Cleaned up {count} expired/revoked sessions")
        return count


_session_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    """Get or create the session service singleton."""
    global _session_service
    if _session_service is None:
        _session_service = SessionService(get_auth_config(), get_token_issuer())
    return _session_service
