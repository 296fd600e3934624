"""Audit log service for security-relevant auth events."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthvault.models.audit_log import AuditAction, AuditLog, AuditStatus
from healthvault.utils.device import ClientContext

logger = logging.getLogger(__name__)


class AuditService:
    """Persist immutable audit trail entries."""

    @staticmethod
    async def record(
        db: AsyncSession,
        action: AuditAction,
        status: AuditStatus = AuditStatus.SUCCESS,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        client: Optional[ClientContext] = None,
        error_message: Optional[str] = None,
        include_device: bool = True,
    ) -> AuditLog:
        """
        Append one entry and commit.

        Committing here means a rejection is on record even though the
        request that produced it ends with an error and a rollback.
        """
        entry = AuditLog(
            user_id=user_id,
            email=email,
            action=action,
            status=status,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            device_info=client.device_info if client and include_device else None,
            error_message=error_message,
        )
        db.add(entry)
        await db.commit()

        if status == AuditStatus.FAILURE:
            logger.info(f"Audit {action.value}/failure for {(email or user_id or '?')[:3]}***: {error_message}")
        return entry

    @staticmethod
    async def count_recent_failed_logins(
        db: AsyncSession,
        email: str,
        minutes: int = 15,
    ) -> int:
        threshold = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        result = await db.execute(
            select(func.count(AuditLog.id)).where(
                AuditLog.email == email,
                AuditLog.action == AuditAction.FAILED_LOGIN,
                AuditLog.timestamp >= threshold,
            )
        )
        return result.scalar() or 0

    @staticmethod
    async def recent_for_user(
        db: AsyncSession,
        user_id: str,
        limit: int = 20,
    ) -> List[AuditLog]:
        result = await db.execute(
            select(AuditLog)
            .where(AuditLog.user_id == user_id)
            .order_by(AuditLog.timestamp.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
