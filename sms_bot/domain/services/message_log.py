"""
SMS traffic log used for the admin stats endpoint
"""
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.clock import utcnow
from sms_bot.core.logging import get_logger
from sms_bot.db.models.sms_message_log import MessageDirection, SmsMessageLog

logger = get_logger(__name__)

MAX_LOGGED_BODY = 1600
MAX_LOGGED_ERROR = 500


class MessageLogService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        direction: MessageDirection,
        phone: str,
        body: str,
        success: bool = True,
        error: str | None = None,
    ) -> SmsMessageLog:
        entry = SmsMessageLog(
            direction=direction,
            phone=phone,
            body=(body or "")[:MAX_LOGGED_BODY],
            success=success,
            error=error[:MAX_LOGGED_ERROR] if error else None,
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return entry

    async def counts_last_24_hours(self) -> dict[str, int]:
        since = utcnow() - timedelta(hours=24)
        result = await self.db.execute(
            select(SmsMessageLog.direction, SmsMessageLog.success, func.count(SmsMessageLog.id))
            .where(SmsMessageLog.created_at >= since)
            .group_by(SmsMessageLog.direction, SmsMessageLog.success)
        )

        counts = {"received": 0, "sent": 0, "failed": 0}
        for direction, success, count in result.all():
            if direction == MessageDirection.INBOUND:
                counts["received"] += count
            elif success:
                counts["sent"] += count
            else:
                counts["failed"] += count
        return counts
