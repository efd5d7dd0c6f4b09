"""
Celery Tasks - periodic maintenance and outbound SMS

- cleanup_expired_sessions: sweep sessions past their expiry
- expire_pending_payments: cancel bookings whose payment never arrived
- send_sms: deliver one message through the gateway with retries
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sms_bot.workers.celery_app import celery_app
from sms_bot.db.database import get_task_session
from sms_bot.db.models.sms_message_log import MessageDirection
from sms_bot.domain.services.message_log import MessageLogService
from sms_bot.domain.services.payment_settlement import PaymentSettlementService
from sms_bot.domain.services.sms_gateway import get_sms_gateway
from sms_bot.state_machine.session_store import SessionStore
from sms_bot.core.logging import get_logger, set_correlation_id
from sms_bot.core.validation import PhoneNumberValidator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Fresh event loop per task, torn down completely afterwards so nothing
    bound to it (Redis client, pending tasks) leaks into the next run.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            from sms_bot.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _send_and_log(db: AsyncSession, phone: str, text: str) -> bool:
    gateway = get_sms_gateway()
    error = None
    try:
        sent = await gateway.send_long_with_retry(phone, text)
    except Exception as exc:
        sent = False
        error = str(exc)
        logger.error(
            "SMS send error",
            extra_data={"phone": PhoneNumberValidator.mask(phone), "error": error},
            exc_info=True,
        )

    await MessageLogService(db).record(
        MessageDirection.OUTBOUND,
        phone,
        text,
        success=sent,
        error=error if error else (None if sent else "retries exhausted"),
    )
    return sent


async def _cleanup_expired_sessions(db: AsyncSession) -> dict:
    removed = await SessionStore(db).cleanup_expired()
    return {"removed": removed}


async def _expire_pending_payments(db: AsyncSession) -> dict:
    expired = await PaymentSettlementService(db).expire_pending()

    notified = 0
    for result in expired:
        if result.notification and await _send_and_log(
            db, result.notification.phone, result.notification.text
        ):
            notified += 1

    return {
        "expired": len(expired),
        "notified": notified,
        "bookings": [result.booking_id for result in expired],
    }


@celery_app.task(name="sms_bot.workers.tasks.cleanup_expired_sessions")
def cleanup_expired_sessions():
    """Delete SMS sessions past their expiry"""

    async def _cleanup():
        async with get_task_session() as db:
            return await _cleanup_expired_sessions(db)

    return run_async(_cleanup())


@celery_app.task(name="sms_bot.workers.tasks.expire_pending_payments")
def expire_pending_payments():
    """Cancel bookings whose TeleBirr payment timed out and tell the passenger"""

    async def _expire():
        async with get_task_session() as db:
            return await _expire_pending_payments(db)

    return run_async(_expire())


@celery_app.task(
    name="sms_bot.workers.tasks.send_sms",
    bind=True,
    max_retries=3,
)
def send_sms(self, phone: str, text: str):
    """Send an SMS; re-queued with backoff when the gateway keeps failing"""

    async def _send():
        async with get_task_session() as db:
            return await _send_and_log(db, phone, text)

    sent = run_async(_send())
    if not sent:
        logger.warning(
            "SMS task failed, scheduling retry",
            extra_data={
                "phone": PhoneNumberValidator.mask(phone),
                "retry": self.request.retries,
            }
        )
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return {"success": True}
