"""
Inbound SMS Webhook - Gateway entry point

The SMS gateway posts every message sent to the shortcode here. The reply is
computed synchronously and delivered through the gateway in the background.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.api.dependencies.webhook_auth import verify_sms_webhook_signature
from sms_bot.core.logging import get_logger
from sms_bot.core.rate_limit import PhoneRateLimiter, RateLimitResult
from sms_bot.core.redis_client import get_redis
from sms_bot.core.validation import PhoneNumberValidator, TextSanitizer
from sms_bot.db.database import AsyncSessionLocal, get_db
from sms_bot.db.models.sms_message_log import MessageDirection
from sms_bot.domain.services.message_log import MessageLogService
from sms_bot.domain.services.sms_gateway import get_sms_gateway
from sms_bot.state_machine.bot import SmsBot
from sms_bot.state_machine.messages import MessageKey, detect_language, get_message

logger = get_logger(__name__)

router = APIRouter()


class InboundSms(BaseModel):
    """Gateway payload: {"from", "to", "message", "timestamp", "messageId"}"""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    to: str | None = None
    message: str = ""
    timestamp: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")


async def get_rate_limiter() -> PhoneRateLimiter | None:
    """Rate limiter on the shared Redis; None when Redis is unreachable"""
    try:
        return PhoneRateLimiter(await get_redis())
    except Exception as e:
        logger.error(
            "Redis unavailable, inbound SMS not rate limited",
            extra_data={"error": str(e)}
        )
        return None


async def _check_rate_limit(rate_limiter: PhoneRateLimiter | None, phone: str) -> RateLimitResult | None:
    """Count the message; None (unthrottled) when Redis fails mid-request"""
    if rate_limiter is None:
        return None
    try:
        return await rate_limiter.hit(phone)
    except RedisError as e:
        logger.error(
            "Redis unavailable, inbound SMS not rate limited",
            extra_data={"phone": PhoneNumberValidator.mask(phone), "error": str(e)}
        )
        return None


async def get_sms_bot(db: AsyncSession = Depends(get_db)) -> SmsBot:
    return SmsBot.from_db(db)


async def deliver_sms(phone: str, text: str) -> None:
    """Send a reply (segmented, with retries) and log the outcome"""
    gateway = get_sms_gateway()
    error = None
    try:
        delivered = await gateway.send_long_with_retry(phone, text)
    except Exception as e:
        delivered = False
        error = str(e)
        logger.error(
            "SMS delivery failed",
            extra_data={"to": PhoneNumberValidator.mask(phone), "error": error},
            exc_info=True
        )

    async with AsyncSessionLocal() as db:
        await MessageLogService(db).record(
            MessageDirection.OUTBOUND,
            phone,
            text,
            success=delivered,
            error=error if error else (None if delivered else "retries exhausted"),
        )


@router.post(
    "/incoming",
    summary="Webhook - inbound SMS",
    description="Receives messages sent to the shortcode and answers them by SMS.",
)
async def incoming_sms(
    payload: InboundSms,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    bot: SmsBot = Depends(get_sms_bot),
    rate_limiter: PhoneRateLimiter | None = Depends(get_rate_limiter),
    _: None = Depends(verify_sms_webhook_signature),
):
    phone = PhoneNumberValidator.normalize(payload.sender)
    if not PhoneNumberValidator.validate(phone):
        logger.warning(
            "Inbound SMS with invalid phone number",
            extra_data={"phone": PhoneNumberValidator.mask(payload.sender)}
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid phone number format",
        )

    limit = await _check_rate_limit(rate_limiter, phone)
    if limit is not None and not limit.allowed:
        # Returned rather than raised so the queued reply still goes out
        background_tasks.add_task(
            deliver_sms,
            phone,
            get_message(MessageKey.RATE_LIMITED, detect_language(payload.message)),
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Rate limit exceeded"},
            headers={"Retry-After": str(limit.retry_after_seconds)},
            background=background_tasks,
        )

    message = TextSanitizer.sanitize_sms(payload.message)
    if not message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty message",
        )

    await MessageLogService(db).record(MessageDirection.INBOUND, phone, message)
    logger.info(
        "Inbound SMS received",
        extra_data={
            "phone": PhoneNumberValidator.mask(phone),
            "message_id": payload.message_id,
            "length": len(message),
        }
    )

    reply = await bot.process_message(phone, message)
    background_tasks.add_task(deliver_sms, phone, reply)

    return {"success": True, "messageId": payload.message_id}


@router.get(
    "/incoming",
    summary="Inbound SMS webhook health",
)
async def incoming_sms_health() -> dict[str, str]:
    return {
        "status": "OK",
        "service": "i-Ticket SMS Webhook",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
