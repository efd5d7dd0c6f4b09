"""
Signature check for inbound SMS gateway webhooks.

The gateway signs the raw request body with HMAC-SHA256 using the shared
SMS_WEBHOOK_SECRET and sends the hex digest in ``X-Sms-Signature``.

Usage:
    @router.post("/incoming")
    async def incoming_sms(
        ...,
        _: None = Depends(verify_sms_webhook_signature),
    ):
        ...
"""
from fastapi import Header, HTTPException, Request, status

from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger
from sms_bot.domain.services.sms_gateway import verify_webhook_signature

logger = get_logger(__name__)


async def verify_sms_webhook_signature(
    request: Request,
    x_sms_signature: str | None = Header(None),
) -> None:
    """
    - SMS_WEBHOOK_SECRET unset: skipped (warned about at startup).
    - Header missing or not matching: 403 Forbidden.
    """
    if not settings.SMS_WEBHOOK_SECRET:
        return

    if not x_sms_signature:
        logger.warning("SMS webhook request without X-Sms-Signature header")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing webhook signature",
        )

    body = await request.body()
    if not verify_webhook_signature(body, x_sms_signature):
        logger.warning("SMS webhook request with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook signature",
        )
