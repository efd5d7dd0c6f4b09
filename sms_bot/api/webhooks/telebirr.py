"""
TeleBirr Payment Callback

TeleBirr posts the result once the passenger approves (or declines) the USSD
popup. Outside demo mode the callback must carry a valid signature, a fresh
timestamp and, when TELEBIRR_WEBHOOK_IPS is set, come from a listed address.
"""
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.api.webhooks.sms import deliver_sms
from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger
from sms_bot.db.database import get_db
from sms_bot.domain.services.payment.telebirr_provider import verify_signature
from sms_bot.domain.services.payment_settlement import PaymentSettlementService, SettlementOutcome

logger = get_logger(__name__)

router = APIRouter()

SUCCESS_STATUS = "SUCCESS"


def _allowed_ips() -> set[str]:
    return {ip.strip() for ip in settings.TELEBIRR_WEBHOOK_IPS.split(",") if ip.strip()}


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


def _timestamp_is_fresh(value: Any) -> bool:
    if not value:
        return False
    try:
        sent_at = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return False
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    skew = abs((datetime.now(timezone.utc) - sent_at).total_seconds())
    return skew <= settings.PAYMENT_CALLBACK_MAX_SKEW_SECONDS


def verify_callback(request: Request, payload: dict[str, Any]) -> None:
    """Signature, replay window and source address checks"""
    if not verify_signature(payload):
        logger.warning(
            "TeleBirr callback with invalid signature",
            extra_data={"transaction_id": payload.get("transactionId")}
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    timestamp = payload.get("timestamp")
    if not _timestamp_is_fresh(timestamp):
        logger.warning(
            "TeleBirr callback without a fresh timestamp",
            extra_data={"transaction_id": payload.get("transactionId"), "timestamp": str(timestamp)}
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Request expired")

    allowed = _allowed_ips()
    if allowed:
        client_ip = _client_ip(request)
        if client_ip not in allowed:
            logger.warning("TeleBirr callback from unlisted IP", extra_data={"client_ip": client_ip})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized IP address")


@router.post(
    "/callback",
    summary="Webhook - TeleBirr payment result",
)
async def telebirr_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    transaction_id = payload.get("transactionId")
    payment_status = str(payload.get("status") or "").upper()
    logger.info(
        "TeleBirr callback received",
        extra_data={"transaction_id": transaction_id, "status": payment_status}
    )

    if not settings.telebirr_demo_mode:
        verify_callback(request, payload)

    if not transaction_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing transactionId")

    # PaymentNotFoundError is rendered as 404 by the app exception handler
    result = await PaymentSettlementService(db).settle(
        str(transaction_id), success=payment_status == SUCCESS_STATUS
    )

    if result.outcome == SettlementOutcome.ALREADY_PROCESSED:
        return {"success": True, "message": "Already processed"}

    if result.notification:
        background_tasks.add_task(deliver_sms, result.notification.phone, result.notification.text)

    return {
        "success": True,
        "bookingId": result.booking_id,
        "status": result.outcome.value,
        "tickets": [ticket.short_code for ticket in result.tickets],
    }


@router.get(
    "/callback",
    summary="TeleBirr callback health",
)
async def telebirr_callback_health() -> dict[str, str]:
    return {
        "status": "OK",
        "service": "TeleBirr Payment Callback",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
