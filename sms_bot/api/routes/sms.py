"""
SMS Admin Endpoints - manual sends and traffic statistics.

All endpoints require the X-Admin-API-Key header.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.api.dependencies.admin_auth import require_admin_api_key
from sms_bot.core.circuit_breaker import downstream_status
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.db.database import get_db
from sms_bot.db.models.sms_message_log import MessageDirection
from sms_bot.domain.services.message_log import MessageLogService
from sms_bot.domain.services.sms_gateway import get_sms_gateway
from sms_bot.state_machine.session_store import SessionStore

logger = get_logger(__name__)

router = APIRouter()


class OutgoingSmsRequest(BaseModel):
    to: str
    message: str = Field(min_length=1, max_length=1600)


class OutgoingSmsResponse(BaseModel):
    success: bool
    to: str
    sentAt: str


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    retry_after_seconds: float


@router.post(
    "/outgoing",
    response_model=OutgoingSmsResponse,
    summary="Send an SMS",
    responses={
        400: {"description": "Invalid phone number"},
        401: {"description": "Missing API key"},
        403: {"description": "Wrong API key"},
        502: {"description": "Gateway refused the message after retries"},
    },
)
async def send_outgoing_sms(
    request: OutgoingSmsRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
) -> OutgoingSmsResponse:
    phone = PhoneNumberValidator.normalize(request.to)
    if not PhoneNumberValidator.validate(phone):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid phone number format",
        )

    sent = await get_sms_gateway().send_with_retry(phone, request.message)
    await MessageLogService(db).record(
        MessageDirection.OUTBOUND,
        phone,
        request.message,
        success=sent,
        error=None if sent else "retries exhausted",
    )

    if not sent:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send SMS",
        )

    logger.info(
        "Manual SMS sent",
        extra_data={"to": PhoneNumberValidator.mask(phone), "length": len(request.message)}
    )
    return OutgoingSmsResponse(
        success=True,
        to=phone,
        sentAt=datetime.now(timezone.utc).isoformat(),
    )


@router.get(
    "/stats",
    summary="Session and traffic statistics",
)
async def sms_stats(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
) -> dict:
    return {
        "sessions": await SessionStore(db).stats(),
        "last24Hours": await MessageLogService(db).counts_last_24_hours(),
    }


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Downstream circuit breaker status",
)
async def circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    return [
        CircuitBreakerStatusResponse(
            service=breaker.service,
            state=breaker.state.value,
            failure_count=breaker.failure_count,
            retry_after_seconds=breaker.retry_after_seconds,
        )
        for breaker in downstream_status()
    ]
