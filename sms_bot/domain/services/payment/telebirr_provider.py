"""
TeleBirr merchant-initiated payments.

The passenger receives a USSD popup on their phone and approves the charge
with their TeleBirr password; the result arrives later on the callback
endpoint. Without credentials (or with DEMO_MODE) payments are simulated.
"""
import hashlib
import hmac
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

import httpx

from sms_bot.core.circuit_breaker import CircuitBreaker
from sms_bot.core.config import settings
from sms_bot.core.exceptions import TelebirrError, ServiceTimeoutError
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.domain.services.payment.base_provider import (
    BasePaymentProvider,
    PaymentInitiation,
    PaymentRequest,
    PaymentStatusResult,
)

logger = get_logger(__name__)

DEFAULT_SUBJECT = "i-Ticket Bus Booking"
REQUEST_TIMEOUT_SECONDS = 30.0


def generate_signature(params: dict[str, Any], app_key: str | None = None) -> str:
    """HMAC-SHA256 over the url-encoded, key-sorted params (signature and nulls excluded)"""
    items = sorted(
        (key, str(value))
        for key, value in params.items()
        if key != "signature" and value is not None
    )
    key = settings.TELEBIRR_APP_KEY if app_key is None else app_key
    return hmac.new(key.encode(), urlencode(items).encode(), hashlib.sha256).hexdigest()


def verify_signature(payload: dict[str, Any], app_key: str | None = None) -> bool:
    signature = payload.get("signature")
    if not signature or not isinstance(signature, str):
        logger.warning("TeleBirr callback without signature")
        return False
    expected = generate_signature(payload, app_key)
    return hmac.compare_digest(signature, expected)


def _isoformat_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TelebirrProvider(BasePaymentProvider):
    """TeleBirr push payments over HTTP"""

    def __init__(self, circuit_breaker: CircuitBreaker, demo_mode: bool | None = None) -> None:
        self._circuit_breaker = circuit_breaker
        self._api_url = settings.TELEBIRR_API_URL
        self._demo_mode = settings.telebirr_demo_mode if demo_mode is None else demo_mode

    @property
    def provider_name(self) -> str:
        return "telebirr"

    @property
    def demo_mode(self) -> bool:
        return self._demo_mode

    def _signed(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {**payload, "signature": generate_signature(payload)}

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.post(f"{self._api_url}/{endpoint}", json=self._signed(payload))
        except httpx.TimeoutException:
            raise ServiceTimeoutError("telebirr", REQUEST_TIMEOUT_SECONDS)
        except httpx.RequestError as exc:
            raise TelebirrError(
                message=f"network error: {str(exc)}",
                details={"endpoint": endpoint, "network_error": True},
            )

        if not response.is_success:
            raise TelebirrError.from_response(
                endpoint,
                response,
                message=f"API error ({response.status_code}): {response.text[:200]}",
            )

        try:
            return response.json()
        except ValueError:
            raise TelebirrError(
                message="invalid JSON response",
                details={"endpoint": endpoint, "response_text": response.text[:500]},
            )

    async def initiate_payment(self, request: PaymentRequest) -> PaymentInitiation:
        phone_masked = PhoneNumberValidator.mask(request.phone)

        if self._demo_mode:
            transaction_id = f"DEMO-TXN-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
            logger.info(
                "TeleBirr demo payment initiated",
                extra_data={
                    "phone": phone_masked,
                    "amount": str(request.amount),
                    "reference": request.reference,
                    "transaction_id": transaction_id,
                }
            )
            return PaymentInitiation(transaction_id=transaction_id)

        payload = {
            "appId": settings.TELEBIRR_APP_ID,
            "nonce": secrets.token_hex(16),
            "timestamp": _isoformat_now(),
            "amount": f"{Decimal(request.amount):.2f}",
            "phone": PhoneNumberValidator.normalize(request.phone),
            "outTradeNo": request.reference,
            "notifyUrl": settings.TELEBIRR_NOTIFY_URL,
            "subject": request.description or DEFAULT_SUBJECT,
            "merchantCode": settings.TELEBIRR_MERCHANT_CODE,
        }

        data = await self._circuit_breaker.execute(self._post, "payment/request", payload)

        if str(data.get("code")) != "0":
            raise TelebirrError(
                message=str(data.get("msg") or "payment request refused"),
                details={"code": data.get("code"), "reference": request.reference},
            )

        transaction_id = (data.get("data") or {}).get("transactionId")
        if not transaction_id:
            raise TelebirrError(
                message="response missing transaction ID",
                details={"reference": request.reference},
            )

        logger.info(
            "TeleBirr payment initiated",
            extra_data={
                "phone": phone_masked,
                "amount": payload["amount"],
                "reference": request.reference,
                "transaction_id": transaction_id,
            }
        )
        return PaymentInitiation(transaction_id=str(transaction_id))

    async def check_status(self, transaction_id: str) -> PaymentStatusResult:
        if self._demo_mode:
            logger.info("TeleBirr demo status check", extra_data={"transaction_id": transaction_id})
            return PaymentStatusResult(status="SUCCESS")

        payload = {
            "appId": settings.TELEBIRR_APP_ID,
            "nonce": secrets.token_hex(16),
            "timestamp": _isoformat_now(),
            "transactionId": transaction_id,
        }
        data = await self._circuit_breaker.execute(self._post, "payment/status", payload)
        body = data.get("data") or {}

        amount = None
        if body.get("amount") is not None:
            try:
                amount = Decimal(str(body["amount"]))
            except InvalidOperation:
                amount = None
        return PaymentStatusResult(status=str(body.get("status") or "PENDING"), amount=amount)

    def verify_callback_signature(self, payload: dict[str, Any]) -> bool:
        return verify_signature(payload)
