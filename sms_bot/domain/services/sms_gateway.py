"""
SMS Gateway - outbound messages through the operator's HTTP gateway.

Messages go out from the shortcode. Without a gateway URL and API key the
gateway runs in demo mode and only logs what it would send.
"""
import asyncio
import hashlib
import hmac
import threading

import httpx

from sms_bot.core.circuit_breaker import CircuitBreaker, get_sms_gateway_circuit_breaker
from sms_bot.core.config import settings
from sms_bot.core.exceptions import SmsGatewayError
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator

logger = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0
SEGMENT_DELAY_SECONDS = 0.5


def split_message(message: str, max_length: int | None = None) -> list[str]:
    """
    Split a reply into SMS-sized segments.

    Lines are kept whole where possible; a single line longer than a
    segment is cut into fixed-size pieces.
    """
    max_length = max_length or settings.SMS_MAX_LENGTH
    if len(message) <= max_length:
        return [message]

    chunks: list[str] = []
    current = ""
    for line in message.split("\n"):
        if len(current) + len(line) + 1 <= max_length:
            current = f"{current}\n{line}" if current else line
            continue

        if current:
            chunks.append(current)

        if len(line) > max_length:
            chunks.extend(line[i:i + max_length] for i in range(0, len(line), max_length))
            current = ""
        else:
            current = line

    if current:
        chunks.append(current)
    return chunks


class SmsGateway:
    """HTTP client for the SMS gateway"""

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        demo_mode: bool | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker or get_sms_gateway_circuit_breaker()
        self._url = settings.SMS_GATEWAY_URL
        self._api_key = settings.SMS_GATEWAY_API_KEY
        self._shortcode = settings.SMS_GATEWAY_SHORTCODE
        self._demo_mode = settings.sms_gateway_demo_mode if demo_mode is None else demo_mode

        if self._demo_mode:
            logger.warning("SMS gateway not configured, outbound SMS will only be logged")

    @property
    def demo_mode(self) -> bool:
        return self._demo_mode

    async def _post(self, to: str, message: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    self._url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={"to": to, "from": self._shortcode, "message": message},
                )
        except httpx.TimeoutException:
            raise SmsGatewayError(
                message=f"send timed out after {REQUEST_TIMEOUT_SECONDS}s",
                details={"timeout": True},
            )
        except httpx.RequestError as exc:
            raise SmsGatewayError(
                message=f"network error: {str(exc)}",
                details={"network_error": True},
            )

        if not response.is_success:
            raise SmsGatewayError.from_response(
                "send",
                response,
                message=f"send failed ({response.status_code}): {response.text[:200]}",
            )

    async def send(self, to: str, message: str) -> None:
        """Send one SMS. Raises SmsGatewayError on failure."""
        phone_masked = PhoneNumberValidator.mask(to)

        if self._demo_mode:
            logger.info(
                "SMS demo send",
                extra_data={"to": phone_masked, "length": len(message), "preview": message[:50]}
            )
            return

        await self._circuit_breaker.execute(self._post, to, message)
        logger.info("SMS sent", extra_data={"to": phone_masked, "length": len(message)})

    async def send_with_retry(self, to: str, message: str, max_retries: int | None = None) -> bool:
        """Send with exponential backoff; returns False once all attempts failed"""
        max_retries = max_retries or settings.SMS_MAX_RETRIES
        phone_masked = PhoneNumberValidator.mask(to)

        for attempt in range(max_retries):
            try:
                await self.send(to, message)
                return True
            except Exception as exc:
                logger.warning(
                    "SMS send attempt failed",
                    extra_data={
                        "to": phone_masked,
                        "attempt": attempt + 1,
                        "max_retries": max_retries,
                        "error": str(exc),
                    }
                )
                if attempt < max_retries - 1:
                    await asyncio.sleep(2 ** attempt)

        logger.error(
            "SMS send failed after retries",
            extra_data={"to": phone_masked, "attempts": max_retries}
        )
        return False

    async def send_long(self, to: str, message: str) -> None:
        """Send a reply as consecutive segments"""
        chunks = split_message(message)
        for index, chunk in enumerate(chunks):
            await self.send(to, chunk)
            if index < len(chunks) - 1:
                await asyncio.sleep(SEGMENT_DELAY_SECONDS)

    async def send_long_with_retry(self, to: str, message: str) -> bool:
        """Segmented send where every segment gets its own retries"""
        chunks = split_message(message)
        for index, chunk in enumerate(chunks):
            if not await self.send_with_retry(to, chunk):
                return False
            if index < len(chunks) - 1:
                await asyncio.sleep(SEGMENT_DELAY_SECONDS)
        return True


def compute_webhook_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    """
    HMAC-SHA256 of the raw request body, hex encoded.

    Without a configured secret verification is skipped (a startup warning
    is logged in production).
    """
    secret = settings.SMS_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(signature, compute_webhook_signature(body, secret))


_gateway: SmsGateway | None = None
_lock = threading.Lock()


def get_sms_gateway() -> SmsGateway:
    global _gateway
    if _gateway is None:
        with _lock:
            if _gateway is None:
                _gateway = SmsGateway()
    return _gateway


def reset_sms_gateway() -> None:
    global _gateway
    with _lock:
        _gateway = None
