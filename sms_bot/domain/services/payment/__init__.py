"""
Payment providers
"""
import threading

from sms_bot.core.circuit_breaker import get_telebirr_circuit_breaker
from sms_bot.core.logging import get_logger
from sms_bot.domain.services.payment.base_provider import (
    BasePaymentProvider,
    PaymentInitiation,
    PaymentRequest,
    PaymentStatusResult,
)

logger = get_logger(__name__)

_provider: BasePaymentProvider | None = None
_lock = threading.Lock()


def get_payment_provider() -> BasePaymentProvider:
    """Shared TeleBirr provider"""
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                from sms_bot.domain.services.payment.telebirr_provider import TelebirrProvider

                _provider = TelebirrProvider(circuit_breaker=get_telebirr_circuit_breaker())
                logger.info(
                    "Payment provider initialized",
                    extra_data={"provider": _provider.provider_name},
                )
    return _provider


def reset_payment_provider() -> None:
    """Drop the shared provider (tests, settings reload)"""
    global _provider
    with _lock:
        _provider = None


__all__ = [
    "BasePaymentProvider",
    "PaymentInitiation",
    "PaymentRequest",
    "PaymentStatusResult",
    "get_payment_provider",
    "reset_payment_provider",
]
