"""
Payment provider interface.

The booking flow depends only on this interface; TeleBirr (or a fake in
tests) implements it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class PaymentRequest:
    phone: str
    amount: Decimal
    reference: str  # booking id
    description: str | None = None


@dataclass(frozen=True)
class PaymentInitiation:
    transaction_id: str


@dataclass(frozen=True)
class PaymentStatusResult:
    status: str  # PENDING / SUCCESS / FAILED as reported by the provider
    amount: Decimal | None = None


class BasePaymentProvider(ABC):
    """Push-payment provider: the passenger approves the charge on their phone"""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider name for logs"""

    @abstractmethod
    async def initiate_payment(self, request: PaymentRequest) -> PaymentInitiation:
        """
        Ask the provider to charge the passenger's phone.

        Raises:
            TelebirrError (or another DownstreamError) when the
            provider refuses or cannot be reached.
        """

    @abstractmethod
    async def check_status(self, transaction_id: str) -> PaymentStatusResult:
        """Poll the provider for the state of a transaction"""

    @abstractmethod
    def verify_callback_signature(self, payload: dict[str, Any]) -> bool:
        """Check the signature on a provider callback"""
