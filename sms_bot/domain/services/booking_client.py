"""
Booking API client.

Bookings (seat assignment, server-side totals) are owned by the booking API;
the SMS bot only submits the collected passengers and reads back the result.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from sms_bot.core.circuit_breaker import CircuitBreaker, get_booking_api_circuit_breaker
from sms_bot.core.config import settings
from sms_bot.core.exceptions import BookingApiError, BookingRejectedError, ServiceTimeoutError
from sms_bot.core.logging import get_logger, log_async_operation
from sms_bot.state_machine.views import PassengerView

logger = get_logger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    trip_id: str
    phone: str
    passengers: list[PassengerView]
    correlation_id: str  # SMS session id, for auditing on the booking side


@dataclass(frozen=True)
class CreatedBooking:
    booking_id: str
    seat_numbers: list[int]
    total_amount: Decimal


class BookingService(Protocol):
    async def create_booking(self, request: BookingRequest) -> CreatedBooking:
        """
        Raises:
            BookingRejectedError: the booking API refused the booking
            DownstreamError: the booking API could not be reached
        """
        ...


class HttpBookingService:
    """Creates bookings through the booking API over HTTP"""

    def __init__(
        self,
        base_url: str | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._base_url = base_url or settings.BOOKING_API_URL
        self._circuit_breaker = circuit_breaker or get_booking_api_circuit_breaker()
        self._timeout = timeout_seconds or settings.BOOKING_API_TIMEOUT_SECONDS

    @staticmethod
    def _payload(request: BookingRequest) -> dict:
        return {
            "tripId": request.trip_id,
            "passengers": [
                {"name": p.name, "nationalId": p.id, "phone": request.phone}
                for p in request.passengers
            ],
            "smsSessionId": request.correlation_id,
        }

    async def _post(self, payload: dict) -> httpx.Response:
        """
        POST the booking. Server errors and network failures raise (and
        count against the circuit breaker); a 4xx answer is returned.
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(f"{self._base_url}/api/bookings", json=payload)
        except httpx.TimeoutException:
            raise ServiceTimeoutError("booking_api", self._timeout)
        except httpx.RequestError as exc:
            raise BookingApiError(
                message=f"network error: {str(exc)}",
                details={"network_error": True},
            )

        if response.status_code >= 500:
            raise BookingApiError.from_response("bookings", response)
        return response

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"status {response.status_code}"

    @log_async_operation("create_booking")
    async def create_booking(self, request: BookingRequest) -> CreatedBooking:
        response = await self._circuit_breaker.execute(self._post, self._payload(request))

        if not response.is_success:
            reason = self._error_reason(response)
            logger.warning(
                "Booking rejected by booking API",
                extra_data={
                    "trip_id": request.trip_id,
                    "status_code": response.status_code,
                    "reason": reason,
                }
            )
            raise BookingRejectedError(reason, response.status_code)

        try:
            booking = response.json()["booking"]
            return CreatedBooking(
                booking_id=str(booking["id"]),
                seat_numbers=[int(p["seatNumber"]) for p in booking.get("passengers", [])],
                total_amount=Decimal(str(booking["totalAmount"])),
            )
        except (ValueError, KeyError, TypeError, InvalidOperation) as exc:
            raise BookingApiError(
                message="unexpected booking response",
                details={"error": str(exc), "response_text": response.text[:500]},
            )
