"""
Booking/Payment Orchestrator

Turns a confirmed SMS session into a booking and a TeleBirr payment request.
The two steps are not atomic: when the booking succeeds but the payment
request fails, the booking stands and the passenger is told to contact
support rather than having the booking rolled back.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.exceptions import BookingRejectedError, DownstreamError
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.db.models.payment import Payment, PaymentChannel, PaymentMethod, PaymentStatus
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.domain.services.booking_client import BookingRequest, BookingService
from sms_bot.domain.services.payment.base_provider import BasePaymentProvider, PaymentRequest
from sms_bot.domain.services.pricing import calculate_booking_amounts
from sms_bot.domain.services.trip_search import TripSearch
from sms_bot.state_machine.views import PassengerView

logger = get_logger(__name__)


class PaymentRecords(Protocol):
    async def record_pending(self, booking_id: str, amount: Decimal, transaction_id: str) -> None: ...


class SqlPaymentRecords:
    """Stores the PENDING payment the TeleBirr callback will later resolve"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_pending(self, booking_id: str, amount: Decimal, transaction_id: str) -> None:
        self.db.add(Payment(
            booking_id=booking_id,
            amount=amount,
            method=PaymentMethod.TELEBIRR,
            transaction_id=transaction_id,
            status=PaymentStatus.PENDING,
            initiated_via=PaymentChannel.SMS,
        ))
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise


class BookingOutcome(str, Enum):
    CONFIRMED = "CONFIRMED"  # booking created, payment requested
    TRIP_MISSING = "TRIP_MISSING"
    REJECTED = "REJECTED"  # booking API refused
    UNAVAILABLE = "UNAVAILABLE"  # booking API unreachable
    PAYMENT_FAILED = "PAYMENT_FAILED"  # booking created, payment request failed


@dataclass(frozen=True)
class BookingResult:
    outcome: BookingOutcome
    booking_id: str | None = None
    seat_numbers: list[int] = field(default_factory=list)
    total_amount: Decimal | None = None
    transaction_id: str | None = None
    error: str | None = None


class BookingOrchestrator:
    """Creates the booking, then requests payment for the server's total"""

    def __init__(
        self,
        trips: TripSearch,
        bookings: BookingService,
        payment_provider: BasePaymentProvider,
        payment_records: PaymentRecords,
    ):
        self.trips = trips
        self.bookings = bookings
        self.payment_provider = payment_provider
        self.payment_records = payment_records

    async def confirm(self, session: SmsSession) -> BookingResult:
        trip = await self.trips.get_trip(session.selected_trip_id) if session.selected_trip_id else None
        if not trip:
            logger.warning(
                "Selected trip missing at confirmation",
                extra_data={"session_id": session.session_id, "trip_id": session.selected_trip_id}
            )
            return BookingResult(BookingOutcome.TRIP_MISSING)

        passengers = [PassengerView(name=p["name"], id=p["id"]) for p in session.passenger_data or []]
        expected_total = calculate_booking_amounts(trip.price, len(passengers)).total_amount

        try:
            booking = await self.bookings.create_booking(BookingRequest(
                trip_id=trip.id,
                phone=session.phone,
                passengers=passengers,
                correlation_id=session.session_id,
            ))
        except BookingRejectedError as e:
            return BookingResult(BookingOutcome.REJECTED, error=e.reason)
        except DownstreamError as e:
            logger.error(
                "Booking API unavailable",
                extra_data={"session_id": session.session_id, "error": e.message}
            )
            return BookingResult(BookingOutcome.UNAVAILABLE, error=e.message)

        if booking.total_amount != expected_total:
            logger.warning(
                "Booking total differs from local calculation",
                extra_data={
                    "booking_id": booking.booking_id,
                    "server_total": str(booking.total_amount),
                    "local_total": str(expected_total),
                }
            )

        try:
            initiation = await self.payment_provider.initiate_payment(PaymentRequest(
                phone=session.phone,
                amount=booking.total_amount,
                reference=booking.booking_id,
                description=f"Bus ticket {trip.origin}-{trip.destination}",
            ))
            await self.payment_records.record_pending(
                booking.booking_id, booking.total_amount, initiation.transaction_id
            )
        except Exception as e:
            logger.error(
                "Payment initiation failed after booking was created",
                extra_data={
                    "booking_id": booking.booking_id,
                    "phone": PhoneNumberValidator.mask(session.phone),
                    "error": str(e),
                },
                exc_info=True
            )
            return BookingResult(
                BookingOutcome.PAYMENT_FAILED,
                booking_id=booking.booking_id,
                seat_numbers=booking.seat_numbers,
                total_amount=booking.total_amount,
                error=str(e),
            )

        logger.info(
            "Booking confirmed, awaiting payment",
            extra_data={
                "booking_id": booking.booking_id,
                "transaction_id": initiation.transaction_id,
                "amount": str(booking.total_amount),
            }
        )
        return BookingResult(
            BookingOutcome.CONFIRMED,
            booking_id=booking.booking_id,
            seat_numbers=booking.seat_numbers,
            total_amount=booking.total_amount,
            transaction_id=initiation.transaction_id,
        )
