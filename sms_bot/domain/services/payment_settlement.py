"""
Payment Settlement

Applies a TeleBirr result to the booking it paid for:

- success: payment SUCCESS, booking PAID, one ticket per passenger, the
  waiting SMS session moves to PAYMENT_SUCCESS and the tickets are texted.
- failure or timeout: payment FAILED, booking CANCELLED, seats go back to the
  trip, the waiting session returns to IDLE and the passenger is told.

A payment is settled at most once; later callbacks for it are no-ops.
"""
import secrets
import string
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.clock import utcnow
from sms_bot.core.config import settings
from sms_bot.core.exceptions import PaymentNotFoundError
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.db.models.booking import Booking, BookingStatus
from sms_bot.db.models.payment import Payment, PaymentStatus
from sms_bot.db.models.ticket import Ticket
from sms_bot.db.models.trip import Trip
from sms_bot.state_machine.messages import Language, MessageKey, get_message
from sms_bot.state_machine.session_store import SessionStore
from sms_bot.state_machine.states import BotState
from sms_bot.state_machine.views import TicketView, TripView

logger = get_logger(__name__)

SHORT_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHORT_CODE_LENGTH = 6
MAX_SHORT_CODE_ATTEMPTS = 10


class SettlementOutcome(str, Enum):
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"


@dataclass(frozen=True)
class Notification:
    phone: str
    text: str


@dataclass(frozen=True)
class SettlementResult:
    outcome: SettlementOutcome
    booking_id: str
    tickets: list[TicketView] = field(default_factory=list)
    notification: Notification | None = None


def generate_short_code() -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH))


class PaymentSettlementService:
    """Settles pending payments from callbacks and from the timeout sweep"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sessions = SessionStore(db)

    async def _get_payment(self, transaction_id: str) -> Payment | None:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one_or_none()

    async def _take_pending(self, payment: Payment, status: PaymentStatus) -> bool:
        """
        Move the payment out of PENDING inside the current transaction.

        The status check and the write are one statement, so when a callback
        and the timeout sweep race on the same payment exactly one of them
        gets True. The loser's transaction is rolled back.
        """
        result = await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            logger.info(
                "Payment settled concurrently, skipping",
                extra_data={"transaction_id": payment.transaction_id, "wanted": status.value}
            )
            await self.db.rollback()
            return False
        payment.status = status
        return True

    async def _unique_short_code(self) -> str:
        for _ in range(MAX_SHORT_CODE_ATTEMPTS):
            code = generate_short_code()
            taken = await self.db.scalar(select(Ticket.id).where(Ticket.short_code == code))
            if taken is None:
                return code
        raise RuntimeError("Could not allocate a unique ticket code")

    async def _session_language(self, booking: Booking, state: BotState) -> Language:
        session = await self.sessions.resolve_payment(booking.phone, booking.id, state)
        return Language.coerce(session.language) if session else Language.EN

    async def settle(self, transaction_id: str, success: bool) -> SettlementResult:
        """
        Apply a callback result.

        Raises:
            PaymentNotFoundError: no payment carries this transaction id
        """
        payment = await self._get_payment(transaction_id)
        if payment is None:
            raise PaymentNotFoundError(transaction_id)

        if payment.status != PaymentStatus.PENDING:
            logger.info(
                "Payment already settled",
                extra_data={"transaction_id": transaction_id, "status": payment.status.value}
            )
            return SettlementResult(SettlementOutcome.ALREADY_PROCESSED, payment.booking_id)

        booking_id = payment.booking_id
        if not await self._take_pending(payment, PaymentStatus.SUCCESS if success else PaymentStatus.FAILED):
            return SettlementResult(SettlementOutcome.ALREADY_PROCESSED, booking_id)
        if success:
            return await self._mark_paid(payment)
        return await self._cancel(payment, MessageKey.PAYMENT_REJECTED)

    async def _mark_paid(self, payment: Payment) -> SettlementResult:
        booking = payment.booking
        booking.status = BookingStatus.PAID

        tickets = []
        try:
            for passenger in booking.passengers:
                ticket = Ticket(
                    booking_id=booking.id,
                    trip_id=booking.trip_id,
                    passenger_name=passenger.name,
                    seat_number=passenger.seat_number,
                    short_code=await self._unique_short_code(),
                )
                self.db.add(ticket)
                tickets.append(ticket)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        views = [TicketView.from_model(ticket) for ticket in tickets]
        logger.info(
            "Payment succeeded, tickets issued",
            extra_data={
                "booking_id": booking.id,
                "transaction_id": payment.transaction_id,
                "tickets": len(views),
            }
        )

        lang = await self._session_language(booking, BotState.PAYMENT_SUCCESS)
        text = get_message(
            MessageKey.PAYMENT_SUCCESS,
            lang,
            amount=payment.amount,
            tickets=views,
            trip=TripView.from_model(booking.trip),
        )
        return SettlementResult(
            SettlementOutcome.PAID,
            booking.id,
            tickets=views,
            notification=Notification(booking.phone, text),
        )

    async def _cancel(self, payment: Payment, message_key: MessageKey) -> SettlementResult:
        booking = payment.booking
        seats = len(booking.passengers)
        booking.status = BookingStatus.CANCELLED

        try:
            await self.db.execute(
                update(Trip)
                .where(Trip.id == booking.trip_id)
                .values(available_slots=Trip.available_slots + seats)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Payment failed, booking cancelled",
            extra_data={
                "booking_id": booking.id,
                "transaction_id": payment.transaction_id,
                "seats_released": seats,
                "phone": PhoneNumberValidator.mask(booking.phone),
            }
        )

        lang = await self._session_language(booking, BotState.IDLE)
        text = get_message(message_key, lang, booking_id=booking.id)
        return SettlementResult(
            SettlementOutcome.CANCELLED,
            booking.id,
            notification=Notification(booking.phone, text),
        )

    async def expire_pending(self, older_than_minutes: int | None = None) -> list[SettlementResult]:
        """Cancel PENDING payments nobody answered within the payment timeout"""
        minutes = older_than_minutes or settings.PAYMENT_TIMEOUT_MINUTES
        cutoff = utcnow() - timedelta(minutes=minutes)

        result = await self.db.execute(
            select(Payment.transaction_id)
            .where(Payment.status == PaymentStatus.PENDING, Payment.created_at < cutoff)
            .order_by(Payment.created_at)
        )
        transaction_ids = list(result.scalars())

        expired = []
        for transaction_id in transaction_ids:
            payment = await self._get_payment(transaction_id)
            if payment is None or payment.status != PaymentStatus.PENDING:
                continue
            if not await self._take_pending(payment, PaymentStatus.FAILED):
                continue
            expired.append(await self._cancel(payment, MessageKey.PAYMENT_TIMEOUT))

        if expired:
            logger.info("Pending payments expired", extra_data={"count": len(expired)})
        return expired
