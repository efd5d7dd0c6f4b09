"""
Ticket Verification - the stateless CHECK side channel.

Conductors and passengers send ``CHECK <code>``; the reply says whether the
ticket is valid, already used, unpaid or unknown. Session state is never
read or written here.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.config import settings
from sms_bot.db.models.booking import BookingStatus
from sms_bot.db.models.ticket import Ticket
from sms_bot.state_machine.messages import Language, MessageKey, get_message
from sms_bot.state_machine.views import TicketView, TripView

SHORT_CODE_LENGTH = 6


@dataclass(frozen=True)
class TicketRecord:
    ticket: TicketView
    booking_status: str
    trip: TripView


class TicketLookup(Protocol):
    async def find_by_short_code(self, code: str) -> TicketRecord | None: ...


class SqlTicketLookup:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_short_code(self, code: str) -> TicketRecord | None:
        result = await self.db.execute(select(Ticket).where(Ticket.short_code == code))
        ticket = result.unique().scalar_one_or_none()
        if ticket is None:
            return None

        status = ticket.booking.status
        return TicketRecord(
            ticket=TicketView.from_model(ticket),
            booking_status=status.value if isinstance(status, BookingStatus) else str(status),
            trip=TripView.from_model(ticket.trip),
        )


class VerificationStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    UNPAID = "UNPAID"
    VALID = "VALID"


@dataclass(frozen=True)
class TicketCheck:
    status: VerificationStatus
    code: str
    record: TicketRecord | None = None


class TicketVerificationService:
    """Answers CHECK <code>"""

    def __init__(self, lookup: TicketLookup):
        self.lookup = lookup

    async def verify(self, code: str | None) -> TicketCheck:
        code = (code or "").strip()
        # Malformed codes are answered without a lookup
        if len(code) != SHORT_CODE_LENGTH:
            return TicketCheck(VerificationStatus.NOT_FOUND, code)

        record = await self.lookup.find_by_short_code(code.upper())
        if record is None:
            return TicketCheck(VerificationStatus.NOT_FOUND, code)
        if record.ticket.is_used:
            return TicketCheck(VerificationStatus.ALREADY_USED, code, record)
        if record.booking_status != BookingStatus.PAID.value:
            return TicketCheck(VerificationStatus.UNPAID, code, record)
        return TicketCheck(VerificationStatus.VALID, code, record)

    @staticmethod
    def render(check: TicketCheck, language: Language) -> str:
        if check.status == VerificationStatus.NOT_FOUND:
            return get_message(MessageKey.TICKET_NOT_FOUND, language, code=check.code)
        if check.status == VerificationStatus.UNPAID:
            return get_message(MessageKey.TICKET_UNPAID, language, code=check.code)

        record = check.record
        if check.status == VerificationStatus.ALREADY_USED:
            return get_message(
                MessageKey.TICKET_ALREADY_USED,
                language,
                ticket=record.ticket,
                support_phone=record.trip.company_phone or settings.SUPPORT_PHONE,
            )
        return get_message(MessageKey.TICKET_VALID, language, ticket=record.ticket, trip=record.trip)

    async def check(self, code: str | None, language: Language) -> str:
        return self.render(await self.verify(code), language)
