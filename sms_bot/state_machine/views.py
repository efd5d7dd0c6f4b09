"""
Read-only views passed from services to handlers and message templates.

Keeping templates off the ORM lets the conversation flow run against
in-memory fakes.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sms_bot.db.models.ticket import Ticket
from sms_bot.db.models.trip import Trip


@dataclass(frozen=True)
class TripView:
    id: str
    company_name: str
    company_phone: str | None
    origin: str
    destination: str
    departure_time: datetime  # naive UTC
    price: Decimal
    available_slots: int
    is_active: bool = True
    booking_halted: bool = False

    @classmethod
    def from_model(cls, trip: Trip) -> "TripView":
        phones = (trip.company.phones or []) if trip.company else []
        return cls(
            id=trip.id,
            company_name=trip.company.name if trip.company else "",
            company_phone=phones[0] if phones else None,
            origin=trip.origin,
            destination=trip.destination,
            departure_time=trip.departure_time,
            price=Decimal(str(trip.price)),
            available_slots=trip.available_slots,
            is_active=bool(trip.is_active),
            booking_halted=bool(trip.booking_halted),
        )


@dataclass(frozen=True)
class PassengerView:
    name: str
    id: str


@dataclass(frozen=True)
class TicketView:
    short_code: str
    seat_number: int
    passenger_name: str
    is_used: bool = False
    used_at: datetime | None = None

    @classmethod
    def from_model(cls, ticket: Ticket) -> "TicketView":
        return cls(
            short_code=ticket.short_code,
            seat_number=ticket.seat_number,
            passenger_name=ticket.passenger_name,
            is_used=bool(ticket.is_used),
            used_at=ticket.used_at,
        )
