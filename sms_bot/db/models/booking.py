"""
Booking Model

Bookings are created by the booking API; this service reads them for ticket
checks and updates them from payment callbacks.
"""
import enum
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from sms_bot.core.clock import utcnow
from sms_bot.db.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    trip_id = Column(String(64), ForeignKey("trips.id"), nullable=False, index=True)
    phone = Column(String(20), nullable=False, index=True)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    sms_session_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    trip = relationship("Trip", lazy="joined")
    passengers = relationship(
        "BookingPassenger",
        back_populates="booking",
        lazy="selectin",
        order_by="BookingPassenger.seat_number",
    )


class BookingPassenger(Base):
    __tablename__ = "booking_passengers"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(64), ForeignKey("bookings.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    national_id = Column(String(50), nullable=False)
    phone = Column(String(20), nullable=False)
    seat_number = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="passengers")
