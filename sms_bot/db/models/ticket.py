"""
Ticket Model - one per passenger, issued once the booking is paid
"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from sms_bot.core.clock import utcnow
from sms_bot.db.database import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    booking_id = Column(String(64), ForeignKey("bookings.id"), nullable=False, index=True)
    trip_id = Column(String(64), ForeignKey("trips.id"), nullable=False, index=True)

    passenger_name = Column(String(100), nullable=False)
    seat_number = Column(Integer, nullable=False)
    short_code = Column(String(6), unique=True, nullable=False, index=True)

    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    booking = relationship("Booking", lazy="joined")
    trip = relationship("Trip", lazy="joined")
