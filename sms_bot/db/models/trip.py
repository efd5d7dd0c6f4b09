"""
Trip Model - scheduled bus departures that can be booked over SMS
"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from sms_bot.db.database import Base


class Trip(Base):
    __tablename__ = "trips"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    company_id = Column(String(64), ForeignKey("companies.id"), nullable=False, index=True)

    origin = Column(String(100), nullable=False, index=True)
    destination = Column(String(100), nullable=False, index=True)
    departure_time = Column(DateTime, nullable=False, index=True)  # naive UTC

    price = Column(Numeric(10, 2), nullable=False)  # ticket price in ETB
    total_slots = Column(Integer, nullable=False)
    available_slots = Column(Integer, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    booking_halted = Column(Boolean, nullable=False, default=False)

    company = relationship("Company", lazy="joined")
