"""
SMS Session Model - per-phone booking conversation
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON

from sms_bot.core.clock import utcnow
from sms_bot.db.database import Base


class SmsSession(Base):
    """Conversation position and collected booking data for one phone number.

    One row per phone. Rows past ``expires_at`` are treated as absent; the
    phone's next message renews the row under a new ``session_id``, and the
    periodic cleanup task removes rows nobody came back to.
    """

    __tablename__ = "sms_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)

    # State machine
    state = Column(String(32), nullable=False, default="IDLE")
    language = Column(String(2), nullable=False, default="EN")

    # Search criteria (canonical names taken from the first search result)
    origin = Column(String(100), nullable=True)
    destination = Column(String(100), nullable=True)
    date = Column(String(10), nullable=True)  # ISO local date
    search_trip_ids = Column(JSON, nullable=True)  # trip ids in the order they were listed

    # Booking flow
    selected_trip_id = Column(String(64), nullable=True)
    passenger_count = Column(Integer, nullable=True)
    current_passenger_index = Column(Integer, nullable=False, default=0)
    passenger_data = Column(JSON, nullable=False, default=list)  # [{"name": ..., "id": ...}]
    pending_passenger_name = Column(String(100), nullable=True)
    booking_id = Column(String(64), nullable=True)

    # Bookkeeping
    message_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_message_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
