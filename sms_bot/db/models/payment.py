"""
Payment Model - TeleBirr payment attempts for a booking
"""
import enum
import uuid
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from sms_bot.core.clock import utcnow
from sms_bot.db.database import Base


class PaymentMethod(str, enum.Enum):
    TELEBIRR = "TELEBIRR"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentChannel(str, enum.Enum):
    SMS = "SMS"
    WEB = "WEB"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    booking_id = Column(String(64), ForeignKey("bookings.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.TELEBIRR)
    transaction_id = Column(String(100), unique=True, nullable=False, index=True)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    initiated_via = Column(SQLEnum(PaymentChannel), nullable=False, default=PaymentChannel.SMS)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", lazy="joined")
