"""
SMS Message Log - inbound and outbound traffic for monitoring
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum

from sms_bot.core.clock import utcnow
from sms_bot.db.database import Base


class MessageDirection(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class SmsMessageLog(Base):
    __tablename__ = "sms_message_logs"

    id = Column(Integer, primary_key=True, index=True)
    direction = Column(SQLEnum(MessageDirection), nullable=False, index=True)
    phone = Column(String(20), nullable=False, index=True)
    body = Column(String(1600), nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    error = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
