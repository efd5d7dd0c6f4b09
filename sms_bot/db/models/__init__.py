"""
Database Models
"""
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.db.models.company import Company
from sms_bot.db.models.trip import Trip
from sms_bot.db.models.booking import Booking, BookingPassenger, BookingStatus
from sms_bot.db.models.ticket import Ticket
from sms_bot.db.models.payment import Payment, PaymentStatus, PaymentMethod, PaymentChannel
from sms_bot.db.models.sms_message_log import SmsMessageLog, MessageDirection

__all__ = [
    "SmsSession",
    "Company",
    "Trip",
    "Booking",
    "BookingPassenger",
    "BookingStatus",
    "Ticket",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "PaymentChannel",
    "SmsMessageLog",
    "MessageDirection",
]
