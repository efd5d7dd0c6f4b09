"""
Bilingual SMS Message Templates

Every reply the bot can send is a ``MessageKey`` with an English and an
Amharic variant. A variant is either ``Fixed`` text or a ``Formatted``
template with an explicit keyword parameter list; both are resolved through
``get_message``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Sequence

from sms_bot.core.clock import to_local
from sms_bot.core.config import settings
from sms_bot.core.validation import TextSanitizer
from sms_bot.state_machine.views import PassengerView, TicketView, TripView


class Language(str, Enum):
    EN = "EN"
    AM = "AM"

    @classmethod
    def coerce(cls, value: str | None) -> "Language":
        try:
            return cls(value)
        except ValueError:
            return cls.EN


class MessageKey(str, Enum):
    WELCOME = "welcome"
    HELP = "help"
    SEARCH_RESULTS = "search_results"
    NO_TRIPS_FOUND = "no_trips_found"
    TRIP_SELECTED = "trip_selected"
    INVALID_PASSENGER_COUNT = "invalid_passenger_count"
    NOT_ENOUGH_SEATS = "not_enough_seats"
    ASK_PASSENGER_NAME = "ask_passenger_name"
    NAME_TOO_SHORT = "name_too_short"
    ASK_PASSENGER_ID = "ask_passenger_id"
    ID_TOO_SHORT = "id_too_short"
    BOOKING_SUMMARY = "booking_summary"
    REPLY_YES_OR_NO = "reply_yes_or_no"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_FAILED = "booking_failed"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CREATED_PAYMENT_ERROR = "booking_created_payment_error"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_TIMEOUT = "payment_timeout"
    PAYMENT_REJECTED = "payment_rejected"
    TICKET_VALID = "ticket_valid"
    TICKET_ALREADY_USED = "ticket_already_used"
    TICKET_NOT_FOUND = "ticket_not_found"
    TICKET_UNPAID = "ticket_unpaid"
    SESSION_CANCELLED = "session_cancelled"
    SESSION_BUSY = "session_busy"
    RATE_LIMITED = "rate_limited"
    INVALID_COMMAND = "invalid_command"
    INVALID_INPUT = "invalid_input"
    TRIP_SOLD_OUT = "trip_sold_out"
    BOOKING_HALTED = "booking_halted"
    SYSTEM_ERROR = "system_error"


@dataclass(frozen=True)
class Fixed:
    """A template without parameters"""

    text: str

    def render(self, **params: object) -> str:
        if params:
            raise TypeError(f"fixed message takes no parameters, got {sorted(params)}")
        return self.text


@dataclass(frozen=True)
class Formatted:
    """A template rendered from exactly the declared keyword parameters"""

    params: tuple[str, ...]
    formatter: Callable[..., str]

    def render(self, **params: object) -> str:
        if set(params) != set(self.params):
            raise TypeError(
                f"message expects parameters {sorted(self.params)}, got {sorted(params)}"
            )
        return self.formatter(**params)


Template = Fixed | Formatted

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_time(value: datetime) -> str:
    """Local departure time, e.g. '9:00 AM'"""
    local = to_local(value)
    hours = local.hour % 12 or 12
    ampm = "PM" if local.hour >= 12 else "AM"
    return f"{hours}:{local.minute:02d} {ampm}"


def format_date(value: datetime) -> str:
    """Local date and 24h time, e.g. 'Jan 15, 9:05'"""
    local = to_local(value)
    return f"{_MONTHS[local.month - 1]} {local.day}, {local.hour}:{local.minute:02d}"


def format_price(value: Decimal) -> str:
    """Ticket price without trailing zeros: 350.00 -> '350', 350.50 -> '350.5'"""
    normalized = Decimal(value).normalize()
    return f"{normalized:f}"


def format_amount(value: Decimal) -> str:
    """Money with two decimals: 898.875 -> '898.88'"""
    return f"{Decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def _trip_lines(trips: Sequence[TripView], currency: str, seats: str) -> str:
    return "\n".join(
        f"{i}.{t.company_name} {format_time(t.departure_time)} "
        f"{format_price(t.price)}{currency} {t.available_slots}{seats}"
        for i, t in enumerate(trips, start=1)
    )


def _passenger_lines(passengers: Sequence[PassengerView]) -> str:
    return "\n".join(f"{i}. {p.name} ({p.id})" for i, p in enumerate(passengers, start=1))


def _ticket_blocks(tickets: Sequence[TicketView], code: str, seat: str, name: str) -> str:
    return "\n---\n".join(
        f"{code}: {t.short_code}\n{seat}: {t.seat_number}\n{name}: {t.passenger_name}"
        for t in tickets
    )


def _support() -> str:
    return settings.SUPPORT_PHONE


MESSAGES: dict[MessageKey, dict[Language, Template]] = {
    MessageKey.WELCOME: {
        Language.EN: Fixed(
            "Welcome to i-Ticket! 🚌\nBook bus tickets via SMS.\n\n"
            "Commands:\nBOOK - Search trips\nCHECK [code] - Verify ticket\nHELP - Show commands\n\n"
            "Example:\nBOOK ADDIS HAWASSA JAN15"
        ),
        Language.AM: Fixed(
            "እንኳን ወደ አይ-ቲኬት በደህና መጡ! 🚌\nበኤስኤምኤስ ትኬት ይያዙ።\n\n"
            "ትዕዛዞች:\nመጽሐፍ - ጉዞ ማረጋገጥ\nማረጋገጫ [ኮድ] - ትኬት መመርመር\nእርዳታ - ትዕዛዞች\n\n"
            "ምሳሌ:\nመጽሐፍ አዲስ ሀዋሳ ጃን15"
        ),
    },
    MessageKey.HELP: {
        Language.EN: Formatted((), lambda: (
            "i-TICKET SMS HELP\n\nCommands:\nBOOK [from] [to] [date]\n"
            "  Example: BOOK ADDIS HAWASSA JAN15\n\nCHECK [code]\n  Example: CHECK ABC123\n\n"
            f"CANCEL - Exit session\n\nSupport: {_support()}"
        )),
        Language.AM: Formatted((), lambda: (
            "የአይ-ቲኬት ኤስኤምኤስ እገዛ\n\nትዕዛዞች:\nመጽሐፍ [ከ] [ወደ] [ቀን]\n"
            "  ምሳሌ: መጽሐፍ አዲስ ሀዋሳ ጃን15\n\nማረጋገጫ [ኮድ]\n  ምሳሌ: ማረጋገጫ ABC123\n\n"
            f"ሰርዝ - ውጣ\n\nድጋፍ: {_support()}"
        )),
    },
    MessageKey.SEARCH_RESULTS: {
        Language.EN: Formatted(("origin", "destination", "date", "trips"), lambda origin, destination, date, trips: (
            f"Trips {origin}→{destination} {date}:\n"
            f"{_trip_lines(trips, 'ETB', 'seats')}\n\nReply trip number (1-{len(trips)})"
        )),
        Language.AM: Formatted(("origin", "destination", "date", "trips"), lambda origin, destination, date, trips: (
            f"ጉዞዎች {origin}→{destination} {date}:\n"
            f"{_trip_lines(trips, 'ብር', 'ቦታ')}\n\nየጉዞ ቁጥር ይምረጡ (1-{len(trips)})"
        )),
    },
    MessageKey.NO_TRIPS_FOUND: {
        Language.EN: Formatted(("origin", "destination", "date"), lambda origin, destination, date: (
            f"No trips found for {origin}→{destination} on {date}\n\n"
            "Try:\n- Different date (TOMORROW, JAN20)\n- Nearby cities\n\n"
            "Search again: BOOK [from] [to] [date]"
        )),
        Language.AM: Formatted(("origin", "destination", "date"), lambda origin, destination, date: (
            f"{origin}→{destination} {date} ላይ ጉዞ አልተገኘም\n\n"
            "ይሞክሩ:\n- ሌላ ቀን (ነገ, ጃን20)\n- ቅርብ ከተሞች\n\n"
            "እንደገና ይፈልጉ: መጽሐፍ [ከ] [ወደ] [ቀን]"
        )),
    },
    MessageKey.TRIP_SELECTED: {
        Language.EN: Formatted(("trip", "fee"), lambda trip, fee: (
            f"{trip.company_name} {format_time(trip.departure_time)}\n{trip.origin}→{trip.destination}\n"
            f"Price: {format_price(trip.price)}ETB + {format_amount(fee)} fee = "
            f"{format_amount(trip.price + fee)}ETB\n\nHow many passengers?\n"
            f"(Max {settings.MAX_PASSENGERS} per booking)"
        )),
        Language.AM: Formatted(("trip", "fee"), lambda trip, fee: (
            f"{trip.company_name} {format_time(trip.departure_time)}\n{trip.origin}→{trip.destination}\n"
            f"ዋጋ: {format_price(trip.price)}ብር + {format_amount(fee)} ክፍያ = "
            f"{format_amount(trip.price + fee)}ብር\n\nስንት ተሳፋሪዎች?\n"
            f"(ከ 1-{settings.MAX_PASSENGERS} ድረስ)"
        )),
    },
    MessageKey.INVALID_PASSENGER_COUNT: {
        Language.EN: Formatted(("maximum",), lambda maximum: f"Invalid number. Enter 1 to {maximum}."),
        Language.AM: Formatted(("maximum",), lambda maximum: f"ትክክል ያልሆነ ቁጥር። 1 እስከ {maximum} ያስገቡ።"),
    },
    MessageKey.NOT_ENOUGH_SEATS: {
        Language.EN: Formatted(("available",), lambda available: (
            f"Only {available} seat{'s' if available > 1 else ''} left. Enter 1 to {available}."
        )),
        Language.AM: Formatted(("available",), lambda available: (
            f"{available} ቦታ ብቻ ቀርቷል። 1 እስከ {available} ያስገቡ።"
        )),
    },
    MessageKey.ASK_PASSENGER_NAME: {
        Language.EN: Formatted(("index", "total"), lambda index, total: (
            f"Passenger {index}/{total} name?" if total > 1 else "Passenger name?"
        )),
        Language.AM: Formatted(("index", "total"), lambda index, total: (
            f"ተሳፋሪ {index}/{total} ስም?" if total > 1 else "የተሳፋሪ ስም?"
        )),
    },
    MessageKey.NAME_TOO_SHORT: {
        Language.EN: Fixed("Name too short. Please try again."),
        Language.AM: Fixed("ስም በጣም አጭር ነው። እንደገና ያስገቡ።"),
    },
    MessageKey.ASK_PASSENGER_ID: {
        Language.EN: Formatted(("index", "total"), lambda index, total: (
            f"Passenger {index}/{total} ID?\n(National ID or Kebele ID)"
        )),
        Language.AM: Formatted(("index", "total"), lambda index, total: (
            f"ተሳፋሪ {index}/{total} መታወቂያ?\n(የመታወቂያ ቁጥር ወይም የቀበሌ መታወቂያ)"
        )),
    },
    MessageKey.ID_TOO_SHORT: {
        Language.EN: Fixed("ID too short. Please try again."),
        Language.AM: Fixed("መታወቂያ በጣም አጭር ነው። እንደገና ያስገቡ።"),
    },
    MessageKey.BOOKING_SUMMARY: {
        Language.EN: Formatted(("trip", "passengers", "total"), lambda trip, passengers, total: (
            f"BOOKING SUMMARY\n{trip.origin}→{trip.destination}\n"
            f"Time: {format_time(trip.departure_time)}\nBus: {trip.company_name}\n\n"
            f"Passengers:\n{_passenger_lines(passengers)}\n\n"
            f"Total: {format_amount(total)} ETB\n\nReply YES to confirm\nReply NO to cancel"
        )),
        Language.AM: Formatted(("trip", "passengers", "total"), lambda trip, passengers, total: (
            f"የቦታ ማረጋገጫ\n{trip.origin}→{trip.destination}\n"
            f"ሰዓት: {format_time(trip.departure_time)}\nበስ: {trip.company_name}\n\n"
            f"ተሳፋሪዎች:\n{_passenger_lines(passengers)}\n\n"
            f"ጠቅላላ: {format_amount(total)} ብር\n\nለማረጋገጥ አዎ ይበሉ\nለመሰረዝ አይ ይበሉ"
        )),
    },
    MessageKey.REPLY_YES_OR_NO: {
        Language.EN: Fixed("Reply YES or NO."),
        Language.AM: Fixed("አዎ ወይም አይ ይበሉ።"),
    },
    MessageKey.BOOKING_CANCELLED: {
        Language.EN: Fixed("Booking cancelled. Send BOOK to start again."),
        Language.AM: Fixed("ቦታ ተሰርዟል። መጽሐፍ በመላክ እንደገና ይጀምሩ።"),
    },
    MessageKey.BOOKING_FAILED: {
        Language.EN: Formatted(("error",), lambda error: f"Error: {error}\n\nTry again: BOOK"),
        Language.AM: Formatted(("error",), lambda error: f"ስህተት: {error}\n\nእንደገና ይሞክሩ: መጽሐፍ"),
    },
    MessageKey.BOOKING_CONFIRMED: {
        Language.EN: Formatted(("booking_id", "seats"), lambda booking_id, seats: (
            f"Booking confirmed!\nID: {booking_id}\n"
            f"Seat{'s' if len(seats) > 1 else ''}: {', '.join(str(s) for s in seats)}\n\n"
            "Payment request sent to your phone.\nEnter TeleBirr password to pay.\n\n"
            "Waiting for payment..."
        )),
        Language.AM: Formatted(("booking_id", "seats"), lambda booking_id, seats: (
            f"ቦታ ተይዟል!\nመታወቂያ: {booking_id}\nወንበር: {', '.join(str(s) for s in seats)}\n\n"
            "የክፍያ ጥያቄ ወደ ስልክዎ ተልኳል።\nየቴሌብር የይለፍ ቃል ያስገቡ።\n\nክፍያ በመጠበቅ ላይ..."
        )),
    },
    MessageKey.BOOKING_CREATED_PAYMENT_ERROR: {
        Language.EN: Formatted(("booking_id", "seats"), lambda booking_id, seats: (
            f"Booking created!\nID: {booking_id}\nSeats: {', '.join(str(s) for s in seats)}\n\n"
            f"Payment error. Contact support: {settings.PAYMENT_SUPPORT_PHONE}"
        )),
        Language.AM: Formatted(("booking_id", "seats"), lambda booking_id, seats: (
            f"ቦታ ተይዟል!\nመታወቂያ: {booking_id}\nወንበር: {', '.join(str(s) for s in seats)}\n\n"
            f"ክፍያ ስህተት። እባክዎን ድጋፍ ያግኙ: {settings.PAYMENT_SUPPORT_PHONE}"
        )),
    },
    MessageKey.PAYMENT_SUCCESS: {
        Language.EN: Formatted(("amount", "tickets", "trip"), lambda amount, tickets, trip: (
            f"PAYMENT RECEIVED! {format_amount(amount)} ETB\n\n"
            f"YOUR TICKET{'S' if len(tickets) > 1 else ''}\n"
            f"{_ticket_blocks(tickets, 'Code', 'Seat', 'Name')}\n\n"
            f"Trip: {trip.origin}→{trip.destination}\nDate: {format_date(trip.departure_time)}\n"
            f"Bus: {trip.company_name}\n\nShow codes to conductor.\ni-Ticket"
        )),
        Language.AM: Formatted(("amount", "tickets", "trip"), lambda amount, tickets, trip: (
            f"ክፍያ ደርሷል! {format_amount(amount)} ብር\n\n"
            f"የእርስዎ ትኬት{'ቶች' if len(tickets) > 1 else ''}\n"
            f"{_ticket_blocks(tickets, 'ኮድ', 'ወንበር', 'ስም')}\n\n"
            f"ጉዞ: {trip.origin}→{trip.destination}\nቀን: {format_date(trip.departure_time)}\n"
            f"በስ: {trip.company_name}\n\nኮዶችን ለማስተናገድ ያሳዩ።\nአይ-ቲኬት"
        )),
    },
    MessageKey.PAYMENT_TIMEOUT: {
        Language.EN: Formatted(("booking_id",), lambda booking_id: (
            f"Payment timed out.\nBooking {booking_id} cancelled.\n\nTo rebook:\nBOOK [from] [to] [date]"
        )),
        Language.AM: Formatted(("booking_id",), lambda booking_id: (
            f"የክፍያ ጊዜ አልፏል።\nቦታ {booking_id} ተሰርዟል።\n\nእንደገና ለማስያዝ:\nመጽሐፍ [ከ] [ወደ] [ቀን]"
        )),
    },
    MessageKey.PAYMENT_REJECTED: {
        Language.EN: Formatted(("booking_id",), lambda booking_id: (
            f"Payment failed.\nBooking {booking_id} cancelled.\n\nTo rebook, send: BOOK"
        )),
        Language.AM: Formatted(("booking_id",), lambda booking_id: (
            f"ክፍያ አልተሳካም።\nቦታ {booking_id} ተሰርዟል።\n\nእንደገና ለማስያዝ: መጽሐፍ ይላኩ"
        )),
    },
    MessageKey.TICKET_VALID: {
        Language.EN: Formatted(("ticket", "trip"), lambda ticket, trip: (
            f"TICKET VALID ✓\nCode: {ticket.short_code}\nSeat: {ticket.seat_number}\n"
            f"Name: {ticket.passenger_name}\n\nTrip: {trip.origin}→{trip.destination}\n"
            f"Date: {format_date(trip.departure_time)}\nBus: {trip.company_name}\n\n"
            "Status: Not Used\n\nSafe travels!"
        )),
        Language.AM: Formatted(("ticket", "trip"), lambda ticket, trip: (
            f"ትኬት ትክክል ነው ✓\nኮድ: {ticket.short_code}\nወንበር: {ticket.seat_number}\n"
            f"ስም: {ticket.passenger_name}\n\nጉዞ: {trip.origin}→{trip.destination}\n"
            f"ቀን: {format_date(trip.departure_time)}\nበስ: {trip.company_name}\n\n"
            "ሁኔታ: ጥቅም ላይ አልዋለም\n\nደህና ይሂዱ!"
        )),
    },
    MessageKey.TICKET_ALREADY_USED: {
        Language.EN: Formatted(("ticket", "support_phone"), lambda ticket, support_phone: (
            f"TICKET ALREADY USED ✗\nCode: {ticket.short_code}\n"
            f"Used: {format_date(ticket.used_at) if ticket.used_at else '-'}\n\n"
            f"Contact company if error:\n{support_phone}"
        )),
        Language.AM: Formatted(("ticket", "support_phone"), lambda ticket, support_phone: (
            f"ትኬት ጥቅም ላይ ውሏል ✗\nኮድ: {ticket.short_code}\n"
            f"ጥቅም ላይ የዋለው: {format_date(ticket.used_at) if ticket.used_at else '-'}\n\n"
            f"ስህተት ከሆነ ኩባንያውን ያነጋግሩ:\n{support_phone}"
        )),
    },
    MessageKey.TICKET_NOT_FOUND: {
        Language.EN: Formatted(("code",), lambda code: (
            f"TICKET NOT FOUND\nCode: {code}\n\nCheck code and try again.\n"
            "Format: 6 characters (ABC123)\n\nNeed help? Reply HELP"
        )),
        Language.AM: Formatted(("code",), lambda code: (
            f"ትኬት አልተገኘም\nኮድ: {code}\n\nኮዱን ያረጋግጡ እና እንደገና ይሞክሩ።\n"
            "ቅርጸት: 6 ቁምፊዎች (ABC123)\n\nእገዛ ይፈልጋሉ? እርዳታ ይላኩ"
        )),
    },
    MessageKey.TICKET_UNPAID: {
        Language.EN: Formatted(("code",), lambda code: (
            f"TICKET UNPAID\nCode: {code}\n\nPlease complete payment first."
        )),
        Language.AM: Formatted(("code",), lambda code: (
            f"ትኬት ክፍያ አልተከፈለም\nኮድ: {code}\n\nእባክዎን መጀመሪያ ይክፈሉ።"
        )),
    },
    MessageKey.SESSION_CANCELLED: {
        Language.EN: Fixed("Session cancelled. Send BOOK to start again."),
        Language.AM: Fixed("ክፍለ ጊዜ ተሰርዟል። መጽሐፍ በመላክ እንደገና ይጀምሩ።"),
    },
    MessageKey.SESSION_BUSY: {
        Language.EN: Fixed("Still working on your previous message.\nPlease send your reply again."),
        Language.AM: Fixed("የቀድሞ መልእክትዎ በሂደት ላይ ነው።\nእባክዎን መልስዎን እንደገና ይላኩ።"),
    },
    MessageKey.RATE_LIMITED: {
        Language.EN: Fixed("Too many messages. Please wait 1 minute.\n\nFor help: Reply HELP"),
        Language.AM: Fixed("በጣም ብዙ መልእክቶች። እባክዎን 1 ደቂቃ ይጠብቁ።\n\nለእገዛ: እርዳታ ይላኩ"),
    },
    MessageKey.INVALID_COMMAND: {
        Language.EN: Formatted(("command",), lambda command: (
            f"Unknown command: {command}\n\nTry:\nBOOK ADDIS HAWASSA JAN15\nCHECK ABC123\nHELP\n\n"
            f"For assistance: {_support()}"
        )),
        Language.AM: Formatted(("command",), lambda command: (
            f"ያልታወቀ ትዕዛዝ: {command}\n\nይሞክሩ:\nመጽሐፍ አዲስ ሀዋሳ ጃን15\nማረጋገጫ ABC123\nእርዳታ\n\n"
            f"ለእገዛ: {_support()}"
        )),
    },
    MessageKey.INVALID_INPUT: {
        Language.EN: Fixed("Invalid input.\nPlease try again or type HELP for assistance."),
        Language.AM: Fixed("ትክክል ያልሆነ ምላሽ።\nእባክዎን እንደገና ይሞክሩ ወይም እርዳታ ይላኩ።"),
    },
    MessageKey.TRIP_SOLD_OUT: {
        Language.EN: Fixed("Sorry, this trip is sold out.\nPlease select another trip or search again."),
        Language.AM: Fixed("ይቅርታ፣ ይህ ጉዞ ተሽጧል።\nእባክዎን ሌላ ጉዞ ይምረጡ ወይም እንደገና ይፈልጉ።"),
    },
    MessageKey.BOOKING_HALTED: {
        Language.EN: Fixed("Booking is halted for this trip.\nPlease try another trip or contact company."),
        Language.AM: Fixed("ለዚህ ጉዞ ቦታ ማስያዝ ቆሟል።\nእባክዎን ሌላ ጉዞ ይሞክሩ ወይም ኩባንያውን ያነጋግሩ።"),
    },
    MessageKey.SYSTEM_ERROR: {
        Language.EN: Formatted((), lambda: (
            f"System error. Please try again.\nIf problem persists, call: {_support()}"
        )),
        Language.AM: Formatted((), lambda: (
            f"የስርዓት ስህተት። እባክዎን እንደገና ይሞክሩ።\nችግሩ ከቀጠለ፣ ይደውሉ: {_support()}"
        )),
    },
}


def get_message(key: MessageKey, language: Language, **params: object) -> str:
    """Resolve and render a message in the given language"""
    return MESSAGES[key][language].render(**params)


AMHARIC_KEYWORDS = ("መጽሐፍ", "ማረጋገጫ", "እርዳታ", "ሁኔታ", "ሰርዝ")


def detect_language(message: str) -> Language:
    """Amharic if the text has Ethiopic script or starts with an Amharic command"""
    if TextSanitizer.contains_ethiopic(message):
        return Language.AM

    words = (message or "").split()
    first_word = words[0].upper() if words else ""
    if any(keyword in first_word for keyword in AMHARIC_KEYWORDS):
        return Language.AM

    return Language.EN
