"""
Command & Date Parser

Turns raw SMS text into structured intents: global commands, the BOOK entry
command, travel dates, menu selections and yes/no confirmations. Every
command keyword has an English and an Amharic form.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

HELP_KEYWORDS = frozenset({"HELP", "እርዳታ"})
CANCEL_KEYWORDS = frozenset({"CANCEL", "ሰርዝ"})
CHECK_KEYWORDS = frozenset({"CHECK", "ማረጋገጫ"})
BOOK_KEYWORDS = frozenset({"BOOK", "መጽሐፍ"})

TODAY_KEYWORDS = frozenset({"TODAY", "ዛሬ"})
TOMORROW_KEYWORDS = frozenset({"TOMORROW", "ነገ"})

YES_KEYWORDS = frozenset({"YES", "Y", "አዎ"})
NO_KEYWORDS = frozenset({"NO", "N", "አይ"})

DEFAULT_DATE_TOKEN = "TODAY"

MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

_DAY_RE = re.compile(r"^(\d{1,2})$")
_MONTH_DAY_RE = re.compile(r"^([A-Za-z]{3})(\d{1,2})$")
_INTEGER_RE = re.compile(r"^\d+$")


class CommandType(str, Enum):
    HELP = "HELP"
    CANCEL = "CANCEL"
    CHECK = "CHECK"


@dataclass(frozen=True)
class GlobalCommand:
    command: CommandType
    code: str | None = None


@dataclass(frozen=True)
class BookCommand:
    """A BOOK request. ``complete`` is False when origin or destination is missing."""

    origin: str | None = None
    destination: str | None = None
    date_token: str = DEFAULT_DATE_TOKEN

    @property
    def complete(self) -> bool:
        return bool(self.origin and self.destination)


class Confirmation(str, Enum):
    YES = "YES"
    NO = "NO"
    OTHER = "OTHER"


def _tokens(message: str) -> list[str]:
    return (message or "").strip().split()


def parse_global_command(message: str) -> GlobalCommand | None:
    """Recognize HELP, CANCEL and CHECK <code>, which apply in every state"""
    text = (message or "").strip().upper()
    if text in HELP_KEYWORDS:
        return GlobalCommand(CommandType.HELP)
    if text in CANCEL_KEYWORDS:
        return GlobalCommand(CommandType.CANCEL)

    tokens = _tokens(message)
    if tokens and tokens[0].upper() in CHECK_KEYWORDS:
        return GlobalCommand(CommandType.CHECK, code=tokens[1] if len(tokens) > 1 else None)
    return None


def parse_book_command(message: str) -> BookCommand | None:
    """
    Parse ``BOOK <origin> <destination> [<date>]``.

    Returns None if the message is not a BOOK command at all, and an
    incomplete BookCommand if fewer than two locations were given.
    """
    tokens = _tokens(message)
    if not tokens or tokens[0].upper() not in BOOK_KEYWORDS:
        return None

    args = tokens[1:]
    if len(args) < 2:
        return BookCommand()

    return BookCommand(
        origin=args[0],
        destination=args[1],
        date_token=args[2] if len(args) > 2 else DEFAULT_DATE_TOKEN,
    )


def _next_day_of_month(day: int, today: date) -> date:
    """First date on or after today falling on ``day``, skipping months that lack it"""
    year, month = today.year, today.month
    while True:
        if day <= calendar.monthrange(year, month)[1]:
            candidate = date(year, month, day)
            if candidate >= today:
                return candidate
        month += 1
        if month > 12:
            year, month = year + 1, 1


def _next_month_day(month: int, day: int, today: date) -> date:
    """First date on or after today falling on ``month``/``day`` (Feb 29 waits for a leap year)"""
    year = today.year
    # A leap day is at most 8 years away (e.g. 2096 -> 2104)
    for _ in range(9):
        if day <= calendar.monthrange(year, month)[1]:
            candidate = date(year, month, day)
            if candidate >= today:
                return candidate
        year += 1
    return today


def parse_date(token: str | None, today: date) -> date:
    """
    Resolve a travel date token against ``today`` (local calendar day).

    Accepts TODAY/TOMORROW (either language), a bare day of month ("25")
    or a month abbreviation with a day ("JAN15"). Past days roll forward to
    their next occurrence; anything unparseable means today.
    """
    text = (token or "").strip()
    upper = text.upper()

    if not text or upper in TODAY_KEYWORDS:
        return today
    if upper in TOMORROW_KEYWORDS:
        return today + timedelta(days=1)

    day_match = _DAY_RE.match(text)
    if day_match:
        day = int(day_match.group(1))
        if not 1 <= day <= 31:
            return today
        return _next_day_of_month(day, today)

    month_day_match = _MONTH_DAY_RE.match(text)
    if month_day_match:
        month = MONTHS.get(month_day_match.group(1).upper())
        day = int(month_day_match.group(2))
        if month is None or not 1 <= day <= calendar.monthrange(2000, month)[1]:
            return today
        return _next_month_day(month, day, today)

    return today


def parse_selection(message: str, maximum: int, minimum: int = 1) -> int | None:
    """Clean integer within [minimum, maximum], else None"""
    text = (message or "").strip()
    if not _INTEGER_RE.match(text):
        return None
    value = int(text)
    if value < minimum or value > maximum:
        return None
    return value


def parse_confirmation(message: str) -> Confirmation:
    text = (message or "").strip().upper()
    if text in YES_KEYWORDS:
        return Confirmation.YES
    if text in NO_KEYWORDS:
        return Confirmation.NO
    return Confirmation.OTHER
