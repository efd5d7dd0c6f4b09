"""
Booking price calculation.

Passengers pay the ticket price plus the platform commission, and VAT is
charged on the commission (not on the ticket). Intermediate values stay
exact; only the amount the passenger pays is rounded to santim.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sms_bot.core.config import settings

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CommissionBreakdown:
    base_commission: Decimal
    vat: Decimal
    total_commission: Decimal


@dataclass(frozen=True)
class BookingAmounts:
    ticket_total: Decimal
    commission: CommissionBreakdown
    total_amount: Decimal


def _rate(value: float) -> Decimal:
    return Decimal(str(value))


def calculate_commission(ticket_total: Decimal) -> CommissionBreakdown:
    """
    Example: 850 ETB -> 42.5 commission + 6.375 VAT = 48.875
    """
    base_commission = ticket_total * _rate(settings.COMMISSION_RATE)
    vat = base_commission * _rate(settings.VAT_RATE)
    return CommissionBreakdown(
        base_commission=base_commission,
        vat=vat,
        total_commission=base_commission + vat,
    )


def calculate_booking_amounts(ticket_price: Decimal, passenger_count: int) -> BookingAmounts:
    ticket_total = Decimal(ticket_price) * passenger_count
    commission = calculate_commission(ticket_total)
    total_amount = (ticket_total + commission.total_commission).quantize(CENTS, rounding=ROUND_HALF_UP)
    return BookingAmounts(
        ticket_total=ticket_total,
        commission=commission,
        total_amount=total_amount,
    )
