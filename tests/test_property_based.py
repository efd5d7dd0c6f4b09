"""
Property-based tests with hypothesis.

Invariants checked:
1. Travel dates never resolve to the past
2. SMS segments fit the length limit and lose nothing
3. Booking totals are whole cents and never below the ticket total
4. Parsed selections stay within the offered range
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import (
    dates,
    decimals,
    integers,
    just,
    lists,
    one_of,
    sampled_from,
    text,
    tuples,
)

from sms_bot.domain.services.pricing import calculate_booking_amounts
from sms_bot.domain.services.sms_gateway import split_message
from sms_bot.state_machine.parser import MONTHS, parse_date, parse_selection

TODAYS = dates(min_value=date(2020, 1, 1), max_value=date(2090, 12, 31))

LINE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcxyz0123456789 .,:-→"


# Valid and invalid date tokens as passengers type them
DATE_TOKENS = one_of(
    sampled_from(["TODAY", "TOMORROW", "today", "ዛሬ", "ነገ", "", "NEXTWEEK"]),
    integers(min_value=0, max_value=40).map(str),
    tuples(sampled_from(sorted(MONTHS)), integers(min_value=0, max_value=32)).map(
        lambda month_day: f"{month_day[0]}{month_day[1]}"
    ),
    text(max_size=8),
    just(None),
)


class TestParseDateProperties:

    @pytest.mark.unit
    @given(token=DATE_TOKENS, today=TODAYS)
    def test_never_in_the_past(self, token, today):
        assert parse_date(token, today) >= today

    @pytest.mark.unit
    @given(day=integers(min_value=1, max_value=31), today=TODAYS)
    def test_bare_day_within_two_months(self, day, today):
        resolved = parse_date(str(day), today)

        assert resolved.day == day
        assert resolved - today <= timedelta(days=62)


class TestSplitMessageProperties:

    @pytest.mark.unit
    @given(message=text(max_size=800), max_length=integers(min_value=20, max_value=200))
    def test_segments_fit(self, message, max_length):
        assert all(len(chunk) <= max_length for chunk in split_message(message, max_length))

    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(
        lines=lists(text(alphabet=LINE_ALPHABET, min_size=1, max_size=60), min_size=1, max_size=30),
        max_length=integers(min_value=60, max_value=200),
    )
    def test_line_boundaries_preserve_text(self, lines, max_length):
        message = "\n".join(lines)

        chunks = split_message(message, max_length)

        assert "\n".join(chunks) == message


class TestPricingProperties:

    @pytest.mark.unit
    @given(
        price=decimals(min_value=Decimal("1"), max_value=Decimal("10000"), places=2),
        passengers=integers(min_value=1, max_value=5),
    )
    def test_total_in_cents_and_covers_tickets(self, price, passengers):
        amounts = calculate_booking_amounts(price, passengers)

        assert amounts.total_amount == amounts.total_amount.quantize(Decimal("0.01"))
        assert amounts.total_amount >= price * passengers

    @pytest.mark.unit
    @given(
        price=decimals(min_value=Decimal("1"), max_value=Decimal("10000"), places=2),
        passengers=integers(min_value=1, max_value=4),
    )
    def test_more_passengers_cost_more(self, price, passengers):
        assert (
            calculate_booking_amounts(price, passengers + 1).total_amount
            > calculate_booking_amounts(price, passengers).total_amount
        )


class TestSelectionProperties:

    @pytest.mark.unit
    @given(message=text(max_size=6), maximum=integers(min_value=1, max_value=10))
    def test_result_in_range(self, message, maximum):
        selection = parse_selection(message, maximum)
        assert selection is None or 1 <= selection <= maximum
