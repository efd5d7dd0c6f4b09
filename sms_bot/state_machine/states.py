"""
State Definitions for the SMS Booking Flow
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BotState(str, Enum):
    """Conversation positions of an SMS booking session"""

    IDLE = "IDLE"
    # Declared for a future step-by-step search; nothing transitions into it
    SEARCH = "SEARCH"
    SELECT_TRIP = "SELECT_TRIP"
    ASK_PASSENGER_COUNT = "ASK_PASSENGER_COUNT"
    ASK_PASSENGER_NAME = "ASK_PASSENGER_NAME"
    ASK_PASSENGER_ID = "ASK_PASSENGER_ID"
    CONFIRM_BOOKING = "CONFIRM_BOOKING"
    WAIT_PAYMENT = "WAIT_PAYMENT"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"

    @classmethod
    def coerce(cls, value: str | None) -> "BotState":
        """Map a stored value to a state; unknown values fall back to IDLE"""
        try:
            return cls(value)
        except ValueError:
            return cls.IDLE


# Forward transitions only. Re-entering the current state (re-prompt, HELP,
# CHECK) and returning to IDLE (CANCEL, fallback, errors) are always allowed.
BOOKING_TRANSITIONS: dict[BotState, frozenset[BotState]] = {
    BotState.IDLE: frozenset({BotState.SELECT_TRIP}),
    BotState.SEARCH: frozenset(),
    BotState.SELECT_TRIP: frozenset({BotState.ASK_PASSENGER_COUNT}),
    BotState.ASK_PASSENGER_COUNT: frozenset({BotState.ASK_PASSENGER_NAME}),
    BotState.ASK_PASSENGER_NAME: frozenset({BotState.ASK_PASSENGER_ID}),
    BotState.ASK_PASSENGER_ID: frozenset({BotState.ASK_PASSENGER_NAME, BotState.CONFIRM_BOOKING}),
    BotState.CONFIRM_BOOKING: frozenset({BotState.WAIT_PAYMENT}),
    # Driven by the payment callback, not by passenger messages
    BotState.WAIT_PAYMENT: frozenset({BotState.PAYMENT_SUCCESS}),
    # A finished conversation can start a new search right away
    BotState.PAYMENT_SUCCESS: frozenset({BotState.SELECT_TRIP}),
}


def is_valid_transition(current: BotState, target: BotState) -> bool:
    """Check if transition from current to target state is valid"""
    if target == current or target == BotState.IDLE:
        return True
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


@dataclass
class StateTransition:
    """Outcome of one turn: where the session goes, what to reply, what to store"""

    next_state: BotState
    reply: str
    updates: dict[str, Any] = field(default_factory=dict)
    # Set when the handler already bumped the session version (see SessionStore.claim)
    claimed_version: int | None = None
