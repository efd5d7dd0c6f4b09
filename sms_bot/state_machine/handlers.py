"""
State Handlers - process a message based on the session's current state.

Each handler returns a StateTransition (next state, reply, fields to store)
and never writes the session itself; SmsBot persists the whole turn at once.
Failed validation re-enters the same state with a corrective reply.
"""

from sms_bot.core.clock import local_today
from sms_bot.core.config import settings
from sms_bot.core.logging import get_logger
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.domain.services.booking_orchestrator import (
    BookingOrchestrator,
    BookingOutcome,
    BookingResult,
)
from sms_bot.domain.services.pricing import calculate_booking_amounts, calculate_commission
from sms_bot.domain.services.trip_search import TripSearch
from sms_bot.state_machine.messages import Language, MessageKey, get_message
from sms_bot.state_machine.parser import (
    Confirmation,
    parse_book_command,
    parse_confirmation,
    parse_date,
    parse_selection,
)
from sms_bot.state_machine.session_store import SessionRepository
from sms_bot.state_machine.states import BotState, StateTransition
from sms_bot.state_machine.views import PassengerView

logger = get_logger(__name__)

MIN_NAME_LENGTH = 2
MIN_ID_LENGTH = 3

# Fields cleared whenever a new search starts
_BOOKING_FLOW_RESET = {
    "selected_trip_id": None,
    "passenger_count": None,
    "current_passenger_index": 0,
    "passenger_data": [],
    "pending_passenger_name": None,
    "booking_id": None,
}


class BookingStateHandler:
    """Handles the SMS booking conversation"""

    def __init__(
        self,
        sessions: SessionRepository,
        trips: TripSearch,
        orchestrator: BookingOrchestrator,
    ):
        self.sessions = sessions
        self.trips = trips
        self.orchestrator = orchestrator

    async def handle(self, session: SmsSession, message: str, lang: Language) -> StateTransition:
        state = BotState.coerce(session.state)
        handler = self._get_handler(session.state)
        return await handler(session, message, lang, state)

    def _get_handler(self, state: str):
        """Get handler function for state"""
        handlers = {
            BotState.IDLE.value: self._handle_idle,
            BotState.SEARCH.value: self._handle_search,
            BotState.SELECT_TRIP.value: self._handle_select_trip,
            BotState.ASK_PASSENGER_COUNT.value: self._handle_passenger_count,
            BotState.ASK_PASSENGER_NAME.value: self._handle_passenger_name,
            BotState.ASK_PASSENGER_ID.value: self._handle_passenger_id,
            BotState.CONFIRM_BOOKING.value: self._handle_confirm_booking,
            # A paid-up conversation can start over straight away
            BotState.PAYMENT_SUCCESS.value: self._handle_idle,
        }
        return handlers.get(state, self._handle_unknown)

    # ==================== Search ====================

    async def _handle_idle(self, session: SmsSession, message: str, lang: Language, state: BotState):
        """BOOK <origin> <destination> [<date>] starts a search; anything else gets the welcome"""
        command = parse_book_command(message)
        if command is None:
            return StateTransition(BotState.IDLE, get_message(MessageKey.WELCOME, lang))

        if not command.complete:
            return StateTransition(BotState.IDLE, get_message(MessageKey.HELP, lang))

        travel_date = parse_date(command.date_token, local_today())
        trips = await self.trips.search(command.origin, command.destination, travel_date)

        if not trips:
            reply = get_message(
                MessageKey.NO_TRIPS_FOUND,
                lang,
                origin=command.origin,
                destination=command.destination,
                date=command.date_token,
            )
            return StateTransition(BotState.IDLE, reply)

        reply = get_message(
            MessageKey.SEARCH_RESULTS,
            lang,
            origin=trips[0].origin,
            destination=trips[0].destination,
            date=command.date_token,
            trips=trips,
        )
        return StateTransition(
            BotState.SELECT_TRIP,
            reply,
            {
                **_BOOKING_FLOW_RESET,
                "origin": trips[0].origin,
                "destination": trips[0].destination,
                "date": travel_date.isoformat(),
                "search_trip_ids": [trip.id for trip in trips],
            },
        )

    async def _handle_search(self, session: SmsSession, message: str, lang: Language, state: BotState):
        """Reserved for a step-by-step search; nothing routes here"""
        return StateTransition(BotState.IDLE, get_message(MessageKey.INVALID_INPUT, lang))

    async def _handle_select_trip(self, session: SmsSession, message: str, lang: Language, state: BotState):
        listed = list(session.search_trip_ids or [])
        selection = parse_selection(message, maximum=len(listed)) if listed else None
        if selection is None:
            return StateTransition(state, get_message(MessageKey.INVALID_INPUT, lang))

        # Re-read the trip: seats and halt status may have changed since the listing
        trip = await self.trips.get_trip(listed[selection - 1])
        if trip is None or not trip.is_active:
            return StateTransition(state, get_message(MessageKey.INVALID_INPUT, lang))
        if trip.available_slots <= 0:
            return StateTransition(state, get_message(MessageKey.TRIP_SOLD_OUT, lang))
        if trip.booking_halted:
            return StateTransition(state, get_message(MessageKey.BOOKING_HALTED, lang))

        fee = calculate_commission(trip.price).total_commission
        return StateTransition(
            BotState.ASK_PASSENGER_COUNT,
            get_message(MessageKey.TRIP_SELECTED, lang, trip=trip, fee=fee),
            {"selected_trip_id": trip.id},
        )

    # ==================== Passengers ====================

    async def _handle_passenger_count(self, session: SmsSession, message: str, lang: Language, state: BotState):
        count = parse_selection(message, maximum=settings.MAX_PASSENGERS)
        if count is None:
            return StateTransition(
                state,
                get_message(MessageKey.INVALID_PASSENGER_COUNT, lang, maximum=settings.MAX_PASSENGERS),
            )

        trip = await self.trips.get_trip(session.selected_trip_id) if session.selected_trip_id else None
        if trip is None:
            return StateTransition(BotState.IDLE, get_message(MessageKey.SYSTEM_ERROR, lang))
        if count > trip.available_slots:
            if trip.available_slots <= 0:
                return StateTransition(BotState.IDLE, get_message(MessageKey.TRIP_SOLD_OUT, lang))
            return StateTransition(
                state,
                get_message(MessageKey.NOT_ENOUGH_SEATS, lang, available=trip.available_slots),
            )

        return StateTransition(
            BotState.ASK_PASSENGER_NAME,
            get_message(MessageKey.ASK_PASSENGER_NAME, lang, index=1, total=count),
            {
                "passenger_count": count,
                "current_passenger_index": 0,
                "passenger_data": [],
                "pending_passenger_name": None,
            },
        )

    async def _handle_passenger_name(self, session: SmsSession, message: str, lang: Language, state: BotState):
        name = (message or "").strip()
        if len(name) < MIN_NAME_LENGTH:
            return StateTransition(state, get_message(MessageKey.NAME_TOO_SHORT, lang))

        return StateTransition(
            BotState.ASK_PASSENGER_ID,
            get_message(
                MessageKey.ASK_PASSENGER_ID,
                lang,
                index=(session.current_passenger_index or 0) + 1,
                total=session.passenger_count,
            ),
            {"pending_passenger_name": name},
        )

    async def _handle_passenger_id(self, session: SmsSession, message: str, lang: Language, state: BotState):
        national_id = (message or "").strip()
        if len(national_id) < MIN_ID_LENGTH:
            return StateTransition(state, get_message(MessageKey.ID_TOO_SHORT, lang))

        passengers = list(session.passenger_data or [])
        passengers.append({"name": session.pending_passenger_name, "id": national_id})
        updates = {
            "passenger_data": passengers,
            "current_passenger_index": len(passengers),
            "pending_passenger_name": None,
        }

        if len(passengers) < session.passenger_count:
            return StateTransition(
                BotState.ASK_PASSENGER_NAME,
                get_message(
                    MessageKey.ASK_PASSENGER_NAME,
                    lang,
                    index=len(passengers) + 1,
                    total=session.passenger_count,
                ),
                updates,
            )

        trip = await self.trips.get_trip(session.selected_trip_id) if session.selected_trip_id else None
        if trip is None:
            return StateTransition(BotState.IDLE, get_message(MessageKey.SYSTEM_ERROR, lang), updates)

        total = calculate_booking_amounts(trip.price, len(passengers)).total_amount
        return StateTransition(
            BotState.CONFIRM_BOOKING,
            get_message(
                MessageKey.BOOKING_SUMMARY,
                lang,
                trip=trip,
                passengers=[PassengerView(name=p["name"], id=p["id"]) for p in passengers],
                total=total,
            ),
            updates,
        )

    # ==================== Confirmation ====================

    async def _handle_confirm_booking(self, session: SmsSession, message: str, lang: Language, state: BotState):
        answer = parse_confirmation(message)
        if answer == Confirmation.NO:
            return StateTransition(BotState.IDLE, get_message(MessageKey.BOOKING_CANCELLED, lang))
        if answer == Confirmation.OTHER:
            return StateTransition(state, get_message(MessageKey.REPLY_YES_OR_NO, lang))

        # Only one YES per summary may reach the booking API
        claimed_version = await self.sessions.claim(session.session_id, session.version)

        result = await self.orchestrator.confirm(session)
        transition = self._booking_transition(result, lang)
        transition.claimed_version = claimed_version
        return transition

    @staticmethod
    def _booking_transition(result: BookingResult, lang: Language) -> StateTransition:
        if result.outcome == BookingOutcome.CONFIRMED:
            return StateTransition(
                BotState.WAIT_PAYMENT,
                get_message(
                    MessageKey.BOOKING_CONFIRMED,
                    lang,
                    booking_id=result.booking_id,
                    seats=result.seat_numbers,
                ),
                {"booking_id": result.booking_id},
            )

        if result.outcome == BookingOutcome.PAYMENT_FAILED:
            return StateTransition(
                BotState.IDLE,
                get_message(
                    MessageKey.BOOKING_CREATED_PAYMENT_ERROR,
                    lang,
                    booking_id=result.booking_id,
                    seats=result.seat_numbers,
                ),
                {"booking_id": result.booking_id},
            )

        if result.outcome == BookingOutcome.REJECTED:
            return StateTransition(
                BotState.IDLE,
                get_message(MessageKey.BOOKING_FAILED, lang, error=result.error),
            )

        return StateTransition(BotState.IDLE, get_message(MessageKey.SYSTEM_ERROR, lang))

    # ==================== Fallback ====================

    async def _handle_unknown(self, session: SmsSession, message: str, lang: Language, state: BotState):
        """States without a message handler (WAIT_PAYMENT, unknown values) go back to IDLE"""
        logger.info(
            "No handler for session state, resetting",
            extra_data={"session_id": session.session_id, "state": session.state}
        )
        return StateTransition(
            BotState.IDLE,
            get_message(MessageKey.INVALID_COMMAND, lang, command=(message or "").strip()),
        )
