"""
SMS Bot - the inbound entry point.

One call handles one turn: load or create the phone's session, detect the
language on the first turn, intercept global commands, route to the state
handler and persist the result in a single versioned update.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.exceptions import ConcurrentSessionUpdateError, InvalidStateTransitionError
from sms_bot.core.logging import get_logger, set_sms_session_id
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.domain.services.booking_client import BookingService, HttpBookingService
from sms_bot.domain.services.booking_orchestrator import BookingOrchestrator, SqlPaymentRecords
from sms_bot.domain.services.payment import BasePaymentProvider, get_payment_provider
from sms_bot.domain.services.ticket_verification import SqlTicketLookup, TicketVerificationService
from sms_bot.domain.services.trip_search import SqlTripSearch
from sms_bot.state_machine.handlers import BookingStateHandler
from sms_bot.state_machine.messages import Language, MessageKey, detect_language, get_message
from sms_bot.state_machine.parser import CommandType, parse_global_command
from sms_bot.state_machine.session_store import SessionRepository, SessionStore
from sms_bot.state_machine.states import BotState, StateTransition, is_valid_transition

logger = get_logger(__name__)


class SmsBot:
    """Conversational booking engine behind the SMS shortcode"""

    def __init__(
        self,
        sessions: SessionRepository,
        handler: BookingStateHandler,
        tickets: TicketVerificationService,
    ):
        self.sessions = sessions
        self.handler = handler
        self.tickets = tickets

    @classmethod
    def from_db(
        cls,
        db: AsyncSession,
        bookings: BookingService | None = None,
        payment_provider: BasePaymentProvider | None = None,
    ) -> "SmsBot":
        """Wire the bot against the database and the live booking/payment services"""
        sessions = SessionStore(db)
        trips = SqlTripSearch(db)
        orchestrator = BookingOrchestrator(
            trips=trips,
            bookings=bookings or HttpBookingService(),
            payment_provider=payment_provider or get_payment_provider(),
            payment_records=SqlPaymentRecords(db),
        )
        return cls(
            sessions=sessions,
            handler=BookingStateHandler(sessions, trips, orchestrator),
            tickets=TicketVerificationService(SqlTicketLookup(db)),
        )

    async def process_message(self, phone: str, message: str) -> str:
        """Handle one inbound SMS and return the reply text"""
        try:
            return await self._process(phone, message)
        except Exception as e:
            logger.exception(
                "Error processing SMS",
                extra_data={
                    "phone": PhoneNumberValidator.mask(phone),
                    "error": str(e),
                }
            )
            return get_message(MessageKey.SYSTEM_ERROR, detect_language(message or ""))

    async def _process(self, phone: str, message: str) -> str:
        session = await self.sessions.get_or_create(phone)
        session_id = session.session_id
        set_sms_session_id(session_id)

        updates: dict = {}
        if not session.message_count:
            lang = detect_language(message)
            updates["language"] = lang.value
        else:
            lang = Language.coerce(session.language)

        current = BotState.coerce(session.state)
        try:
            transition = await self._route(session, message, lang)
        except ConcurrentSessionUpdateError:
            return self._busy(session_id, current, lang)
        updates.update(transition.updates)

        if not is_valid_transition(current, transition.next_state):
            raise InvalidStateTransitionError(current.value, transition.next_state.value)
        updates["state"] = transition.next_state.value

        expected_version = (
            transition.claimed_version if transition.claimed_version is not None else session.version
        )
        try:
            await self.sessions.update(session_id, updates, expected_version=expected_version)
        except ConcurrentSessionUpdateError:
            if "booking_id" in transition.updates:
                # The booking already exists downstream; its id must not be lost
                await self.sessions.update(session_id, updates)
                return transition.reply
            return self._busy(session_id, current, lang)

        logger.info(
            "SMS turn processed",
            extra_data={
                "session_id": session_id,
                "from_state": current.value,
                "to_state": transition.next_state.value,
            }
        )
        return transition.reply

    def _busy(self, session_id: str, current: BotState, lang: Language) -> str:
        logger.warning(
            "Concurrent message for SMS session, turn dropped",
            extra_data={"session_id": session_id, "state": current.value}
        )
        return get_message(MessageKey.SESSION_BUSY, lang)

    async def _route(self, session: SmsSession, message: str, lang: Language) -> StateTransition:
        """Global commands first, then the handler for the current state"""
        state = BotState.coerce(session.state)
        command = parse_global_command(message)

        if command is not None:
            if command.command == CommandType.HELP:
                return StateTransition(state, get_message(MessageKey.HELP, lang))
            if command.command == CommandType.CANCEL:
                return StateTransition(BotState.IDLE, get_message(MessageKey.SESSION_CANCELLED, lang))
            return StateTransition(state, await self.tickets.check(command.code, lang))

        return await self.handler.handle(session, message, lang)
