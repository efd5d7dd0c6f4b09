"""
Session Store - durable per-phone conversation records with sliding expiry
"""
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.clock import utcnow
from sms_bot.core.config import settings
from sms_bot.core.exceptions import ConcurrentSessionUpdateError, SessionNotFoundError
from sms_bot.core.logging import get_logger
from sms_bot.core.validation import PhoneNumberValidator
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.state_machine.states import BotState

logger = get_logger(__name__)

# Fields a conversation turn may change; bookkeeping columns are owned by the store
UPDATABLE_FIELDS = frozenset({
    "state",
    "language",
    "origin",
    "destination",
    "date",
    "search_trip_ids",
    "selected_trip_id",
    "passenger_count",
    "current_passenger_index",
    "passenger_data",
    "pending_passenger_name",
    "booking_id",
})

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_session_id() -> str:
    """Opaque session handle: sess_<base36 epoch ms>_<16 hex chars>"""
    return f"sess_{_to_base36(int(time.time() * 1000))}_{secrets.token_hex(8)}"


def session_timeout() -> timedelta:
    return timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)


# Insert-or-renew rounds before a contended phone gives up
CREATE_ATTEMPTS = 3


def _fresh_fields(now: datetime) -> dict[str, Any]:
    """Column values of a session that has not seen a message yet"""
    return {
        "state": BotState.IDLE.value,
        "language": "EN",
        "origin": None,
        "destination": None,
        "date": None,
        "search_trip_ids": None,
        "selected_trip_id": None,
        "passenger_count": None,
        "current_passenger_index": 0,
        "passenger_data": [],
        "pending_passenger_name": None,
        "booking_id": None,
        "message_count": 0,
        "last_message_at": now,
        "expires_at": now + session_timeout(),
    }


class SessionRepository(Protocol):
    """What the conversation flow needs from session storage"""

    async def get_or_create(self, phone: str) -> SmsSession: ...

    async def get(self, session_id: str) -> SmsSession | None: ...

    async def update(
        self,
        session_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> SmsSession: ...

    async def claim(self, session_id: str, expected_version: int) -> int: ...


class SessionStore:
    """SQLAlchemy-backed session storage"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_for_phone(self, phone: str) -> SmsSession | None:
        result = await self.db.execute(
            select(SmsSession)
            .where(SmsSession.phone == phone, SmsSession.expires_at > utcnow())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load(self, session_id: str) -> SmsSession | None:
        result = await self.db.execute(
            select(SmsSession)
            .where(SmsSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _for_phone(self, phone: str) -> SmsSession | None:
        result = await self.db.execute(
            select(SmsSession)
            .where(SmsSession.phone == phone)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _insert(self, phone: str) -> SmsSession | None:
        """New row for a phone never seen; None when a concurrent message inserted first"""
        now = utcnow()
        session = SmsSession(
            session_id=generate_session_id(),
            phone=phone,
            version=0,
            created_at=now,
            **_fresh_fields(now),
        )
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "SMS session created concurrently, reusing it",
                extra_data={"phone": PhoneNumberValidator.mask(phone)}
            )
            return None
        await self.db.refresh(session)
        return session

    async def _renew(self, expired: SmsSession) -> SmsSession | None:
        """Restart an expired row under a new session id; None when another message renewed it first"""
        now = utcnow()
        session_id = generate_session_id()
        result = await self.db.execute(
            update(SmsSession)
            .where(
                SmsSession.id == expired.id,
                SmsSession.session_id == expired.session_id,
                SmsSession.expires_at <= now,
            )
            .values(session_id=session_id, version=0, created_at=now, **_fresh_fields(now))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if not result.rowcount:
            return None
        return await self._load(session_id)

    async def get_or_create(self, phone: str) -> SmsSession:
        """
        Return the phone's live session, or start a new one.

        Safe against two first messages from the same phone arriving together:
        the phone column is unique, so the losing message re-reads and joins
        the session the winner created.
        """
        for _ in range(CREATE_ATTEMPTS):
            existing = await self._for_phone(phone)
            if existing is not None and existing.expires_at > utcnow():
                return existing

            session = await (self._insert(phone) if existing is None else self._renew(existing))
            if session is not None:
                logger.info(
                    "SMS session created",
                    extra_data={
                        "session_id": session.session_id,
                        "phone": PhoneNumberValidator.mask(phone),
                    }
                )
                return session

        raise ConcurrentSessionUpdateError(f"phone:{PhoneNumberValidator.mask(phone)}", 0)

    async def get(self, session_id: str) -> SmsSession | None:
        """Session by handle; expired sessions are treated as absent"""
        session = await self._load(session_id)
        if session and session.expires_at <= utcnow():
            logger.debug("SMS session expired", extra_data={"session_id": session_id})
            return None
        return session

    async def find_active_by_phone(self, phone: str) -> SmsSession | None:
        return await self._active_for_phone(phone)

    async def update(
        self,
        session_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> SmsSession:
        """
        Merge fields into the session and record the turn.

        Always sets last_message_at, slides expires_at forward and bumps
        message_count and version. With ``expected_version`` the write only
        happens if nobody else updated the session since it was read.

        Raises:
            SessionNotFoundError: the row no longer exists
            ConcurrentSessionUpdateError: expected_version is stale
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update session fields: {sorted(unknown)}")

        current = await self.db.execute(
            select(SmsSession.expires_at).where(SmsSession.session_id == session_id)
        )
        previous_expiry = current.scalar_one_or_none()
        if previous_expiry is None:
            raise SessionNotFoundError(session_id)

        now = utcnow()
        expires_at = now + session_timeout()
        if expires_at <= previous_expiry:
            expires_at = previous_expiry + timedelta(microseconds=1)

        values = dict(fields)
        if "state" in values and isinstance(values["state"], BotState):
            values["state"] = values["state"].value
        values.update(
            last_message_at=now,
            expires_at=expires_at,
            message_count=SmsSession.message_count + 1,
            version=SmsSession.version + 1,
        )

        stmt = update(SmsSession).where(SmsSession.session_id == session_id)
        if expected_version is not None:
            stmt = stmt.where(SmsSession.version == expected_version)
        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            await self.db.commit()
            if await self._load(session_id) is None:
                raise SessionNotFoundError(session_id)
            raise ConcurrentSessionUpdateError(session_id, expected_version)

        await self.db.commit()
        return await self._load(session_id)

    async def claim(self, session_id: str, expected_version: int) -> int:
        """
        Take exclusive ownership of the next write by bumping the version.

        Used before side effects (booking creation) so a duplicate message
        racing on the same turn loses instead of booking twice. Returns the
        new version.
        """
        result = await self.db.execute(
            update(SmsSession)
            .where(SmsSession.session_id == session_id, SmsSession.version == expected_version)
            .values(version=SmsSession.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.commit()
            if await self._load(session_id) is None:
                raise SessionNotFoundError(session_id)
            raise ConcurrentSessionUpdateError(session_id, expected_version)

        await self.db.commit()
        return expected_version + 1

    async def resolve_payment(self, phone: str, booking_id: str, state: BotState) -> SmsSession | None:
        """
        Move the phone's session out of WAIT_PAYMENT once its booking is settled.

        Only a session still waiting on ``booking_id`` is moved; others are
        returned untouched. Not counted as a turn: message_count and expiry
        stay as they are. Returns None when the phone has no live session.
        """
        session = await self._active_for_phone(phone)
        if session is None:
            return None
        if session.booking_id != booking_id or session.state != BotState.WAIT_PAYMENT.value:
            return session

        result = await self.db.execute(
            update(SmsSession)
            .where(
                SmsSession.session_id == session.session_id,
                SmsSession.state == BotState.WAIT_PAYMENT.value,
            )
            .values(state=state.value, version=SmsSession.version + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount:
            logger.info(
                "SMS session settled by payment",
                extra_data={"session_id": session.session_id, "to_state": state.value}
            )
        return await self._load(session.session_id)

    async def cleanup_expired(self) -> int:
        """Delete every session past its expiry; returns the number removed"""
        result = await self.db.execute(
            delete(SmsSession).where(SmsSession.expires_at < utcnow())
        )
        await self.db.commit()

        removed = result.rowcount or 0
        if removed:
            logger.info("Expired SMS sessions cleaned up", extra_data={"removed": removed})
        return removed

    async def stats(self) -> dict[str, Any]:
        now = utcnow()
        one_hour_ago = now - timedelta(hours=1)

        active = await self.db.scalar(
            select(func.count(SmsSession.id)).where(SmsSession.expires_at > now)
        )
        total = await self.db.scalar(select(func.count(SmsSession.id)))
        last_hour = await self.db.scalar(
            select(func.count(SmsSession.id)).where(SmsSession.created_at >= one_hour_ago)
        )

        return {
            "active": active or 0,
            "total": total or 0,
            "last_hour": last_hour or 0,
            "timestamp": now.isoformat(),
        }
