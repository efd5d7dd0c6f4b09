"""
Tests for the SMS session store
"""
import asyncio
import re
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sms_bot.core.clock import utcnow
from sms_bot.core.exceptions import ConcurrentSessionUpdateError, SessionNotFoundError
from sms_bot.db.database import Base
from sms_bot.db.models.sms_session import SmsSession
from sms_bot.state_machine.session_store import SessionStore, generate_session_id
from sms_bot.state_machine.states import BotState, is_valid_transition


async def _expire(db_session, session_id: str) -> None:
    await db_session.execute(
        update(SmsSession)
        .where(SmsSession.session_id == session_id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()


class TestSessionId:

    @pytest.mark.unit
    def test_format(self):
        assert re.fullmatch(r"sess_[0-9a-z]+_[0-9a-f]{16}", generate_session_id())

    @pytest.mark.unit
    def test_unique(self):
        assert len({generate_session_id() for _ in range(100)}) == 100


class TestGetOrCreate:

    @pytest.mark.unit
    async def test_new_session_defaults(self, db_session, phone):
        session = await SessionStore(db_session).get_or_create(phone)

        assert session.phone == phone
        assert session.state == BotState.IDLE.value
        assert session.language == "EN"
        assert session.passenger_data == []
        assert session.message_count == 0
        assert session.version == 0
        assert session.expires_at - session.created_at == timedelta(minutes=15)

    @pytest.mark.unit
    async def test_returns_existing_live_session(self, db_session, phone):
        store = SessionStore(db_session)
        first = await store.get_or_create(phone)

        assert (await store.get_or_create(phone)).session_id == first.session_id

    @pytest.mark.unit
    async def test_expired_session_is_replaced(self, db_session, phone):
        store = SessionStore(db_session)
        first = await store.get_or_create(phone)
        await _expire(db_session, first.session_id)

        second = await store.get_or_create(phone)

        assert second.session_id != first.session_id
        assert second.state == BotState.IDLE.value

    @pytest.mark.unit
    async def test_phones_are_isolated(self, db_session):
        store = SessionStore(db_session)
        a = await store.get_or_create("0911111111")
        b = await store.get_or_create("0922222222")
        assert a.session_id != b.session_id


@pytest.fixture
async def separate_connections(tmp_path):
    """Session factory whose sessions each get their own SQLite connection"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def _get_or_create_twice(session_maker, phone: str) -> list[SmsSession]:
    async with session_maker() as first, session_maker() as second:
        return await asyncio.gather(
            SessionStore(first).get_or_create(phone),
            SessionStore(second).get_or_create(phone),
        )


async def _rows_for(session_maker, phone: str) -> int:
    async with session_maker() as db:
        return await db.scalar(select(func.count(SmsSession.id)).where(SmsSession.phone == phone))


class TestSimultaneousFirstMessages:

    @pytest.mark.integration
    async def test_one_session_per_phone(self, separate_connections, phone):
        a, b = await _get_or_create_twice(separate_connections, phone)

        assert a.session_id == b.session_id
        assert await _rows_for(separate_connections, phone) == 1

    @pytest.mark.integration
    async def test_expired_session_renewed_once(self, separate_connections, phone):
        async with separate_connections() as db:
            old = await SessionStore(db).get_or_create(phone)
            await _expire(db, old.session_id)

        a, b = await _get_or_create_twice(separate_connections, phone)

        assert a.session_id == b.session_id != old.session_id
        assert a.state == BotState.IDLE.value
        assert await _rows_for(separate_connections, phone) == 1

    @pytest.mark.unit
    async def test_renewal_resets_conversation(self, db_session, phone):
        store = SessionStore(db_session)
        old = await store.get_or_create(phone)
        await store.update(old.session_id, {
            "state": BotState.ASK_PASSENGER_NAME,
            "selected_trip_id": "trip-1",
            "passenger_count": 2,
        })
        await _expire(db_session, old.session_id)

        renewed = await store.get_or_create(phone)

        assert renewed.selected_trip_id is None
        assert renewed.passenger_count is None
        assert renewed.message_count == 0
        assert renewed.version == 0

    @pytest.mark.unit
    async def test_turn_on_expired_session_id_is_refused(self, db_session, phone):
        store = SessionStore(db_session)
        old = await store.get_or_create(phone)
        await _expire(db_session, old.session_id)
        await store.get_or_create(phone)

        with pytest.raises(SessionNotFoundError):
            await store.update(old.session_id, {"state": BotState.IDLE}, expected_version=old.version)


class TestGet:

    @pytest.mark.unit
    async def test_unknown(self, db_session):
        assert await SessionStore(db_session).get("sess_missing") is None

    @pytest.mark.unit
    async def test_expired_is_absent(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)
        await _expire(db_session, session.session_id)

        assert await store.get(session.session_id) is None
        assert await store.find_active_by_phone(phone) is None


class TestUpdate:

    @pytest.mark.unit
    async def test_merges_fields_and_records_turn(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)
        old_expiry = session.expires_at

        updated = await store.update(session.session_id, {
            "state": BotState.SELECT_TRIP,
            "origin": "Addis Ababa",
            "search_trip_ids": ["t1", "t2"],
        })

        assert updated.state == "SELECT_TRIP"
        assert updated.origin == "Addis Ababa"
        assert updated.search_trip_ids == ["t1", "t2"]
        assert updated.language == "EN"
        assert updated.message_count == 1
        assert updated.version == 1
        assert updated.expires_at > old_expiry

    @pytest.mark.unit
    async def test_empty_update_still_counts(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)

        updated = await store.update(session.session_id, {})

        assert updated.message_count == 1
        assert updated.state == "IDLE"

    @pytest.mark.unit
    async def test_rejects_bookkeeping_fields(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)

        with pytest.raises(ValueError):
            await store.update(session.session_id, {"version": 99})
        with pytest.raises(ValueError):
            await store.update(session.session_id, {"phone": "0900000000"})

    @pytest.mark.unit
    async def test_unknown_session(self, db_session):
        with pytest.raises(SessionNotFoundError):
            await SessionStore(db_session).update("sess_missing", {"state": "IDLE"})

    @pytest.mark.unit
    async def test_expected_version_matches(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)

        updated = await store.update(session.session_id, {"origin": "Adama"}, expected_version=0)

        assert updated.version == 1

    @pytest.mark.unit
    async def test_stale_version_is_rejected(self, db_session, phone):
        """Second writer holding the old version loses and nothing changes"""
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)
        await store.update(session.session_id, {"origin": "Adama"}, expected_version=0)

        with pytest.raises(ConcurrentSessionUpdateError):
            await store.update(session.session_id, {"origin": "Bahir Dar"}, expected_version=0)

        current = await store.get(session.session_id)
        assert current.origin == "Adama"
        assert current.message_count == 1


class TestClaim:

    @pytest.mark.unit
    async def test_claim_bumps_version(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)

        assert await store.claim(session.session_id, 0) == 1
        updated = await store.update(session.session_id, {"booking_id": "bk_1"}, expected_version=1)

        assert updated.version == 2
        assert updated.message_count == 1

    @pytest.mark.unit
    async def test_claim_with_stale_version(self, db_session, phone):
        store = SessionStore(db_session)
        session = await store.get_or_create(phone)
        await store.claim(session.session_id, 0)

        with pytest.raises(ConcurrentSessionUpdateError):
            await store.claim(session.session_id, 0)

    @pytest.mark.unit
    async def test_claim_missing_session(self, db_session):
        with pytest.raises(SessionNotFoundError):
            await SessionStore(db_session).claim("sess_missing", 0)


class TestResolvePayment:

    async def _waiting(self, store, phone, booking_id="bk_1"):
        session = await store.get_or_create(phone)
        return await store.update(session.session_id, {
            "state": BotState.WAIT_PAYMENT,
            "booking_id": booking_id,
        })

    @pytest.mark.unit
    async def test_moves_waiting_session(self, db_session, phone):
        store = SessionStore(db_session)
        waiting = await self._waiting(store, phone)

        resolved = await store.resolve_payment(phone, "bk_1", BotState.PAYMENT_SUCCESS)

        assert resolved.state == "PAYMENT_SUCCESS"
        assert resolved.version == waiting.version + 1
        assert resolved.message_count == waiting.message_count
        assert resolved.expires_at == waiting.expires_at

    @pytest.mark.unit
    async def test_other_booking_is_untouched(self, db_session, phone):
        store = SessionStore(db_session)
        await self._waiting(store, phone, booking_id="bk_2")

        resolved = await store.resolve_payment(phone, "bk_1", BotState.IDLE)

        assert resolved.state == "WAIT_PAYMENT"

    @pytest.mark.unit
    async def test_no_live_session(self, db_session, phone):
        assert await SessionStore(db_session).resolve_payment(phone, "bk_1", BotState.IDLE) is None


class TestMaintenance:

    @pytest.mark.unit
    async def test_cleanup_removes_only_expired(self, db_session):
        store = SessionStore(db_session)
        stale = await store.get_or_create("0911111111")
        live = await store.get_or_create("0922222222")
        await _expire(db_session, stale.session_id)

        assert await store.cleanup_expired() == 1

        remaining = (await db_session.execute(select(SmsSession.session_id))).scalars().all()
        assert remaining == [live.session_id]

    @pytest.mark.unit
    async def test_cleanup_nothing_to_do(self, db_session):
        assert await SessionStore(db_session).cleanup_expired() == 0

    @pytest.mark.unit
    async def test_stats(self, db_session):
        store = SessionStore(db_session)
        stale = await store.get_or_create("0911111111")
        await store.get_or_create("0922222222")
        await _expire(db_session, stale.session_id)

        stats = await store.stats()

        assert stats["active"] == 1
        assert stats["total"] == 2
        assert stats["last_hour"] == 2
        assert "timestamp" in stats


class TestTransitions:

    @pytest.mark.unit
    @pytest.mark.parametrize("current, target", [
        (BotState.IDLE, BotState.SELECT_TRIP),
        (BotState.ASK_PASSENGER_ID, BotState.ASK_PASSENGER_NAME),
        (BotState.CONFIRM_BOOKING, BotState.WAIT_PAYMENT),
        (BotState.PAYMENT_SUCCESS, BotState.SELECT_TRIP),
        (BotState.WAIT_PAYMENT, BotState.IDLE),
        (BotState.ASK_PASSENGER_COUNT, BotState.ASK_PASSENGER_COUNT),
    ])
    def test_allowed(self, current, target):
        assert is_valid_transition(current, target)

    @pytest.mark.unit
    @pytest.mark.parametrize("current, target", [
        (BotState.IDLE, BotState.CONFIRM_BOOKING),
        (BotState.SELECT_TRIP, BotState.WAIT_PAYMENT),
        (BotState.WAIT_PAYMENT, BotState.SELECT_TRIP),
        (BotState.IDLE, BotState.SEARCH),
    ])
    def test_rejected(self, current, target):
        assert not is_valid_transition(current, target)

    @pytest.mark.unit
    def test_coerce_unknown_state(self):
        assert BotState.coerce("BOGUS") == BotState.IDLE
        assert BotState.coerce("WAIT_PAYMENT") == BotState.WAIT_PAYMENT
