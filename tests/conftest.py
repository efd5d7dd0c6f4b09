"""
Shared fixtures: an in-memory SQLite database per test, the FastAPI client,
fakes for the booking API, TeleBirr and Redis, and row factories for
companies, trips, bookings, payments and tickets.
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import Response

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from sms_bot.core.clock import local_day_bounds_utc, local_today, utcnow
from sms_bot.core.exceptions import BookingRejectedError
from sms_bot.db.database import Base, get_db
from sms_bot.db.models.booking import Booking, BookingPassenger, BookingStatus
from sms_bot.db.models.company import Company
from sms_bot.db.models.payment import Payment, PaymentChannel, PaymentMethod, PaymentStatus
from sms_bot.db.models.ticket import Ticket
from sms_bot.db.models.trip import Trip
from sms_bot.domain.services.booking_client import BookingRequest, CreatedBooking
from sms_bot.domain.services.pricing import calculate_booking_amounts
from sms_bot.domain.services.payment.base_provider import (
    BasePaymentProvider,
    PaymentInitiation,
    PaymentRequest,
    PaymentStatusResult,
)
from sms_bot.state_machine.bot import SmsBot
from sms_bot.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PHONE = "0911223344"


@pytest.fixture(scope="function")
async def async_engine():
    """Fresh schema per test; StaticPool keeps the single in-memory connection alive"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, session_maker):
    """ASGI client whose requests and background deliveries share the test database"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    # Background deliveries open their own session
    with patch("sms_bot.api.webhooks.sms.AsyncSessionLocal", session_maker):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    app.dependency_overrides.clear()


# ============================================================================
# Mock External Services
# ============================================================================

@pytest.fixture
def mock_sms_gateway_api():
    """Mock the SMS gateway HTTP API"""
    with patch("httpx.AsyncClient") as mock_client:
        mock_response = MagicMock(spec=Response)
        mock_response.status_code = 200
        mock_response.is_success = True
        mock_response.text = '{"success": true}'
        mock_response.json.return_value = {"success": True}

        mock_instance = AsyncMock()
        mock_instance.post = AsyncMock(return_value=mock_response)
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)

        mock_client.return_value = mock_instance

        yield mock_instance


class FakeBookingService:
    """In-memory booking API: numbers seats from 1 and computes the server total"""

    def __init__(self) -> None:
        self.requests: list[BookingRequest] = []
        self.reject_with: str | None = None
        self.error: Exception | None = None
        self.total_amount: Decimal | None = None
        self.price = Decimal("850.00")
        self._counter = 0

    async def create_booking(self, request: BookingRequest) -> CreatedBooking:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.reject_with is not None:
            raise BookingRejectedError(self.reject_with, 400)

        self._counter += 1
        return CreatedBooking(
            booking_id=f"bk_{self._counter}",
            seat_numbers=list(range(1, len(request.passengers) + 1)),
            total_amount=(
                self.total_amount if self.total_amount is not None
                else calculate_booking_amounts(self.price, len(request.passengers)).total_amount
            ),
        )


class FakePaymentProvider(BasePaymentProvider):
    def __init__(self) -> None:
        self.requests: list[PaymentRequest] = []
        self.error: Exception | None = None
        self._counter = 0

    @property
    def provider_name(self) -> str:
        return "fake"

    async def initiate_payment(self, request: PaymentRequest) -> PaymentInitiation:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        self._counter += 1
        return PaymentInitiation(transaction_id=f"TXN-{self._counter}")

    async def check_status(self, transaction_id: str) -> PaymentStatusResult:
        return PaymentStatusResult(status="PENDING")

    def verify_callback_signature(self, payload: dict) -> bool:
        return True


@pytest.fixture
def fake_bookings() -> FakeBookingService:
    return FakeBookingService()


@pytest.fixture
def fake_payments() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def bot(db_session: AsyncSession, fake_bookings, fake_payments) -> SmsBot:
    """SMS bot on the test database with fake downstream services"""
    return SmsBot.from_db(db_session, bookings=fake_bookings, payment_provider=fake_payments)


# ============================================================================
# Test Data Factories
# ============================================================================

def _tomorrow_at(hour: int, minute: int = 0):
    """Naive UTC for a local time tomorrow"""
    start, _ = local_day_bounds_utc(local_today() + timedelta(days=1))
    return start + timedelta(hours=hour, minutes=minute)


@pytest.fixture
def tomorrow_at():
    return _tomorrow_at


@pytest.fixture
def phone() -> str:
    return PHONE


@pytest.fixture
def company_factory(db_session: AsyncSession):
    async def _create_company(
        name: str = "Selam Bus",
        phones: list[str] | None = None,
    ) -> Company:
        company = Company(name=name, phones=phones if phones is not None else ["0115551234"])
        db_session.add(company)
        await db_session.commit()
        await db_session.refresh(company)
        return company

    return _create_company


@pytest.fixture
def trip_factory(db_session: AsyncSession, company_factory):
    """Factory for creating trips (default: Addis Ababa -> Hawassa tomorrow 9:00 local)"""
    async def _create_trip(
        company: Company | None = None,
        origin: str = "Addis Ababa",
        destination: str = "Hawassa",
        departure_time=None,
        price: Decimal = Decimal("850.00"),
        total_slots: int = 45,
        available_slots: int = 45,
        is_active: bool = True,
        booking_halted: bool = False,
    ) -> Trip:
        company = company or await company_factory()
        trip = Trip(
            company_id=company.id,
            origin=origin,
            destination=destination,
            departure_time=departure_time or _tomorrow_at(9),
            price=price,
            total_slots=total_slots,
            available_slots=available_slots,
            is_active=is_active,
            booking_halted=booking_halted,
        )
        db_session.add(trip)
        await db_session.commit()
        await db_session.refresh(trip)
        return trip

    return _create_trip


@pytest.fixture
def booking_factory(db_session: AsyncSession):
    async def _create_booking(
        trip: Trip,
        phone: str = PHONE,
        passengers: list[tuple[str, str]] | None = None,
        status: BookingStatus = BookingStatus.PENDING,
        total_amount: Decimal = Decimal("898.88"),
        booking_id: str | None = None,
    ) -> Booking:
        passengers = passengers if passengers is not None else [("Abebe Kebede", "ID12345")]
        booking = Booking(
            trip_id=trip.id,
            phone=phone,
            status=status,
            total_amount=total_amount,
        )
        if booking_id:
            booking.id = booking_id
        db_session.add(booking)
        await db_session.flush()
        for seat, (name, national_id) in enumerate(passengers, start=1):
            db_session.add(BookingPassenger(
                booking_id=booking.id,
                name=name,
                national_id=national_id,
                phone=phone,
                seat_number=seat,
            ))
        await db_session.commit()
        await db_session.refresh(booking)
        return booking

    return _create_booking


@pytest.fixture
def payment_factory(db_session: AsyncSession):
    async def _create_payment(
        booking: Booking,
        transaction_id: str = "TXN-1",
        status: PaymentStatus = PaymentStatus.PENDING,
        created_at=None,
    ) -> Payment:
        payment = Payment(
            booking_id=booking.id,
            amount=booking.total_amount,
            method=PaymentMethod.TELEBIRR,
            transaction_id=transaction_id,
            status=status,
            initiated_via=PaymentChannel.SMS,
            created_at=created_at or utcnow(),
        )
        db_session.add(payment)
        await db_session.commit()
        await db_session.refresh(payment)
        return payment

    return _create_payment


@pytest.fixture
def ticket_factory(db_session: AsyncSession):
    async def _create_ticket(
        booking: Booking,
        short_code: str = "ABC123",
        seat_number: int = 1,
        passenger_name: str = "Abebe Kebede",
        is_used: bool = False,
        used_at=None,
    ) -> Ticket:
        ticket = Ticket(
            booking_id=booking.id,
            trip_id=booking.trip_id,
            passenger_name=passenger_name,
            seat_number=seat_number,
            short_code=short_code,
            is_used=is_used,
            used_at=used_at,
        )
        db_session.add(ticket)
        await db_session.commit()
        await db_session.refresh(ticket)
        return ticket

    return _create_ticket


# ============================================================================
# Singletons Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from sms_bot.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_providers():
    """Drop the shared gateway and payment provider so settings patches take effect"""
    from sms_bot.domain.services.payment import reset_payment_provider
    from sms_bot.domain.services.sms_gateway import reset_sms_gateway
    reset_payment_provider()
    reset_sms_gateway()
    yield
    reset_payment_provider()
    reset_sms_gateway()


class FakeRedis:
    """In-memory stand-in for Redis with the commands the app uses and TTL tracking"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def incr(self, key: str) -> int:
        current = self._store.get(key)
        new_val = int(current) + 1 if current is not None else 1
        self._store[key] = str(new_val)
        return new_val

    async def expire(self, key: str, ttl: int) -> None:
        if key in self._store:
            self._ttls[key] = ttl

    async def ttl(self, key: str) -> int:
        if key not in self._store:
            return -2
        return self._ttls.get(key, -1)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("sms_bot.core.redis_client.get_redis", _get_fake_redis), \
         patch("sms_bot.api.webhooks.sms.get_redis", _get_fake_redis), \
         patch("sms_bot.main.get_redis", _get_fake_redis):
        yield _fake
