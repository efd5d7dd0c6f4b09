"""
Trip Search - bookable trips for an origin/destination on a local day
"""
from datetime import date
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sms_bot.core.clock import local_day_bounds_utc
from sms_bot.core.config import settings
from sms_bot.db.models.trip import Trip
from sms_bot.state_machine.views import TripView


class TripSearch(Protocol):
    async def search(self, origin: str, destination: str, day: date) -> list[TripView]: ...

    async def get_trip(self, trip_id: str) -> TripView | None: ...


class SqlTripSearch:
    """Trip lookups against the trips table"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def search(self, origin: str, destination: str, day: date) -> list[TripView]:
        """
        Case-insensitive substring match on origin and destination, limited
        to active, open trips with seats left, earliest departure first.
        """
        start, end = local_day_bounds_utc(day)
        result = await self.db.execute(
            select(Trip)
            .where(
                func.lower(Trip.origin).contains(origin.lower(), autoescape=True),
                func.lower(Trip.destination).contains(destination.lower(), autoescape=True),
                Trip.departure_time >= start,
                Trip.departure_time < end,
                Trip.is_active.is_(True),
                Trip.booking_halted.is_(False),
                Trip.available_slots > 0,
            )
            .order_by(Trip.departure_time.asc())
            .limit(settings.MAX_SEARCH_RESULTS)
        )
        return [TripView.from_model(trip) for trip in result.unique().scalars().all()]

    async def get_trip(self, trip_id: str) -> TripView | None:
        trip = await self.db.get(Trip, trip_id, populate_existing=True)
        return TripView.from_model(trip) if trip else None
