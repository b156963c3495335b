from typing import List, Optional

from sqlalchemy import select, update
import datetime as dt

from shuttle_guard.database import AsyncSessionLocal
from shuttle_guard.models import Trip, Stop, Vehicle, GeofenceEvent, TRIP_ACTIVE


def to_dt(v):
    if isinstance(v, dt.datetime):
        # ensure tz-aware
        return v if v.tzinfo else v.replace(tzinfo=dt.timezone.utc)

    if isinstance(v, str):
        dt_obj = dt.datetime.fromisoformat(v.replace("Z", "+00:00"))
        return dt_obj if dt_obj.tzinfo else dt_obj.replace(tzinfo=dt.timezone.utc)

    return None


class TripRepository:
    """
    Storage for trips, stops, vehicles and geofence events.

    Every call is its own unit of work on a fresh session. Errors surface as
    SQLAlchemyError; callers decide how to degrade.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    # ------------------------------
    # Trips
    # ------------------------------
    async def get_active_trip(self, vehicle_id: int) -> Optional[Trip]:
        async with self._session_factory() as db:
            q = await db.execute(
                select(Trip)
                .where(Trip.vehicle_id == vehicle_id, Trip.status == TRIP_ACTIVE)
                .limit(1)
            )
            return q.scalar_one_or_none()

    async def insert_trip(self, **fields) -> Trip:
        async with self._session_factory() as db:
            trip = Trip(**fields)
            db.add(trip)
            await db.commit()
            await db.refresh(trip)
            return trip

    async def update_trip(self, trip_id: int, expected_status: Optional[str] = None, **fields) -> bool:
        """
        Update a trip in place. With expected_status the write only lands while
        the row still has that status (compare-and-swap on status).
        """
        stmt = update(Trip).where(Trip.id == trip_id)
        if expected_status is not None:
            stmt = stmt.where(Trip.status == expected_status)

        async with self._session_factory() as db:
            res = await db.execute(stmt.values(**fields))
            await db.commit()
            return res.rowcount > 0

    async def find_trip_by_synthetic_key(self, key: int) -> Optional[Trip]:
        async with self._session_factory() as db:
            q = await db.execute(select(Trip).where(Trip.traccar_trip_id == key).limit(1))
            return q.scalar_one_or_none()

    async def list_active_trips(self) -> List[Trip]:
        async with self._session_factory() as db:
            q = await db.execute(select(Trip).where(Trip.status == TRIP_ACTIVE))
            return list(q.scalars().all())

    async def list_vehicle_trips(self, vehicle_id: int, limit: int = 20) -> List[Trip]:
        async with self._session_factory() as db:
            q = await db.execute(
                select(Trip)
                .where(Trip.vehicle_id == vehicle_id)
                .order_by(Trip.start_time.desc())
                .limit(limit)
            )
            return list(q.scalars().all())

    async def list_trips_by_date_range(
        self, start: dt.datetime, end: dt.datetime, vehicle_id: Optional[int] = None
    ) -> List[Trip]:
        stmt = select(Trip).where(Trip.start_time >= start, Trip.start_time <= end)
        if vehicle_id is not None:
            stmt = stmt.where(Trip.vehicle_id == vehicle_id)

        async with self._session_factory() as db:
            q = await db.execute(stmt.order_by(Trip.start_time.desc()))
            return list(q.scalars().all())

    async def list_trips(self, limit: int = 50) -> List[Trip]:
        async with self._session_factory() as db:
            q = await db.execute(select(Trip).order_by(Trip.start_time.desc()).limit(limit))
            return list(q.scalars().all())

    # ------------------------------
    # Stops & geofence events
    # ------------------------------
    async def list_stops(self, active_only: bool = True) -> List[Stop]:
        stmt = select(Stop)
        if active_only:
            stmt = stmt.where(Stop.is_active.is_(True))

        async with self._session_factory() as db:
            q = await db.execute(stmt.order_by(Stop.id))
            return list(q.scalars().all())

    async def get_last_geofence_event(self, vehicle_id: int, stop_id: int) -> Optional[GeofenceEvent]:
        async with self._session_factory() as db:
            q = await db.execute(
                select(GeofenceEvent)
                .where(GeofenceEvent.vehicle_id == vehicle_id, GeofenceEvent.stop_id == stop_id)
                .order_by(GeofenceEvent.timestamp.desc())
                .limit(1)
            )
            return q.scalar_one_or_none()

    async def insert_geofence_event(self, **fields) -> GeofenceEvent:
        async with self._session_factory() as db:
            event = GeofenceEvent(**fields)
            db.add(event)
            await db.commit()
            await db.refresh(event)
            return event

    # ------------------------------
    # Vehicles
    # ------------------------------
    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        async with self._session_factory() as db:
            return await db.get(Vehicle, vehicle_id)

    async def get_vehicle_by_traccar_id(self, device_id: int) -> Optional[Vehicle]:
        async with self._session_factory() as db:
            q = await db.execute(select(Vehicle).where(Vehicle.traccar_id == device_id).limit(1))
            return q.scalar_one_or_none()

    async def list_synced_vehicles(self) -> List[Vehicle]:
        """Vehicles linked to a Traccar device."""
        async with self._session_factory() as db:
            q = await db.execute(
                select(Vehicle).where(Vehicle.traccar_id.is_not(None)).order_by(Vehicle.id)
            )
            return list(q.scalars().all())
