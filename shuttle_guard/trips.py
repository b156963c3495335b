# shuttle_guard/trips.py
import datetime as dt
import math
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shuttle_guard.crud import TripRepository, to_dt
from shuttle_guard.geo import distance_meters
from shuttle_guard.locks import vehicle_locks
from shuttle_guard.models import Trip, TRIP_ACTIVE, TRIP_COMPLETED
from shuttle_guard.utils.variables import DEFAULT_VEHICLE_TRIP_LIMIT
from shuttle_guard.utils.numbers import round_half_up

from shuttle_guard.logging_config import get_logger


logger = get_logger("trips", "trips.log")

UTC = dt.timezone.utc


def _elapsed_seconds(start: dt.datetime, end: dt.datetime) -> int:
    return math.floor((to_dt(end) - to_dt(start)).total_seconds())


def _avg_speed_kmh(distance_m: float, duration_s: int) -> float:
    if duration_s <= 0:
        return 0.0
    return round_half_up((distance_m / 1000) / (duration_s / 3600), 1)


class TripController:
    """
    Opens, accrues and closes trips from motion signals and position samples.

    Per vehicle a trip is either active (one at most) or completed. Storage
    failures are logged and reported as None / False so the ingest loop keeps
    going.
    """

    def __init__(self, repo: Optional[TripRepository] = None, locks=vehicle_locks, clock=None):
        self.repo = repo or TripRepository()
        self.locks = locks
        self._clock = clock or (lambda: dt.datetime.now(UTC))

    # =====================================================================
    # deviceMoving -> open trip
    # =====================================================================
    async def start_trip(
        self,
        vehicle_id: int,
        lat: float,
        lng: float,
        timestamp: dt.datetime,
        stop_id: Optional[int] = None,
    ) -> Optional[int]:
        try:
            async with self.locks.for_vehicle(vehicle_id):
                existing = await self.repo.get_active_trip(vehicle_id)
                if existing:
                    logger.info(f"[trip] Vehicle {vehicle_id} already has active trip {existing.id}")
                    return existing.id

                trip = await self.repo.insert_trip(
                    vehicle_id=vehicle_id,
                    status=TRIP_ACTIVE,
                    start_time=to_dt(timestamp),
                    start_lat=lat,
                    start_lng=lng,
                    start_stop_id=stop_id,
                    distance=0.0,
                    max_speed=0.0,
                    avg_speed=0.0,
                    duration=0,
                )

            logger.info(f"[trip] Started trip {trip.id} for vehicle {vehicle_id} at {trip.start_time}")
            return trip.id
        except SQLAlchemyError:
            logger.exception(f"[trip] Error starting trip for vehicle {vehicle_id}")
            return None

    # =====================================================================
    # deviceStopped -> close trip
    # =====================================================================
    async def end_trip(
        self,
        vehicle_id: int,
        lat: float,
        lng: float,
        timestamp: dt.datetime,
        stop_id: Optional[int] = None,
        distance: Optional[float] = None,
        max_speed: Optional[float] = None,
        avg_speed: Optional[float] = None,
    ) -> bool:
        try:
            async with self.locks.for_vehicle(vehicle_id):
                active = await self.repo.get_active_trip(vehicle_id)
                if not active:
                    logger.info(f"[trip] No active trip found for vehicle {vehicle_id}")
                    return False

                duration = _elapsed_seconds(active.start_time, timestamp)

                # values computed upstream win, otherwise keep what was accrued
                closed = await self.repo.update_trip(
                    active.id,
                    expected_status=TRIP_ACTIVE,
                    status=TRIP_COMPLETED,
                    end_time=to_dt(timestamp),
                    end_lat=lat,
                    end_lng=lng,
                    end_stop_id=stop_id,
                    distance=distance if distance is not None else (active.distance or 0.0),
                    max_speed=max_speed if max_speed is not None else (active.max_speed or 0.0),
                    avg_speed=avg_speed if avg_speed is not None else (active.avg_speed or 0.0),
                    duration=duration,
                )

            if not closed:
                logger.warning(f"[trip] Trip {active.id} for vehicle {vehicle_id} was no longer active")
                return False

            logger.info(f"[trip] Ended trip {active.id} for vehicle {vehicle_id}, duration: {duration}s")
            return True
        except SQLAlchemyError:
            logger.exception(f"[trip] Error ending trip for vehicle {vehicle_id}")
            return False

    # =====================================================================
    # position sample -> accrue stats
    # =====================================================================
    async def update_trip_stats(
        self,
        vehicle_id: int,
        speed: float,
        lat: float,
        lng: float,
        now: Optional[dt.datetime] = None,
    ) -> bool:
        """
        Accrue distance / max speed / duration / average speed on the active trip.

        Returns False when the vehicle has no active trip (nothing to do) or the
        write failed.
        """
        try:
            async with self.locks.for_vehicle(vehicle_id):
                active = await self.repo.get_active_trip(vehicle_id)
                if not active:
                    return False

                if active.end_lat is not None and active.end_lng is not None:
                    last = (active.end_lat, active.end_lng)
                else:
                    last = (active.start_lat, active.start_lng)

                new_distance = (active.distance or 0.0) + distance_meters(last, (lat, lng))
                new_max_speed = max(active.max_speed or 0.0, round_half_up(float(speed or 0), 1))
                # a late, out-of-order fix must not shorten the trip
                duration = max(_elapsed_seconds(active.start_time, now or self._clock()), active.duration or 0, 0)

                return await self.repo.update_trip(
                    active.id,
                    expected_status=TRIP_ACTIVE,
                    distance=new_distance,
                    max_speed=new_max_speed,
                    avg_speed=_avg_speed_kmh(new_distance, duration),
                    duration=duration,
                    end_lat=lat,
                    end_lng=lng,
                )
        except SQLAlchemyError:
            logger.exception(f"[trip] Error updating trip stats for vehicle {vehicle_id}")
            return False

    # =====================================================================
    # Queries
    # =====================================================================
    async def get_active_trip(self, vehicle_id: int) -> Optional[Trip]:
        return await self.repo.get_active_trip(vehicle_id)

    async def get_all_active_trips(self) -> List[Trip]:
        return await self.repo.list_active_trips()

    async def get_vehicle_trips(self, vehicle_id: int, limit: int = DEFAULT_VEHICLE_TRIP_LIMIT) -> List[Trip]:
        return await self.repo.list_vehicle_trips(vehicle_id, limit)

    async def get_trips_by_date_range(
        self, start: dt.datetime, end: dt.datetime, vehicle_id: Optional[int] = None
    ) -> List[Trip]:
        return await self.repo.list_trips_by_date_range(to_dt(start), to_dt(end), vehicle_id)
