import datetime as dt
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

import pytz

from shuttle_guard.config import REPORT_TIMEZONE
from shuttle_guard.crud import TripRepository, to_dt
from shuttle_guard.utils.numbers import round_half_up


@dataclass
class TripSummary:
    total_trips: int = 0
    total_distance: float = 0.0     # km
    total_duration: int = 0         # minutes
    avg_speed: float = 0.0          # km/h, mean of per-trip averages
    max_speed: float = 0.0          # km/h

    def as_dict(self) -> dict:
        return asdict(self)


def summarize_trips(trips: Iterable) -> TripSummary:
    """
    Roll up a set of trips.

    avg_speed is the plain mean of each trip's average speed, not a
    distance/time weighted average, so short fast trips count as much as long
    slow ones.
    """
    trips = list(trips)
    if not trips:
        return TripSummary()

    total_distance = sum(t.distance or 0 for t in trips)
    total_duration = sum(t.duration or 0 for t in trips)
    avg_speed = sum(t.avg_speed or 0 for t in trips) / len(trips)
    max_speed = max([t.max_speed or 0.0 for t in trips] + [0.0])

    return TripSummary(
        total_trips=len(trips),
        total_distance=round_half_up(total_distance / 1000, 2),
        total_duration=round_half_up(total_duration / 60),
        avg_speed=round_half_up(avg_speed, 1),
        max_speed=round_half_up(max_speed, 1),
    )


async def get_trip_summary(
    repo: TripRepository,
    start: dt.datetime,
    end: dt.datetime,
    vehicle_id: Optional[int] = None,
) -> TripSummary:
    trips = await repo.list_trips_by_date_range(to_dt(start), to_dt(end), vehicle_id)
    return summarize_trips(trips)


def day_window(report_date: dt.date, tz_name: str = REPORT_TIMEZONE):
    """UTC bounds [00:00, 23:59:59.999999] of a calendar day in the given local timezone."""
    tz = pytz.timezone(tz_name)
    start_local = tz.localize(dt.datetime.combine(report_date, dt.time.min))
    end_local = tz.localize(dt.datetime.combine(report_date, dt.time.max))
    return start_local.astimezone(pytz.utc), end_local.astimezone(pytz.utc)


async def get_daily_summary(
    repo: TripRepository,
    report_date: Optional[dt.date] = None,
    vehicle_id: Optional[int] = None,
    tz_name: str = REPORT_TIMEZONE,
) -> TripSummary:
    """Summary for one local calendar day (defaults to yesterday)."""
    if report_date is None:
        report_date = dt.datetime.now(pytz.timezone(tz_name)).date() - dt.timedelta(days=1)

    start, end = day_window(report_date, tz_name)
    return await get_trip_summary(repo, start, end, vehicle_id)


def trip_to_dict(trip) -> dict:
    """API view of a trip with display units added."""
    return {
        "id": trip.id,
        "vehicle_id": trip.vehicle_id,
        "status": trip.status,
        "start_time": trip.start_time,
        "end_time": trip.end_time,
        "start_lat": trip.start_lat,
        "start_lng": trip.start_lng,
        "start_stop_id": trip.start_stop_id,
        "end_lat": trip.end_lat,
        "end_lng": trip.end_lng,
        "end_stop_id": trip.end_stop_id,
        "distance": trip.distance,
        "max_speed": trip.max_speed,
        "avg_speed": trip.avg_speed,
        "duration": trip.duration,
        "traccar_trip_id": trip.traccar_trip_id,
        "distance_km": round_half_up((trip.distance or 0) / 1000, 2),
        "duration_min": round_half_up((trip.duration or 0) / 60),
    }
