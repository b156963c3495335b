import datetime as dt
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shuttle_guard.crud import TripRepository, to_dt
from shuttle_guard.geo import distance_meters
from shuttle_guard.models import Stop, EVENT_ENTER, EVENT_EXIT
from shuttle_guard.utils.variables import DEFAULT_GEOFENCE_RADIUS_M, GEOFENCE_DEBOUNCE_SECONDS

from shuttle_guard.logging_config import get_logger


logger = get_logger("geozones", "geozones.log")

UTC = dt.timezone.utc


@dataclass
class StopCheck:
    stop_id: int
    stop_name: str
    distance: float
    is_inside: bool
    event_created: bool = False


@dataclass
class GeofenceCheck:
    vehicle_id: int
    lat: float
    lng: float
    entered_stop: Optional[Stop] = None
    nearest_stop: Optional[StopCheck] = None
    results: List[StopCheck] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def stops_checked(self) -> int:
        return len(self.results)

    @property
    def stops_inside(self) -> int:
        return sum(1 for r in self.results if r.is_inside)


def geofence_radius(stop: Stop) -> float:
    return stop.geofence_radius or DEFAULT_GEOFENCE_RADIUS_M


def should_trigger_enter(last_event, now: dt.datetime) -> bool:
    """
    A new "enter" is due when there is no history, the vehicle last left the
    stop, or the last "enter" is older than the debounce window.
    """
    if last_event is None or last_event.type == EVENT_EXIT:
        return True
    return (now - to_dt(last_event.timestamp)).total_seconds() > GEOFENCE_DEBOUNCE_SECONDS


class GeofenceMatcher:
    def __init__(self, repo: Optional[TripRepository] = None):
        self.repo = repo or TripRepository()

    async def check_all_stops(
        self,
        vehicle_id: int,
        lat: float,
        lng: float,
        now: Optional[dt.datetime] = None,
    ) -> GeofenceCheck:
        now = to_dt(now) if now else dt.datetime.now(UTC)
        check = GeofenceCheck(vehicle_id=vehicle_id, lat=lat, lng=lng)

        try:
            stops = await self.repo.list_stops(active_only=True)
        except SQLAlchemyError as e:
            logger.exception(f"[geofence] Could not load stops for vehicle {vehicle_id}")
            check.errors.append(f"stops: {e}")
            return check

        for stop in stops:
            distance = distance_meters((lat, lng), (stop.lat, stop.lng))
            result = StopCheck(
                stop_id=stop.id,
                stop_name=stop.name,
                distance=distance,
                is_inside=distance <= geofence_radius(stop),
            )

            if result.is_inside:
                try:
                    last_event = await self.repo.get_last_geofence_event(vehicle_id, stop.id)
                    if should_trigger_enter(last_event, now):
                        await self.repo.insert_geofence_event(
                            vehicle_id=vehicle_id,
                            stop_id=stop.id,
                            type=EVENT_ENTER,
                            distance=distance,
                            timestamp=now,
                        )
                        result.event_created = True
                        logger.info(
                            f"[geofence] Vehicle {vehicle_id} entered stop {stop.id} ({stop.name}) "
                            f"at {distance:.1f}m"
                        )
                        if check.entered_stop is None:
                            check.entered_stop = stop
                except SQLAlchemyError as e:
                    logger.exception(f"[geofence] Check failed for vehicle {vehicle_id} stop {stop.id}")
                    check.errors.append(f"stop {stop.id}: {e}")

            check.results.append(result)

            if check.nearest_stop is None or result.distance < check.nearest_stop.distance:
                check.nearest_stop = result

        return check
