"""
Boundary schemas.

Traccar payloads are validated here before anything reaches the engine, and
Traccar units (knots, milliseconds) are converted to the internal ones
(km/h, seconds) on the way in.
"""
import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shuttle_guard.utils.variables import KNOTS_TO_KMH, SYNTHETIC_KEY_FACTOR

UTC = dt.timezone.utc
EPOCH = dt.datetime(1970, 1, 1, tzinfo=UTC)


def knots_to_kmh(knots: Optional[float]) -> float:
    return float(knots or 0) * KNOTS_TO_KMH


def _as_utc(v: dt.datetime) -> dt.datetime:
    return v if v.tzinfo else v.replace(tzinfo=UTC)


def synthetic_trip_key(device_id: int, start_time: dt.datetime) -> int:
    """deviceId * 1e6 + (start time in epoch ms mod 1e6)."""
    epoch_ms = (_as_utc(start_time) - EPOCH) // dt.timedelta(milliseconds=1)
    return device_id * SYNTHETIC_KEY_FACTOR + epoch_ms % SYNTHETIC_KEY_FACTOR


# ---------------------------------------------------
#                TRACCAR TRIP REPORT
# ---------------------------------------------------
class TraccarTripReport(BaseModel):
    """One row of Traccar's /api/reports/trips response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    device_id: int = Field(alias="deviceId")
    start_time: dt.datetime = Field(alias="startTime")
    end_time: dt.datetime = Field(alias="endTime")
    start_lat: float = Field(alias="startLat")
    start_lon: float = Field(alias="startLon")
    end_lat: float = Field(alias="endLat")
    end_lon: float = Field(alias="endLon")
    distance: float = 0.0                                   # meters
    max_speed: float = Field(0.0, alias="maxSpeed")          # knots
    average_speed: float = Field(0.0, alias="averageSpeed")  # knots
    duration: int = 0                                       # milliseconds

    @field_validator("start_time", "end_time")
    @classmethod
    def _tz_aware(cls, v: dt.datetime) -> dt.datetime:
        return _as_utc(v)

    @property
    def synthetic_key(self) -> int:
        return synthetic_trip_key(self.device_id, self.start_time)

    def to_trip_fields(self, vehicle_id: int) -> dict:
        return {
            "vehicle_id": vehicle_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "start_lat": self.start_lat,
            "start_lng": self.start_lon,
            "end_lat": self.end_lat,
            "end_lng": self.end_lon,
            "distance": self.distance,
            "max_speed": knots_to_kmh(self.max_speed),
            "avg_speed": knots_to_kmh(self.average_speed),
            "duration": self.duration // 1000,
            "traccar_trip_id": self.synthetic_key,
        }


# ---------------------------------------------------
#              TRACCAR EVENT FORWARDING
# ---------------------------------------------------
class TraccarPosition(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    device_id: int = Field(alias="deviceId")
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float = 0.0                                      # knots
    fix_time: dt.datetime = Field(alias="fixTime")
    server_time: Optional[dt.datetime] = Field(None, alias="serverTime")
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("fix_time", "server_time")
    @classmethod
    def _tz_aware(cls, v):
        return _as_utc(v) if v is not None else v

    @property
    def speed_kmh(self) -> float:
        return knots_to_kmh(self.speed)


class TraccarEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    device_id: int = Field(alias="deviceId")
    event_time: Optional[dt.datetime] = Field(None, alias="eventTime")
    geofence_id: Optional[int] = Field(None, alias="geofenceId")


class TraccarPayload(BaseModel):
    """Body of a Traccar webhook (event forwarding) call."""

    model_config = ConfigDict(extra="ignore")

    position: TraccarPosition
    event: Optional[TraccarEvent] = None
    device: dict[str, Any] = Field(default_factory=dict)

    @property
    def device_id(self) -> int:
        return self.position.device_id


# ---------------------------------------------------
#                 HTTP INPUTS
# ---------------------------------------------------
class GeofenceCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vehicle_id: int = Field(alias="vehicleId")
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
