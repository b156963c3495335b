from sqlalchemy import (BigInteger, Boolean, Column, Integer, Text, DateTime, ForeignKey, Double, Index, text)
from shuttle_guard.database import Base
from sqlalchemy.sql import func


TRIP_ACTIVE = "active"
TRIP_COMPLETED = "completed"

EVENT_ENTER = "enter"
EVENT_EXIT = "exit"


class Vehicle(Base):
    __tablename__ = "vehicles"
    id         = Column(Integer, primary_key=True, index=True)
    name       = Column(Text, nullable=False)
    traccar_id = Column(BigInteger, unique=True, index=True)   # NULL when not linked to Traccar
    is_active  = Column(Boolean, default=True)


class Stop(Base):
    __tablename__ = "stops"
    id              = Column(Integer, primary_key=True, index=True)
    name            = Column(Text, nullable=False)
    lat             = Column(Double, nullable=False)
    lng             = Column(Double, nullable=False)
    geofence_radius = Column(Double)                  # meters, NULL -> DEFAULT_GEOFENCE_RADIUS_M
    is_active       = Column(Boolean, default=True)


class Trip(Base):
    __tablename__ = "trips"
    id              = Column(BigInteger, primary_key=True, index=True)
    vehicle_id      = Column(Integer, ForeignKey("vehicles.id"), index=True, nullable=False)
    status          = Column(Text, nullable=False, default=TRIP_ACTIVE)   # active / completed
    start_time      = Column(DateTime(timezone=True), nullable=False)
    start_lat       = Column(Double, nullable=False)
    start_lng       = Column(Double, nullable=False)
    start_stop_id   = Column(Integer, ForeignKey("stops.id"))
    end_time        = Column(DateTime(timezone=True))
    end_lat         = Column(Double)                  # also the current position while active
    end_lng         = Column(Double)
    end_stop_id     = Column(Integer, ForeignKey("stops.id"))
    distance        = Column(Double, default=0)       # meters
    max_speed       = Column(Double, default=0)       # km/h
    avg_speed       = Column(Double, default=0)       # km/h
    duration        = Column(Integer, default=0)      # seconds
    traccar_trip_id = Column(BigInteger, unique=True, index=True)   # synthetic key of imported trips
    created_at      = Column(DateTime(timezone=True), server_default=func.now())
    updated_at      = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # one active trip per vehicle
        Index(
            "uq_trips_active_vehicle",
            "vehicle_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_trips_start_time", "start_time"),
    )


class GeofenceEvent(Base):
    __tablename__ = "geofence_events"
    id         = Column(BigInteger, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    stop_id    = Column(Integer, ForeignKey("stops.id"), nullable=False)
    type       = Column(Text, nullable=False)         # enter / exit
    distance   = Column(Double)
    timestamp  = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_geofence_events_vehicle_stop_ts", "vehicle_id", "stop_id", "timestamp"),
    )
