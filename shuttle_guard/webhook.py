import redis, json, time, asyncio
import datetime as dt
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from shuttle_guard.config import REDIS_URL
from shuttle_guard.crud import TripRepository
from shuttle_guard.geozones import GeofenceMatcher
from shuttle_guard.reports import get_trip_summary, get_daily_summary, trip_to_dict
from shuttle_guard.schemas import GeofenceCheckRequest, TraccarPayload
from shuttle_guard.sync import TripReconciler
from shuttle_guard.trips import TripController
from shuttle_guard.utils.variables import DEFAULT_SYNC_WINDOW_DAYS, DEFAULT_TRIP_LIST_LIMIT
from shuttle_guard.utils.numbers import round_half_up
from shuttle_guard.worker import STREAM, is_allowed
from shuttle_guard.logging_config import get_logger

# Redis connection (binary mode)
r = redis.from_url(REDIS_URL, decode_responses=False)

router = APIRouter()
logger = get_logger("webhook", "webhook.log")

UTC = dt.timezone.utc


def get_redis():
    return r


def get_repository() -> TripRepository:
    return TripRepository()


async def get_reconciler(repo: TripRepository = Depends(get_repository)):
    reconciler = TripReconciler(repo)
    try:
        yield reconciler
    finally:
        await reconciler.client.close()


# ---------------------------------------------------
#                TRACCAR WEBHOOK
# ---------------------------------------------------
@router.post("/webhook")
async def traccar_hook(payload: dict, redis_client=Depends(get_redis)):
    if not payload.get("position"):
        raise HTTPException(status_code=400, detail="no position")

    try:
        data = TraccarPayload.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"invalid payload: {e.error_count()} errors")

    if not is_allowed(data.device_id):
        logger.info(f"Ignored device {data.device_id} (not in ALLOWED_DEVICES)")
        return {"ok": False, "reason": "ignored"}

    json_str = json.dumps(payload, ensure_ascii=False)

    # Push to Redis inside executor (non-blocking)
    await asyncio.get_running_loop().run_in_executor(
        None,
        redis_client.xadd,
        STREAM,
        {"ts": time.time(), "data": json_str},
    )

    logger.info(f"Payload stored for device {data.device_id}")
    return {"ok": True}


# ---------------------------------------------------
#                      TRIPS
# ---------------------------------------------------
@router.get("/trips")
async def list_trips(
    vehicle_id: Optional[int] = Query(None, alias="vehicleId"),
    active: bool = False,
    start: Optional[dt.datetime] = Query(None, alias="from"),
    end: Optional[dt.datetime] = Query(None, alias="to"),
    limit: int = Query(DEFAULT_TRIP_LIST_LIMIT, ge=1, le=1000),
    repo: TripRepository = Depends(get_repository),
):
    controller = TripController(repo)

    if active:
        trips = await controller.get_all_active_trips()
    elif start and end:
        trips = await controller.get_trips_by_date_range(start, end, vehicle_id)
    elif vehicle_id is not None:
        trips = await controller.get_vehicle_trips(vehicle_id, limit)
    else:
        trips = await repo.list_trips(limit)

    summary = None
    if start and end:
        summary = (await get_trip_summary(repo, start, end, vehicle_id)).as_dict()

    return {
        "ok": True,
        "trips": [trip_to_dict(t) for t in trips],
        "summary": summary,
        "total": len(trips),
    }


@router.get("/trips/summary/daily")
async def daily_summary(
    day: Optional[dt.date] = None,
    vehicle_id: Optional[int] = Query(None, alias="vehicleId"),
    repo: TripRepository = Depends(get_repository),
):
    summary = await get_daily_summary(repo, day, vehicle_id)
    return {"ok": True, "summary": summary.as_dict()}


@router.post("/trips/sync")
async def sync_trips(
    start: Optional[dt.datetime] = Query(None, alias="from"),
    end: Optional[dt.datetime] = Query(None, alias="to"),
    reconciler: TripReconciler = Depends(get_reconciler),
):
    end = end or dt.datetime.now(UTC)
    start = start or end - dt.timedelta(days=DEFAULT_SYNC_WINDOW_DAYS)
    if start > end:
        raise HTTPException(status_code=400, detail="'from' must be before 'to'")

    result = await reconciler.sync_traccar_trips(start, end)
    logger.info(f"Manual sync {start} -> {end}: synced={result.synced} errors={len(result.errors)}")
    return {"ok": True, "message": f"{result.synced} trips synced", "data": asdict(result)}


# ---------------------------------------------------
#                GEOFENCE CHECK-ALL
# ---------------------------------------------------
@router.post("/geofence/check-all")
async def geofence_check_all(body: GeofenceCheckRequest, repo: TripRepository = Depends(get_repository)):
    vehicle = await repo.get_vehicle(body.vehicle_id)
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")

    check = await GeofenceMatcher(repo).check_all_stops(body.vehicle_id, body.lat, body.lng)

    nearest = None
    if check.nearest_stop:
        nearest = {
            "id": check.nearest_stop.stop_id,
            "name": check.nearest_stop.stop_name,
            "distance": round_half_up(check.nearest_stop.distance),
            "is_inside": check.nearest_stop.is_inside,
        }

    entered = None
    if check.entered_stop:
        entered = {"id": check.entered_stop.id, "name": check.entered_stop.name}

    return {
        "ok": True,
        "vehicle_id": body.vehicle_id,
        "position": {"lat": body.lat, "lng": body.lng},
        "entered_stop": entered,
        "nearest_stop": nearest,
        "stops_checked": check.stops_checked,
        "stops_inside": check.stops_inside,
        "errors": check.errors,
    }
