# worker.py
import redis
import json
import asyncio
from typing import Optional

from pydantic import ValidationError
from tenacity import retry, wait_exponential_jitter, stop_after_attempt, retry_if_exception_type
from sqlalchemy.exc import DBAPIError, OperationalError
import asyncpg

from shuttle_guard.config import ALLOWED_DEVICES, REDIS_URL
from shuttle_guard.crud import TripRepository
from shuttle_guard.geozones import GeofenceMatcher
from shuttle_guard.models import Vehicle
from shuttle_guard.schemas import TraccarPayload
from shuttle_guard.trips import TripController

from shuttle_guard.logging_config import get_logger

# ------------ Variable Declaration -----------
logger = get_logger("worker", "worker.log")

STREAM = "traccar"
GROUP = "worker-group"
CONSUMER = "worker-1"

EVENT_MOVING = "deviceMoving"
EVENT_STOPPED = "deviceStopped"


# ---------- Ensure Consumer Group ----------
async def init_group(r):
    try:
        # Start reading only NEW messages from now → id="$", create stream if missing
        r.xgroup_create(STREAM, GROUP, id="$", mkstream=True)
        logger.info("Consumer group created.")
    except redis.exceptions.ResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.info("Consumer group already exists.")
        else:
            raise


def is_allowed(device_id) -> bool:
    # empty allow-list means every device is accepted
    if not ALLOWED_DEVICES:
        return True
    return str(device_id) in {str(x) for x in ALLOWED_DEVICES}


class EventProcessor:
    """Turns one validated Traccar payload into engine calls."""

    def __init__(self, repo: Optional[TripRepository] = None, controller=None, matcher=None):
        self.repo = repo or TripRepository()
        self.controller = controller or TripController(self.repo)
        self.matcher = matcher or GeofenceMatcher(self.repo)

    @retry(
        wait=wait_exponential_jitter(initial=2, max=30),
        stop=stop_after_attempt(7),
        retry=retry_if_exception_type(
            (DBAPIError, OperationalError, OSError, asyncpg.CannotConnectNowError)
        ),
    )
    async def resolve_vehicle(self, device_id: int) -> Optional[Vehicle]:
        return await self.repo.get_vehicle_by_traccar_id(device_id)

    async def process(self, payload: TraccarPayload) -> bool:
        vehicle = await self.resolve_vehicle(payload.device_id)
        if vehicle is None:
            logger.warning(f"No vehicle linked to Traccar device {payload.device_id}")
            return False

        p = payload.position
        ts = p.fix_time

        check = await self.matcher.check_all_stops(vehicle.id, p.latitude, p.longitude, now=ts)
        nearest = check.nearest_stop
        stop_id = nearest.stop_id if nearest and nearest.is_inside else None
        if check.entered_stop is not None:
            logger.info(f"Vehicle {vehicle.id} entered stop {check.entered_stop.name}")

        # accrue the leg up to this fix first so a closing trip keeps it
        await self.controller.update_trip_stats(vehicle.id, p.speed_kmh, p.latitude, p.longitude, now=ts)

        event_type = payload.event.type if payload.event else None
        if event_type == EVENT_MOVING:
            start_ts = payload.event.event_time or ts
            await self.controller.start_trip(vehicle.id, p.latitude, p.longitude, start_ts, stop_id)
        elif event_type == EVENT_STOPPED:
            end_ts = payload.event.event_time or ts
            await self.controller.end_trip(vehicle.id, p.latitude, p.longitude, end_ts, stop_id)

        return True


def _drop(r, _id):
    r.xack(STREAM, GROUP, _id)
    r.xdel(STREAM, _id)


# ---------- Main Worker Loop ----------
async def worker(processor: Optional[EventProcessor] = None):
    r = redis.from_url(REDIS_URL, decode_responses=False)
    processor = processor or EventProcessor()

    logger.info("Worker starting, initializing consumer group...")
    await init_group(r)

    logger.info("Worker listening for Redis Stream messages...")

    while True:
        try:
            # Blocking read via executor (call will block the threadpool, not the event loop)
            msgs = await asyncio.get_running_loop().run_in_executor(
                None,
                r.xreadgroup,
                GROUP,
                CONSUMER,
                {STREAM: ">"},
                100,
                5000  # block 5 seconds
            )

            if msgs:
                total = sum(len(rec[1]) for rec in msgs)
                logger.info(f"Fetched {total} records from stream")

            for _, records in msgs or []:
                for _id, fields in records:
                    try:
                        try:
                            payload = TraccarPayload.model_validate(json.loads(fields[b"data"]))
                        except (ValueError, ValidationError, KeyError) as je:
                            logger.exception(f"Failed to decode record {_id}: {je}")
                            # malformed message: ack & delete so it is not redelivered
                            _drop(r, _id)
                            continue

                        if not is_allowed(payload.device_id):
                            logger.warning(f"Skipping unauthorized device: {payload.device_id}")
                            _drop(r, _id)
                            continue

                        logger.info(f"Processing device: {payload.device_id}")
                        await processor.process(payload)

                        # If everything succeeded: ACK and DELETE
                        try:
                            _drop(r, _id)
                        except redis.exceptions.RedisError as rexc:
                            logger.exception(f"Failed to ack/xdel message {_id}: {rexc}")

                    except Exception as e:
                        # DO NOT ack/delete on general processing failure so message can be retried
                        logger.exception(f"Error processing record ID {_id}: {e}")

        except Exception as e:
            logger.exception(f"Worker loop encountered an error: {e}")

        # small sleep to avoid tight loop in case of unexpected fast failures
        await asyncio.sleep(0.1)


if __name__ == "__main__":
    logger.info("Worker starting up...")
    asyncio.run(worker())
