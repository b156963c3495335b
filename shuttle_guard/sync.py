# shuttle_guard/sync.py
"""
Traccar trip reconciliation.

Traccar is the source of record for trips. A periodic sweep pulls its trip
report per linked vehicle and inserts completed trips we do not have yet, so
a trip missed because a deviceStopped event was dropped still ends up in the
database. Imported trips are deduplicated on a synthetic key built from the
Traccar device id and the trip start time (see schemas.synthetic_trip_key).
"""
import asyncio
import datetime as dt
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shuttle_guard.config import SYNC_CONCURRENCY, SYNC_INTERVAL_SECONDS, SYNC_LOOKBACK_HOURS
from shuttle_guard.crud import TripRepository, to_dt
from shuttle_guard.locks import vehicle_locks
from shuttle_guard.models import Vehicle, TRIP_COMPLETED
from shuttle_guard.schemas import TraccarTripReport
from shuttle_guard.traccar import TraccarClient

from shuttle_guard.logging_config import get_logger


logger = get_logger("sync", "sync.log")

UTC = dt.timezone.utc


@dataclass
class SyncResult:
    synced: int = 0
    errors: List[str] = field(default_factory=list)


class TripReconciler:
    def __init__(
        self,
        repo: Optional[TripRepository] = None,
        client: Optional[TraccarClient] = None,
        locks=vehicle_locks,
        concurrency: int = SYNC_CONCURRENCY,
    ):
        self.repo = repo or TripRepository()
        self.client = client or TraccarClient()
        self.locks = locks
        self._semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def sync_traccar_trips(self, start: dt.datetime, end: dt.datetime) -> SyncResult:
        start, end = to_dt(start), to_dt(end)
        result = SyncResult()

        try:
            vehicles = await self.repo.list_synced_vehicles()
        except SQLAlchemyError as e:
            logger.exception("[sync] Could not list Traccar-linked vehicles")
            result.errors.append(f"General error: {e}")
            return result

        errors = await asyncio.gather(
            *(self._sync_vehicle_guarded(v, start, end, result) for v in vehicles if v.traccar_id)
        )
        result.errors.extend(e for e in errors if e)

        logger.info(
            f"[sync] Window {start} -> {end}: {result.synced} trips synced, "
            f"{len(result.errors)} vehicle errors"
        )
        return result

    async def _sync_vehicle_guarded(self, vehicle: Vehicle, start, end, result: SyncResult) -> Optional[str]:
        try:
            async with self._semaphore:
                await self.sync_vehicle(vehicle, start, end, result)
            return None
        except Exception as e:
            # any failure stays with this vehicle; the rest of the batch carries on
            logger.exception(f"[sync] Vehicle {vehicle.name} (traccar={vehicle.traccar_id}) failed: {e!r}")
            return f"Vehicle {vehicle.name}: {e}"

    async def sync_vehicle(
        self, vehicle: Vehicle, start: dt.datetime, end: dt.datetime, result: Optional[SyncResult] = None
    ) -> int:
        """
        Import the vehicle's Traccar trips in [start, end]; returns how many were new.
        Each insert is also counted on `result` as it lands, so a failure halfway
        through a vehicle still reports the trips already written.
        """
        raw_trips = await self.client.get_trips_report(vehicle.traccar_id, start, end)
        reports = [TraccarTripReport.model_validate(t) for t in raw_trips]

        synced = 0
        async with self.locks.for_vehicle(vehicle.id):
            for report in reports:
                key = report.synthetic_key
                if await self.repo.find_trip_by_synthetic_key(key):
                    continue

                trip = await self.repo.insert_trip(status=TRIP_COMPLETED, **report.to_trip_fields(vehicle.id))
                synced += 1
                if result is not None:
                    result.synced += 1
                logger.info(
                    f"[sync] Imported trip {trip.id} for vehicle {vehicle.id} "
                    f"start={report.start_time} key={key}"
                )
        return synced


# =====================================================================
# Periodic sweep
# =====================================================================
class SyncScheduler:
    """
    Runs the reconciler every `interval` seconds over the last `lookback`.

    The asyncio.Task is the handle: start() creates it, stop() cancels and
    awaits it, is_running asks the task.
    """

    def __init__(
        self,
        reconciler: TripReconciler,
        interval: float = SYNC_INTERVAL_SECONDS,
        lookback: dt.timedelta = dt.timedelta(hours=SYNC_LOOKBACK_HOURS),
        clock=None,
    ):
        self.reconciler = reconciler
        self.interval = interval
        self.lookback = lookback
        self._clock = clock or (lambda: dt.datetime.now(UTC))
        self._task: Optional[asyncio.Task] = None
        self.last_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="traccar-trip-sync")
        logger.info(f"[sync] Scheduler started, every {self.interval}s over {self.lookback}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[sync] Scheduler stopped")

    async def run_once(self) -> SyncResult:
        now = self._clock()
        self.last_result = await self.reconciler.sync_traccar_trips(now - self.lookback, now)
        return self.last_result

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                # keep the sweep alive; the next tick retries the same window
                logger.exception("[sync] Periodic sync failed")
            await asyncio.sleep(self.interval)
