import asyncio
import weakref


class VehicleLocks:
    """
    One asyncio.Lock per vehicle id.

    Trip state changes are read-modify-write sequences; holding the vehicle's
    lock keeps them serialized inside this process. Across processes the
    database enforces the same rules (partial unique index on active trips,
    unique traccar_trip_id, status compare-and-swap in update_trip).

    Locks are held weakly: an entry lives while some caller holds or waits on
    it and is dropped once the vehicle goes idle.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def for_vehicle(self, vehicle_id: int) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vehicle_id] = lock
        return lock

    def __len__(self):
        return len(self._locks)


vehicle_locks = VehicleLocks()
