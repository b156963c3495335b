import asyncio
import gc

import pytest

from shuttle_guard.utils.numbers import round_half_up


@pytest.mark.asyncio
async def test_waiters_share_the_vehicle_lock(locks) -> None:
    lock = locks.for_vehicle(7)

    async with lock:
        assert locks.for_vehicle(7) is lock
        assert locks.for_vehicle(8) is not lock
        waiter = asyncio.create_task(locks.for_vehicle(7).acquire())
        await asyncio.sleep(0)
        assert not waiter.done()

    await waiter
    lock.release()


@pytest.mark.asyncio
async def test_idle_locks_are_dropped(locks) -> None:
    for vehicle_id in range(100):
        async with locks.for_vehicle(vehicle_id):
            pass

    gc.collect()
    assert len(locks) == 0


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(1.5) == 2
    assert round_half_up(-2.5) == -2
    assert round_half_up(20.25, 1) == 20.3
    assert round_half_up(2.4) == 2
    assert isinstance(round_half_up(2.5), int)
