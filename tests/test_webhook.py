import asyncio
import datetime as dt

import pytest
from fastapi.testclient import TestClient

from fakes import traccar_trip
from shuttle_guard import webhook
from shuttle_guard.main import app
from shuttle_guard.models import TRIP_ACTIVE, TRIP_COMPLETED
from shuttle_guard.sync import TripReconciler

UTC = dt.timezone.utc
T0 = dt.datetime(2025, 6, 2, 8, 0, 0, tzinfo=UTC)


class FakeRedis:
    def __init__(self) -> None:
        self.entries = []

    def xadd(self, stream, fields):
        self.entries.append((stream, fields))
        return b"1-0"


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def client(repo, traccar, locks, fake_redis, monkeypatch):
    monkeypatch.setattr("shuttle_guard.worker.ALLOWED_DEVICES", set())

    async def reconciler_override():
        yield TripReconciler(repo, traccar, locks=locks)

    app.dependency_overrides[webhook.get_repository] = lambda: repo
    app.dependency_overrides[webhook.get_redis] = lambda: fake_redis
    app.dependency_overrides[webhook.get_reconciler] = reconciler_override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def webhook_body(device_id=12):
    return {
        "position": {
            "deviceId": device_id,
            "latitude": 41.0,
            "longitude": 29.0,
            "speed": 12.0,
            "fixTime": "2025-06-02T08:00:00.000+00:00",
        },
        "event": {"type": "deviceMoving", "deviceId": device_id},
        "device": {"id": device_id, "name": "Shuttle A", "status": "online"},
    }


# ---------------------------------------------------
#                    /webhook
# ---------------------------------------------------
def test_webhook_queues_payload(client, fake_redis) -> None:
    res = client.post("/webhook", json=webhook_body())

    assert res.status_code == 200
    assert res.json() == {"ok": True}
    [(stream, fields)] = fake_redis.entries
    assert stream == "traccar"
    assert '"deviceMoving"' in fields["data"]


def test_webhook_without_position_is_rejected(client, fake_redis) -> None:
    res = client.post("/webhook", json={"event": {"type": "deviceOnline"}})

    assert res.status_code == 400
    assert fake_redis.entries == []


def test_webhook_with_invalid_position_is_rejected(client, fake_redis) -> None:
    body = webhook_body()
    body["position"]["latitude"] = "north"

    assert client.post("/webhook", json=body).status_code == 400
    assert fake_redis.entries == []


def test_webhook_ignores_devices_outside_allow_list(client, fake_redis, monkeypatch) -> None:
    monkeypatch.setattr("shuttle_guard.worker.ALLOWED_DEVICES", {99})

    res = client.post("/webhook", json=webhook_body(device_id=12))

    assert res.json() == {"ok": False, "reason": "ignored"}
    assert fake_redis.entries == []


# ---------------------------------------------------
#                 /geofence/check-all
# ---------------------------------------------------
def test_check_all_reports_entered_and_nearest_stop(client, repo) -> None:
    repo.add_vehicle(7)
    repo.add_stop(1, 41.0, 29.0, radius=15, name="Main Gate")
    repo.add_stop(2, 41.01, 29.0, radius=15, name="Beach")

    res = client.post("/geofence/check-all", json={"vehicleId": 7, "lat": 41.00005, "lng": 29.0})

    assert res.status_code == 200
    data = res.json()
    assert data["entered_stop"] == {"id": 1, "name": "Main Gate"}
    assert data["nearest_stop"]["id"] == 1
    assert data["nearest_stop"]["distance"] == 6
    assert data["nearest_stop"]["is_inside"] is True
    assert (data["stops_checked"], data["stops_inside"]) == (2, 1)


def test_check_all_unknown_vehicle_is_404(client, repo) -> None:
    res = client.post("/geofence/check-all", json={"vehicleId": 42, "lat": 41.0, "lng": 29.0})

    assert res.status_code == 404


def test_check_all_requires_coordinates(client, repo) -> None:
    repo.add_vehicle(7)

    res = client.post("/geofence/check-all", json={"vehicleId": 7, "lat": 41.0})

    assert res.status_code == 422


# ---------------------------------------------------
#                      /trips
# ---------------------------------------------------
async def seed_trips(repo) -> None:
    await repo.insert_trip(vehicle_id=7, status=TRIP_COMPLETED, start_time=T0, start_lat=41.0, start_lng=29.0,
                           distance=3000.0, duration=600, avg_speed=18.0, max_speed=30.0)
    await repo.insert_trip(vehicle_id=8, status=TRIP_ACTIVE, start_time=T0 + dt.timedelta(hours=1),
                           start_lat=41.0, start_lng=29.0, distance=500.0, duration=60, avg_speed=30.0,
                           max_speed=35.0)


def test_trips_active_only(client, repo) -> None:
    asyncio.run(seed_trips(repo))

    data = client.get("/trips", params={"active": "true"}).json()

    assert data["total"] == 1
    assert data["trips"][0]["vehicle_id"] == 8
    assert data["summary"] is None


def test_trips_by_range_include_summary(client, repo) -> None:
    asyncio.run(seed_trips(repo))

    data = client.get(
        "/trips", params={"from": "2025-06-02T00:00:00Z", "to": "2025-06-02T23:59:59Z"}
    ).json()

    assert data["total"] == 2
    assert data["trips"][0]["vehicle_id"] == 8    # newest first
    assert data["trips"][1]["distance_km"] == 3.0
    assert data["trips"][1]["duration_min"] == 10
    assert data["summary"] == {
        "total_trips": 2,
        "total_distance": 3.5,
        "total_duration": 11,
        "avg_speed": 24.0,
        "max_speed": 35.0,
    }


def test_trips_by_vehicle(client, repo) -> None:
    asyncio.run(seed_trips(repo))

    data = client.get("/trips", params={"vehicleId": 7}).json()

    assert [t["vehicle_id"] for t in data["trips"]] == [7]


# ---------------------------------------------------
#                   /trips/sync
# ---------------------------------------------------
def test_manual_sync(client, repo, traccar) -> None:
    repo.add_vehicle(7, traccar_id=12)
    traccar.reports[12] = [traccar_trip(12, T0)]

    res = client.post("/trips/sync", params={"from": "2025-06-01T00:00:00Z", "to": "2025-06-03T00:00:00Z"})

    assert res.status_code == 200
    assert res.json()["data"] == {"synced": 1, "errors": []}
    device_id, start, end = traccar.calls[0]
    assert device_id == 12
    assert end - start == dt.timedelta(days=2)


def test_manual_sync_defaults_to_last_week(client, repo, traccar) -> None:
    repo.add_vehicle(7, traccar_id=12)

    client.post("/trips/sync")

    _, start, end = traccar.calls[0]
    assert end - start == dt.timedelta(days=7)


def test_manual_sync_rejects_inverted_range(client) -> None:
    res = client.post("/trips/sync", params={"from": "2025-06-03T00:00:00Z", "to": "2025-06-01T00:00:00Z"})

    assert res.status_code == 400


def test_health(client) -> None:
    assert client.get("/health").json() == {"ok": True, "sync_running": False}


def test_daily_summary(client, repo) -> None:
    asyncio.run(seed_trips(repo))

    data = client.get("/trips/summary/daily", params={"day": "2025-06-02", "vehicleId": 7}).json()

    assert data["summary"]["total_trips"] == 1
    assert data["summary"]["total_distance"] == 3.0
