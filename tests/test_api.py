"""
Integration tests for the REST API endpoints.

The app runs against the per-test SQLite database from ``conftest``; the
Redis change feed is replaced with a mock and the expiry worker is not
started.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from marketplace.api.app import create_app
from marketplace.api.dependencies import get_change_feed, get_db, get_session_factory
from marketplace.api.middleware import limiter
from marketplace.infrastructure.change_feed import ChangeFeed
from tests.support import CENTER, north_of

# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory):
    """AsyncClient wired to the test database and a mocked change feed."""
    feed = AsyncMock(spec=ChangeFeed)

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    with (
        patch(
            "marketplace.workers.target_expiry.start_expiry_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "marketplace.workers.target_expiry.stop_expiry_loop",
            new_callable=AsyncMock,
        ),
    ):
        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.dependency_overrides[get_session_factory] = lambda: session_factory
        app.dependency_overrides[get_change_feed] = lambda: feed
        limiter.reset()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


def _body(rider_id: int, **overrides) -> dict:
    dropoff = north_of(CENTER, 6)
    body = {
        "rider_id": rider_id,
        "pickup_lat": CENTER.lat,
        "pickup_lng": CENTER.lng,
        "dropoff_lat": dropoff.lat,
        "dropoff_lng": dropoff.lng,
        "pickup_address": "Cubbon Park",
        "dropoff_address": "Hebbal",
        "vehicle_type": "MINI",
        "fare": 250.0,
    }
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def open_request(client: AsyncClient, add_rider) -> dict:
    resp = await client.post("/api/v1/requests", json=_body(await add_rider()))
    assert resp.status_code == 202
    return resp.json()


# ── Admin ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_open_requests_counts(client: AsyncClient, add_rider):
    rider_id = await add_rider()
    await client.post("/api/v1/requests", json=_body(rider_id))
    await client.post("/api/v1/requests", json=_body(rider_id))
    await client.post("/api/v1/requests", json=_body(rider_id, vehicle_type="AUTO"))

    resp = await client.get("/api/v1/admin/open-requests")

    assert resp.status_code == 200
    assert resp.json() == {"total": 3, "by_vehicle_type": {"MINI": 2, "AUTO": 1}}


# ── Requests ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_request_returns_202(client: AsyncClient, open_request: dict):
    assert open_request["status"] == "SEARCHING"
    assert open_request["version"] == 1
    assert open_request["driver_id"] is None
    assert open_request["pickup_address"] == "Cubbon Park"


@pytest.mark.asyncio
async def test_create_rejects_bad_coordinates(client: AsyncClient, add_rider):
    resp = await client.post(
        "/api/v1/requests", json=_body(await add_rider(), pickup_lat=123.0)
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_idempotency_key(client: AsyncClient, add_rider):
    body = _body(await add_rider(), idempotency_key="unique-key-123")
    resp1 = await client.post("/api/v1/requests", json=body)
    resp2 = await client.post("/api/v1/requests", json=body)
    assert resp1.status_code == 202
    assert resp2.status_code == 202
    assert resp1.json()["id"] == resp2.json()["id"]


@pytest.mark.asyncio
async def test_get_request(client: AsyncClient, open_request: dict):
    resp = await client.get(f"/api/v1/requests/{open_request['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == open_request["id"]


@pytest.mark.asyncio
async def test_get_request_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/requests/9999")
    assert resp.status_code == 404
    assert resp.json() == {
        "detail": "This request is no longer available",
        "code": "NOT_FOUND",
    }


@pytest.mark.asyncio
async def test_accept_then_second_driver_conflicts(
    client: AsyncClient, open_request: dict, add_driver
):
    first = await add_driver(name="First")
    second = await add_driver(name="Second")
    url = f"/api/v1/requests/{open_request['id']}/accept"

    won = await client.post(url, json={"driver_id": first})
    lost = await client.post(url, json={"driver_id": second})
    replay = await client.post(url, json={"driver_id": first})

    assert won.status_code == 200
    data = won.json()
    assert data["replayed"] is False
    assert data["request"]["status"] == "ACCEPTED"
    assert data["request"]["driver_id"] == first
    assert data["request"]["driver"]["vehicle_number"] == "KA01AB1234"
    assert lost.status_code == 409
    assert lost.json()["code"] == "ALREADY_TAKEN"
    assert replay.status_code == 200
    assert replay.json()["replayed"] is True


@pytest.mark.asyncio
async def test_status_flow_and_illegal_write(
    client: AsyncClient, open_request: dict, add_driver
):
    driver_id = await add_driver()
    base = f"/api/v1/requests/{open_request['id']}"
    await client.post(f"{base}/accept", json={"driver_id": driver_id})

    skipped = await client.post(f"{base}/status", json={"status": "COMPLETED"})
    assert skipped.status_code == 409
    assert skipped.json()["code"] == "ILLEGAL_TRANSITION"

    for status in ("ARRIVED", "STARTED", "COMPLETED"):
        resp = await client.post(f"{base}/status", json={"status": status})
        assert resp.status_code == 200
        assert resp.json()["status"] == status

    late_cancel = await client.patch(f"{base}/cancel", json={"reason": "changed mind"})
    assert late_cancel.status_code == 409


@pytest.mark.asyncio
async def test_cancel_without_body(client: AsyncClient, open_request: dict):
    url = f"/api/v1/requests/{open_request['id']}/cancel"
    resp = await client.patch(url)
    again = await client.patch(url)

    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"
    assert resp.json()["cancelled_by"] == "RIDER"
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_fare_edit_locked_after_accept(
    client: AsyncClient, open_request: dict, add_driver
):
    base = f"/api/v1/requests/{open_request['id']}"

    edited = await client.patch(f"{base}/fare", json={"amount": 300.0})
    assert edited.status_code == 200
    assert edited.json()["changed"] is True
    assert edited.json()["request"]["version"] == open_request["version"] + 1

    await client.post(f"{base}/accept", json={"driver_id": await add_driver()})
    locked = await client.patch(f"{base}/fare", json={"amount": 400.0})
    assert locked.status_code == 409
    assert locked.json()["code"] == "REQUEST_NOT_EDITABLE"


@pytest.mark.asyncio
async def test_pickup_edit_ignores_stale_sequence(
    client: AsyncClient, open_request: dict
):
    url = f"/api/v1/requests/{open_request['id']}/pickup"
    moved = north_of(CENTER, 0.3)

    fresh = await client.patch(
        url, json={"lat": moved.lat, "lng": moved.lng, "address": "Gate 2", "sequence": 2}
    )
    stale = await client.patch(
        url, json={"lat": CENTER.lat, "lng": CENTER.lng, "sequence": 1}
    )

    assert fresh.json()["changed"] is True
    assert stale.status_code == 200
    assert stale.json()["changed"] is False
    assert stale.json()["request"]["pickup_address"] == "Gate 2"


@pytest.mark.asyncio
async def test_decline_hides_request_from_queue(
    client: AsyncClient, open_request: dict, add_driver
):
    driver_id = await add_driver()

    queue = await client.get(f"/api/v1/drivers/{driver_id}/queue")
    assert [c["request"]["id"] for c in queue.json()] == [open_request["id"]]

    resp = await client.post(
        f"/api/v1/requests/{open_request['id']}/decline",
        json={"driver_id": driver_id, "reason": "too far"},
    )
    assert resp.status_code == 200
    assert resp.json()["released_to_open_market"] is False

    queue = await client.get(f"/api/v1/drivers/{driver_id}/queue")
    assert queue.json() == []


# ── Drivers ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_online_toggle(client: AsyncClient, add_driver):
    driver_id = await add_driver(is_online=False)
    resp = await client.put(f"/api/v1/drivers/{driver_id}/online", json={"online": True})
    assert resp.status_code == 200
    assert resp.json()["is_online"] is True


@pytest.mark.asyncio
async def test_location_report_and_permission_denied(client: AsyncClient, add_driver):
    driver_id = await add_driver(location=None)
    base = f"/api/v1/drivers/{driver_id}"

    ack = await client.post(f"{base}/location", json={"lat": CENTER.lat, "lng": CENTER.lng})
    assert ack.status_code == 200
    assert ack.json()["status"] == "PERSISTED"

    denied = await client.post(f"{base}/location/permission-denied")
    assert denied.status_code == 200
    assert denied.json()["is_online"] is False

    blocked = await client.post(f"{base}/location", json={"lat": CENTER.lat, "lng": CENTER.lng})
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_unknown_driver_queue(client: AsyncClient):
    resp = await client.get("/api/v1/drivers/9999/queue")
    assert resp.status_code == 404
