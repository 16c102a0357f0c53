"""
Shared test fixtures.

Each test gets its own SQLite database file (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis, and so concurrent sessions really are
separate connections.  Transactions are opened with ``BEGIN IMMEDIATE``:
SQLite then serialises writers the way row locks would, and a loser sees
the winner's committed row on its retry.  Whole transactions therefore
run back to back; tests that need a read to go stale before its write
force that ordering themselves.
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace.domain.entities import Coordinate, RideRequest
from marketplace.domain.enums import VehicleType
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.database import Base
from marketplace.infrastructure.models import DriverModel, RiderModel
from marketplace.infrastructure.repositories import RequestRepository
from tests.support import CENTER, FrozenClock, north_of

# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, dispose afterwards."""
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _no_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def feed() -> AsyncMock:
    """Stand-in for the Redis change feed; records every publish."""
    return AsyncMock(spec=ChangeFeed)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ── Seed helpers ──────────────────────────────────────────────────────


@pytest.fixture
def add_rider(session_factory):
    async def _add(name: str = "Priya") -> int:
        async with session_factory() as session:
            async with session.begin():
                rider = RiderModel(name=name)
                session.add(rider)
                await session.flush()
                return rider.id

    return _add


@pytest.fixture
def add_driver(session_factory):
    async def _add(
        name: str = "Ravi",
        vehicle_type: VehicleType = VehicleType.MINI,
        location: Coordinate | None = CENTER,
        is_online: bool = True,
        is_approved: bool = True,
        last_location_at: datetime | None = None,
    ) -> int:
        async with session_factory() as session:
            async with session.begin():
                driver = DriverModel(
                    name=name,
                    phone="+918000000000",
                    vehicle_type=vehicle_type,
                    vehicle_model="Swift",
                    vehicle_number="KA01AB1234",
                    rating=4.8,
                    is_online=is_online,
                    is_approved=is_approved,
                    current_lat=location.lat if location else None,
                    current_lng=location.lng if location else None,
                    last_location_at=last_location_at,
                )
                session.add(driver)
                await session.flush()
                return driver.id

    return _add


@pytest.fixture
def add_request(session_factory, add_rider):
    async def _add(**fields) -> RideRequest:
        if "rider_id" not in fields:
            fields["rider_id"] = await add_rider()
        fields.setdefault("pickup", CENTER)
        fields.setdefault("dropoff", north_of(CENTER, 8))
        fields.setdefault("vehicle_type", VehicleType.MINI)
        fields.setdefault("fare", 250.0)
        async with session_factory() as session:
            async with session.begin():
                return await RequestRepository(session).create(RideRequest(**fields))

    return _add


@pytest.fixture
def load_request(session_factory):
    async def _load(request_id: int) -> RideRequest | None:
        async with session_factory() as session:
            return await RequestRepository(session).get(request_id)

    return _load


@pytest.fixture
def load_driver(session_factory):
    async def _load(driver_id: int) -> DriverModel | None:
        async with session_factory() as session:
            return await session.get(DriverModel, driver_id)

    return _load
