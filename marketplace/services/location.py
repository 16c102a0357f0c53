"""
Driver location tracking.

``report(driver_id, raw)`` is the single writer of a driver's position.

* A report from an offline driver is dropped (not an error): a straggler
  fix sent after going offline must never resurrect presence.
* Throttled to one persisted fix per ``min_interval`` seconds.  The check
  is made once on the read and again inside the UPDATE, so two racing
  reports cannot both land.
* The raw fix is optionally road-snapped before persisting.
* Store hiccups are retried ``retries`` times, backing off attempt x 1 s,
  then surfaced as ``Transient``.
* After a permission-denied signal the driver is forced offline and any
  further report fails ``PermissionDenied`` without retrying, until the
  driver explicitly goes online again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.domain.clock import Clock, utcnow
from marketplace.domain.entities import Coordinate, DriverPresence
from marketplace.domain.errors import NotFound, PermissionDenied, Transient
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.repositories import DriverRepository
from marketplace.infrastructure.road_snap import RoadSnapper

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STORE_HICCUPS = (OperationalError, InterfaceError)


class LocationStatus(str, Enum):
    PERSISTED = "PERSISTED"
    THROTTLED = "THROTTLED"
    IGNORED_OFFLINE = "IGNORED_OFFLINE"


@dataclass(frozen=True)
class LocationAck:
    status: LocationStatus
    location: Optional[Coordinate] = None
    at: Optional[datetime] = None

    @property
    def persisted(self) -> bool:
        return self.status == LocationStatus.PERSISTED


class LocationTracker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        snapper: Optional[RoadSnapper] = None,
        feed: Optional[ChangeFeed] = None,
        min_interval_seconds: float = settings.location_min_interval_seconds,
        retries: int = settings.location_retries,
        backoff_seconds: float = settings.location_backoff_seconds,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        denied: Optional[set[int]] = None,
    ):
        self.session_factory = session_factory
        self.snapper = snapper
        self.feed = feed
        self.min_interval = timedelta(seconds=min_interval_seconds)
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._clock = clock
        self._sleep = sleep
        # drivers whose device revoked location access; shared per process
        self._denied = denied if denied is not None else set()

    # ── store access with bounded retry ───────────────────────────

    async def _with_retries(
        self, fn: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        return await fn(session)
            except _STORE_HICCUPS as exc:
                last_error = exc
                if attempt < self.retries:
                    delay = self.backoff_seconds * (attempt + 1)
                    logger.warning(
                        "Location store error (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1,
                        self.retries + 1,
                        delay,
                        exc,
                    )
                    await self._sleep(delay)
        raise Transient("Location store unavailable") from last_error

    async def _get_driver(self, driver_id: int) -> DriverPresence:
        async def read(session: AsyncSession) -> Optional[DriverPresence]:
            return await DriverRepository(session).get(driver_id)

        driver = await self._with_retries(read)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        return driver

    # ── operations ────────────────────────────────────────────────

    async def report(self, driver_id: int, raw: Coordinate) -> LocationAck:
        if driver_id in self._denied:
            raise PermissionDenied(f"Location tracking stopped for driver {driver_id}")

        now = self._clock()
        driver = await self._get_driver(driver_id)
        if not driver.is_online:
            logger.debug("Dropped fix from offline driver %s", driver_id)
            return LocationAck(LocationStatus.IGNORED_OFFLINE)
        if (
            driver.last_location_at is not None
            and now - driver.last_location_at < self.min_interval
        ):
            logger.debug("Throttled fix from driver %s", driver_id)
            return LocationAck(LocationStatus.THROTTLED)

        location = raw
        if self.snapper is not None:
            location = await self.snapper.snap(raw)
        location = location.normalized()

        async def persist(session: AsyncSession) -> bool:
            return await DriverRepository(session).update_location(
                driver_id, location, now, not_after=now - self.min_interval
            )

        if not await self._with_retries(persist):
            # lost to a concurrent report or an offline toggle
            current = await self._get_driver(driver_id)
            status = (
                LocationStatus.THROTTLED
                if current.is_online
                else LocationStatus.IGNORED_OFFLINE
            )
            logger.debug("Fix from driver %s not persisted: %s", driver_id, status.value)
            return LocationAck(status)

        if self.feed is not None:
            await self.feed.driver_changed(driver_id)
        return LocationAck(LocationStatus.PERSISTED, location, now)

    async def set_online(self, driver_id: int, online: bool) -> DriverPresence:
        async def toggle(session: AsyncSession) -> Optional[DriverPresence]:
            repo = DriverRepository(session)
            if not await repo.set_online(driver_id, online):
                return None
            return await repo.get(driver_id)

        driver = await self._with_retries(toggle)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        if online:
            self._denied.discard(driver_id)
        logger.info("Driver %s is %s", driver_id, "online" if online else "offline")
        if self.feed is not None:
            await self.feed.driver_changed(driver_id)
        return driver

    async def permission_denied(self, driver_id: int) -> DriverPresence:
        """Stop tracking: force the driver offline.  Never retried by callers."""
        driver = await self.set_online(driver_id, False)
        self._denied.add(driver_id)
        logger.warning("Location permission denied for driver %s; forced offline", driver_id)
        return driver
