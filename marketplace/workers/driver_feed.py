"""
Per-driver offer feed.

The reactive loop behind the driver app's single-slot "new request" UI:

1. Subscribe to change notices for the driver's vehicle type (and the
   driver's own presence channel).
2. On every notice, re-read the authoritative store: presence, open
   requests in the H3 disk plus the driver's targeted requests, and the
   driver's declines.
3. Run the dispatch filter.
4. Alert for the head candidate only if this ``(request, version)`` was
   not already shown: first the per-connection ``RecentlyProcessed`` set,
   then the process-wide ``NotificationDeduper``.

A snapshot is taken before the first notice, so a driver connecting to a
quiet market still sees what is already open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.domain.dedup import NotificationDeduper, RecentlyProcessed
from marketplace.domain.dispatch import Candidate, eligible_requests
from marketplace.domain.entities import DriverPresence, RideRequest
from marketplace.domain.errors import NotFound
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.repositories import (
    DeclineRepository,
    DriverRepository,
    RequestRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Offer:
    request: RideRequest
    targeted: bool
    distance_km: Optional[float] = None

    def as_message(self) -> dict:
        r = self.request
        return {
            "kind": "offer",
            "request_id": r.id,
            "version": r.version,
            "targeted": self.targeted,
            "distance_km": (
                round(self.distance_km, 3) if self.distance_km is not None else None
            ),
            "vehicle_type": r.vehicle_type.value,
            "fare": r.fare,
            "payment_method": r.payment_method,
            "pickup": {"lat": r.pickup.lat, "lng": r.pickup.lng},
            "dropoff": {"lat": r.dropoff.lat, "lng": r.dropoff.lng},
            "pickup_address": r.pickup_address,
            "dropoff_address": r.dropoff_address,
        }


class DriverFeed:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        driver_id: int,
        deduper: NotificationDeduper,
        changes: Optional[ChangeFeed] = None,
        radius_km: float = settings.dispatch_radius_km,
        cache_size: int = settings.dedup_cache_size,
    ):
        self.session_factory = session_factory
        self.driver_id = driver_id
        self.deduper = deduper
        self.changes = changes
        self.radius_km = radius_km
        self._recent = RecentlyProcessed(cache_size)

    async def snapshot(self) -> tuple[DriverPresence, list[Candidate]]:
        """Re-read the store and rank what this driver may see right now."""
        async with self.session_factory() as session:
            driver = await DriverRepository(session).get(self.driver_id)
            if driver is None:
                raise NotFound(f"Driver {self.driver_id} not found")
            if not driver.is_dispatchable:
                return driver, []
            open_requests = await RequestRepository(session).open_for_driver(
                driver, self.radius_km
            )
            declined = await DeclineRepository(session).open_declined_by(self.driver_id)
        return driver, eligible_requests(driver, open_requests, self.radius_km, declined)

    async def queue(self) -> list[Candidate]:
        _, ranked = await self.snapshot()
        return ranked

    def gate(self, ranked: list[Candidate]) -> Optional[Offer]:
        """Offer for the head candidate, or ``None`` when already shown."""
        if not ranked:
            return None
        head = ranked[0]
        request = head.request
        key = (request.id, request.version)
        if key in self._recent:
            return None
        self._recent.add(key)
        if not self.deduper.should_alert(request.id, self.driver_id, request.version):
            return None
        self.deduper.mark_alerted(request.id, self.driver_id, request.version)
        return Offer(request, head.targeted, head.distance_km)

    async def offers(self) -> AsyncIterator[Offer]:
        driver, ranked = await self.snapshot()
        offer = self.gate(ranked)
        if offer is not None:
            yield offer
        if self.changes is None:
            return

        async for notice in self.changes.listen(driver.vehicle_type, self.driver_id):
            logger.debug("Driver %s feed refresh on %s", self.driver_id, notice)
            driver, ranked = await self.snapshot()
            offer = self.gate(ranked)
            if offer is not None:
                yield offer
