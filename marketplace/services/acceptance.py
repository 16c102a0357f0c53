"""
Atomic Acceptance Protocol
==========================

``accept(request_id, driver_id, snapshot)`` claims a SEARCHING request for
exactly one driver.

The claim runs as one store transaction: read the request, validate it is
still claimable by this driver (SEARCHING, and not pinned to somebody
else), then write ACCEPTED + the denormalised driver snapshot + the
accepted-at stamp.  Under N concurrent callers every writer carries the
version it read; the first commit bumps it, so every other writer's
UPDATE matches zero rows, its transaction is re-run against the committed
state, and it fails ``AlreadyTaken``.  Nobody overwrites a winner.

A lost claim is a final, user-facing outcome.  There is no client-side
retry on top of the store's own conflict retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.domain.clock import Clock, utcnow
from marketplace.domain.entities import DriverSnapshot, RideRequest
from marketplace.domain.errors import AlreadyTaken, NotFound
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.repositories import DriverRepository, RequestRepository
from marketplace.infrastructure.transactions import run_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Accepted:
    request: RideRequest
    replayed: bool = False

    @property
    def driver_id(self) -> int:
        return self.request.driver_id


class AcceptanceCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
        clock: Clock = utcnow,
        max_attempts: int = settings.transaction_max_attempts,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self._clock = clock
        self.max_attempts = max_attempts

    async def accept(
        self,
        request_id: int,
        driver_id: int,
        snapshot: Optional[DriverSnapshot] = None,
    ) -> Accepted:
        """
        Claim *request_id* for *driver_id*.

        Returns ``Accepted``; raises ``NotFound`` or ``AlreadyTaken``.
        When *snapshot* is omitted the driver's current profile is copied
        inside the same transaction.
        """

        async def claim(session: AsyncSession) -> Accepted:
            requests = RequestRepository(session)
            request = await requests.get(request_id)
            if request is None:
                raise NotFound(f"Request {request_id} not found")

            snap = snapshot
            if snap is None:
                driver = await DriverRepository(session).get(driver_id)
                if driver is None:
                    raise NotFound(f"Driver {driver_id} not found")
                snap = driver.snapshot()

            if not request.accept(driver_id, snap, self._clock()):
                return Accepted(request, replayed=True)
            await requests.save(request)
            return Accepted(request)

        try:
            outcome = await run_transaction(
                self.session_factory, claim, max_attempts=self.max_attempts
            )
        except AlreadyTaken as exc:
            logger.info("Driver %s lost request %s: %s", driver_id, request_id, exc)
            raise

        if outcome.replayed:
            logger.info("Driver %s replayed accept of request %s", driver_id, request_id)
        else:
            logger.info(
                "Request %s accepted by driver %s (version %s)",
                request_id,
                driver_id,
                outcome.request.version,
            )
            if self.feed is not None:
                await self.feed.request_changed(outcome.request)
        return outcome
