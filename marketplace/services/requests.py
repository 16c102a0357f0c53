"""
Rider-side request operations and the edits allowed while a request is open.

* ``create``                 -- new SEARCHING request, idempotent on a client key
* ``decline``                -- a driver turns an offer down
* ``renegotiate_fare``       -- SEARCHING only; the fare locks at accept
* ``move_pickup``            -- sequence-guarded pickup edit
* ``release_expired_targets``-- drop driver pins whose offer window passed

Every mutation runs through ``run_transaction`` so it composes with the
acceptance race: an edit that loses to a concurrent accept is re-run
against the accepted row and fails ``RequestNotEditable`` instead of
overwriting the winner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.domain.clock import Clock, utcnow
from marketplace.domain.entities import Coordinate, RideRequest
from marketplace.domain.enums import RequestStatus, VehicleType
from marketplace.domain.errors import NotFound, RequestNotEditable
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.repositories import (
    DeclineRepository,
    DriverRepository,
    RequestRepository,
)
from marketplace.infrastructure.transactions import run_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Created:
    request: RideRequest
    created: bool = True


@dataclass(frozen=True)
class Declined:
    request: RideRequest
    recorded: bool
    released: bool


@dataclass(frozen=True)
class Edited:
    request: RideRequest
    changed: bool


class RequestService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
        clock: Clock = utcnow,
        target_ttl_seconds: int = settings.targeted_offer_ttl_seconds,
        max_attempts: int = settings.transaction_max_attempts,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self._clock = clock
        self.target_ttl_seconds = target_ttl_seconds
        self.max_attempts = max_attempts

    async def _transact(self, fn):
        return await run_transaction(
            self.session_factory, fn, max_attempts=self.max_attempts
        )

    async def _notify(self, request: RideRequest) -> None:
        if self.feed is not None:
            await self.feed.request_changed(request)

    async def _load(self, session: AsyncSession, request_id: int) -> RideRequest:
        request = await RequestRepository(session).get(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    # ── create ────────────────────────────────────────────────────

    async def create(
        self,
        rider_id: int,
        pickup: Coordinate,
        dropoff: Coordinate,
        vehicle_type: VehicleType,
        fare: float,
        payment_method: str = "CASH",
        pickup_address: str = "",
        dropoff_address: str = "",
        target_driver_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Created:
        """
        Open a new request in SEARCHING.

        A replay with an ``idempotency_key`` that was already used returns
        the stored request with ``created=False``.
        """
        now = self._clock()
        expires_at = None
        if target_driver_id is not None and self.target_ttl_seconds > 0:
            expires_at = now + timedelta(seconds=self.target_ttl_seconds)

        async def insert(session: AsyncSession) -> Created:
            repo = RequestRepository(session)
            if idempotency_key:
                existing = await repo.get_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return Created(existing, created=False)
            if target_driver_id is not None:
                if await DriverRepository(session).get(target_driver_id) is None:
                    raise NotFound(f"Driver {target_driver_id} not found")
            request = await repo.create(
                RideRequest(
                    rider_id=rider_id,
                    pickup=pickup.normalized(),
                    dropoff=dropoff.normalized(),
                    pickup_address=pickup_address,
                    dropoff_address=dropoff_address,
                    vehicle_type=VehicleType(vehicle_type),
                    fare=fare,
                    payment_method=payment_method,
                    status=RequestStatus.SEARCHING,
                    target_driver_id=target_driver_id,
                    target_expires_at=expires_at,
                    idempotency_key=idempotency_key,
                    created_at=now,
                )
            )
            return Created(request)

        try:
            outcome = await self._transact(insert)
        except IntegrityError:
            if not idempotency_key:
                raise
            # a concurrent replay inserted the same key first
            async with self.session_factory() as session:
                existing = await RequestRepository(session).get_by_idempotency_key(
                    idempotency_key
                )
            if existing is None:
                raise
            outcome = Created(existing, created=False)

        if outcome.created:
            logger.info(
                "Request %s created by rider %s (%s%s)",
                outcome.request.id,
                rider_id,
                outcome.request.vehicle_type.value,
                f", pinned to driver {target_driver_id}" if target_driver_id else "",
            )
            await self._notify(outcome.request)
        else:
            logger.info("Replayed create for idempotency key %s", idempotency_key)
        return outcome

    async def get(self, request_id: int) -> RideRequest:
        async with self.session_factory() as session:
            return await self._load(session, request_id)

    # ── driver decline ────────────────────────────────────────────

    async def decline(
        self, request_id: int, driver_id: int, reason: Optional[str] = None
    ) -> Declined:
        """
        Record that *driver_id* turned the request down.

        The pinned driver declining also releases the pin, which bumps the
        version and puts the request on the open market.
        """

        async def apply(session: AsyncSession) -> Declined:
            request = await self._load(session, request_id)
            declines = DeclineRepository(session)
            # a replayed decline succeeds whatever happened to the request since
            if await declines.exists(request_id, driver_id):
                return Declined(request, recorded=False, released=False)
            if request.status != RequestStatus.SEARCHING:
                raise RequestNotEditable(
                    f"Request {request_id} is {request.status.value}"
                )
            recorded = await declines.add(request_id, driver_id, reason)
            released = False
            if request.target_driver_id == driver_id:
                released = request.release_target()
                await RequestRepository(session).save(request)
            return Declined(request, recorded, released)

        outcome = await self._transact(apply)
        logger.info("Driver %s declined request %s", driver_id, request_id)
        if outcome.released:
            logger.info("Request %s released to open market", request_id)
            await self._notify(outcome.request)
        elif outcome.recorded and self.feed is not None:
            await self.feed.driver_changed(driver_id)
        return outcome

    # ── edits while open ──────────────────────────────────────────

    async def renegotiate_fare(self, request_id: int, amount: float) -> Edited:
        async def apply(session: AsyncSession) -> Edited:
            request = await self._load(session, request_id)
            changed = request.renegotiate_fare(amount)
            if changed:
                await RequestRepository(session).save(request)
            return Edited(request, changed)

        outcome = await self._transact(apply)
        if outcome.changed:
            logger.info("Request %s fare -> %.2f", request_id, amount)
            await self._notify(outcome.request)
        return outcome

    async def move_pickup(
        self,
        request_id: int,
        location: Coordinate,
        address: str,
        sequence: int,
    ) -> Edited:
        async def apply(session: AsyncSession) -> Edited:
            request = await self._load(session, request_id)
            changed = request.move_pickup(location, address, sequence)
            if changed:
                await RequestRepository(session).save(request)
            return Edited(request, changed)

        outcome = await self._transact(apply)
        if outcome.changed:
            logger.info("Request %s pickup moved (seq %d)", request_id, sequence)
            await self._notify(outcome.request)
        else:
            logger.debug(
                "Ignored stale pickup edit for request %s (seq %d)", request_id, sequence
            )
        return outcome

    # ── targeted offer expiry ─────────────────────────────────────

    async def release_expired_targets(
        self, now: Optional[datetime] = None
    ) -> list[RideRequest]:
        """Release every pin whose window has passed.  One transaction each."""
        now = now or self._clock()
        async with self.session_factory() as session:
            candidates = await RequestRepository(session).expired_targets(now)

        released: list[RideRequest] = []
        for candidate in candidates:

            async def apply(session: AsyncSession, request_id=candidate.id):
                request = await RequestRepository(session).get(request_id)
                # re-checked: it may have been accepted or re-pinned meanwhile
                if request is None or not request.target_expired(now):
                    return None
                if not request.release_target():
                    return None
                await RequestRepository(session).save(request)
                return request

            request = await self._transact(apply)
            if request is not None:
                logger.info("Request %s pin expired; open market", request.id)
                await self._notify(request)
                released.append(request)
        return released
