"""
Request lifecycle engine.

Owns every transition after the claim::

    ACCEPTED -> ARRIVED -> STARTED -> COMPLETED
    SEARCHING | ACCEPTED | ARRIVED | STARTED -> CANCELLED

The transition table in ``domain.enums`` is the only authority.  A write
that is not adjacent-forward (or CANCELLED) fails ``IllegalTransition``
and leaves the row untouched; re-applying the current status is a no-op
success so network retries are harmless.

COMPLETED credits the driver's settlement balance in the same transaction
as the status write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.domain.clock import Clock, utcnow
from marketplace.domain.entities import RideRequest
from marketplace.domain.enums import CancelledBy, RequestStatus
from marketplace.domain.errors import IllegalTransition, NotFound
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.ledger import SettlementLedger
from marketplace.infrastructure.repositories import RequestRepository
from marketplace.infrastructure.transactions import run_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    request: RideRequest
    changed: bool


class LifecycleEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: Optional[SettlementLedger] = None,
        feed: Optional[ChangeFeed] = None,
        clock: Clock = utcnow,
        max_attempts: int = settings.transaction_max_attempts,
    ):
        self.session_factory = session_factory
        self.ledger = ledger or SettlementLedger()
        self.feed = feed
        self._clock = clock
        self.max_attempts = max_attempts

    async def transition(
        self, request_id: int, target: RequestStatus
    ) -> TransitionResult:
        target = RequestStatus(target)
        if target == RequestStatus.CANCELLED:
            return await self.cancel(request_id, cancelled_by=CancelledBy.SYSTEM)

        async def step(request: RideRequest, session: AsyncSession) -> bool:
            # the claim belongs to the acceptance coordinator
            if target == RequestStatus.ACCEPTED:
                raise IllegalTransition(request.status, target)
            return request.transition_to(target, self._clock())

        return await self._run(
            request_id, target, step, settle=target == RequestStatus.COMPLETED
        )

    async def mark_arrived(self, request_id: int) -> TransitionResult:
        return await self.transition(request_id, RequestStatus.ARRIVED)

    async def start(self, request_id: int) -> TransitionResult:
        return await self.transition(request_id, RequestStatus.STARTED)

    async def complete(self, request_id: int) -> TransitionResult:
        return await self.transition(request_id, RequestStatus.COMPLETED)

    async def cancel(
        self,
        request_id: int,
        reason: Optional[str] = None,
        cancelled_by: CancelledBy = CancelledBy.RIDER,
    ) -> TransitionResult:
        async def step(request: RideRequest, session: AsyncSession) -> bool:
            return request.cancel(reason, cancelled_by, self._clock())

        return await self._run(request_id, RequestStatus.CANCELLED, step)

    async def _run(
        self,
        request_id: int,
        target: RequestStatus,
        step: Callable[[RideRequest, AsyncSession], Awaitable[bool]],
        settle: bool = False,
    ) -> TransitionResult:
        async def apply(session: AsyncSession) -> TransitionResult:
            repo = RequestRepository(session)
            request = await repo.get(request_id)
            if request is None:
                raise NotFound(f"Request {request_id} not found")
            changed = await step(request, session)
            if changed:
                await repo.save(request)
                if settle:
                    # same session: status and balance commit together or not at all
                    await self.ledger.credit(session, request.driver_id, request.fare)
            return TransitionResult(request, changed)

        try:
            result = await run_transaction(
                self.session_factory, apply, max_attempts=self.max_attempts
            )
        except IllegalTransition as exc:
            logger.error("Rejected transition on request %s: %s", request_id, exc)
            raise

        if result.changed:
            logger.info("Request %s -> %s", request_id, target.value)
            if self.feed is not None:
                await self.feed.request_changed(result.request)
        else:
            logger.info("Request %s already %s; nothing to do", request_id, target.value)
        return result
