"""
Targeted Offer Expiry Worker
============================

Runs every ``TARGET_EXPIRY_INTERVAL_SECONDS`` (default 15 s).

A request created with a target driver is visible to that driver only.
Once ``target_expires_at`` passes without an accept, the pin is dropped
and the request falls back to open-market visibility (version bumps, so
every nearby driver is alerted afresh).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process sweeps per cycle.
* Each release is its own optimistic transaction: a pin accepted between
  the sweep query and the release is re-checked and left alone.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.database import async_session_factory
from marketplace.infrastructure.locks import DistributedLock
from marketplace.infrastructure.redis_client import get_redis
from marketplace.services.requests import RequestService

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_expiry_loop() -> None:
    global _task, _stop_event
    if settings.targeted_offer_ttl_seconds <= 0:
        logger.info("Targeted offers never expire; expiry worker not started")
        return
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Target expiry worker started (interval=%ds)",
        settings.target_expiry_interval_seconds,
    )


async def stop_expiry_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = _stop_event = None
    logger.info("Target expiry worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_cycle()
        except Exception:
            logger.exception("Unhandled error in target expiry cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.target_expiry_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_expiry_cycle(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    redis=None,
) -> int:
    """Execute one sweep.  Returns the number of pins released."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "target_expiry", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker; skipping cycle")
        return 0

    try:
        service = RequestService(
            session_factory or async_session_factory, feed=ChangeFeed(redis)
        )
        released = await service.release_expired_targets()
        if released:
            logger.info("Target expiry cycle: %d pins released", len(released))
        return len(released)
    except Exception:
        logger.exception("Error in target expiry cycle")
        return 0
    finally:
        await lock.release()
