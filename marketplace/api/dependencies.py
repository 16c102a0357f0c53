"""FastAPI dependency injection helpers."""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.infrastructure.database import async_session_factory
from marketplace.infrastructure.redis_client import get_redis
from marketplace.infrastructure.road_snap import RoadSnapper
from marketplace.services.acceptance import AcceptanceCoordinator
from marketplace.services.lifecycle import LifecycleEngine
from marketplace.services.location import LocationTracker
from marketplace.services.requests import RequestService


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Services open one session per transaction attempt themselves."""
    return async_session_factory


async def get_change_feed() -> ChangeFeed:
    return ChangeFeed(await get_redis())


def get_request_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> RequestService:
    return RequestService(session_factory, feed=feed)


def get_acceptance(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> AcceptanceCoordinator:
    return AcceptanceCoordinator(session_factory, feed=feed)


def get_lifecycle(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> LifecycleEngine:
    return LifecycleEngine(session_factory, feed=feed)


def get_location_tracker(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
) -> LocationTracker:
    snapper = RoadSnapper() if settings.road_snap_enabled else None
    return LocationTracker(
        session_factory,
        snapper=snapper,
        feed=feed,
        denied=request.app.state.location_denied,
    )
