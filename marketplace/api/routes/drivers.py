"""
Driver endpoints
================

PUT  /api/v1/drivers/{id}/online                       -- go online / offline
POST /api/v1/drivers/{id}/location                     -- report a GPS fix
POST /api/v1/drivers/{id}/location/permission-denied   -- device revoked location
GET  /api/v1/drivers/{id}/queue                        -- ranked visible requests
WS   /api/v1/drivers/{id}/offers                       -- live single-slot offers
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.api.dependencies import (
    get_change_feed,
    get_location_tracker,
    get_session_factory,
)
from marketplace.api.middleware import limiter
from marketplace.api.schemas import (
    CandidateResponse,
    DriverResponse,
    ErrorResponse,
    LocationAckResponse,
    LocationBody,
    OnlineBody,
)
from marketplace.domain.entities import Coordinate
from marketplace.domain.errors import NotFound
from marketplace.infrastructure.change_feed import ChangeFeed
from marketplace.services.location import LocationTracker
from marketplace.workers.driver_feed import DriverFeed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drivers", tags=["drivers"])

# application-defined close code, mirrors HTTP 404
WS_CLOSE_NOT_FOUND = 4404


@router.put(
    "/{driver_id}/online",
    response_model=DriverResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Toggle driver availability",
)
@limiter.limit("100/minute")
async def set_online(
    request: Request,
    driver_id: int,
    body: OnlineBody,
    tracker: LocationTracker = Depends(get_location_tracker),
):
    return DriverResponse.from_entity(await tracker.set_online(driver_id, body.online))


@router.post(
    "/{driver_id}/location",
    response_model=LocationAckResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Report the driver's current position",
)
@limiter.limit("100/minute")
async def report_location(
    request: Request,
    driver_id: int,
    body: LocationBody,
    tracker: LocationTracker = Depends(get_location_tracker),
):
    ack = await tracker.report(driver_id, Coordinate(body.lat, body.lng))
    return LocationAckResponse(
        status=ack.status.value,
        lat=ack.location.lat if ack.location else None,
        lng=ack.location.lng if ack.location else None,
        at=ack.at,
    )


@router.post(
    "/{driver_id}/location/permission-denied",
    response_model=DriverResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Stop tracking after the device revoked location access",
)
@limiter.limit("100/minute")
async def location_permission_denied(
    request: Request,
    driver_id: int,
    tracker: LocationTracker = Depends(get_location_tracker),
):
    return DriverResponse.from_entity(await tracker.permission_denied(driver_id))


@router.get(
    "/{driver_id}/queue",
    response_model=list[CandidateResponse],
    responses={404: {"model": ErrorResponse}},
    summary="Requests visible to the driver, best first",
)
@limiter.limit("100/minute")
async def driver_queue(
    request: Request,
    driver_id: int,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    feed = DriverFeed(session_factory, driver_id, request.app.state.deduper)
    return [CandidateResponse.from_candidate(c) for c in await feed.queue()]


@router.websocket("/{driver_id}/offers")
async def offer_stream(
    websocket: WebSocket,
    driver_id: int,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    changes: ChangeFeed = Depends(get_change_feed),
):
    await websocket.accept()
    feed = DriverFeed(session_factory, driver_id, websocket.app.state.deduper, changes)
    pump = asyncio.create_task(_pump_offers(websocket, feed))
    hangup = asyncio.create_task(_until_disconnect(websocket))
    try:
        done, _ = await asyncio.wait(
            {pump, hangup}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        pump.cancel()
        hangup.cancel()
        # let the change-feed subscription unsubscribe before returning
        await asyncio.gather(pump, hangup, return_exceptions=True)

    if hangup in done:
        logger.info("Driver %s offer stream disconnected", driver_id)
        return
    try:
        pump.result()
    except NotFound:
        await websocket.close(code=WS_CLOSE_NOT_FOUND)
    except WebSocketDisconnect:
        logger.info("Driver %s offer stream disconnected", driver_id)
    else:
        await websocket.close()


async def _pump_offers(websocket: WebSocket, feed: DriverFeed) -> None:
    async with aclosing(feed.offers()) as offers:
        async for offer in offers:
            await websocket.send_json(offer.as_message())


async def _until_disconnect(websocket: WebSocket) -> None:
    """Drain client frames; the driver app sends nothing we act on."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
