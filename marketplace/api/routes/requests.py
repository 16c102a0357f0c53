"""
Request endpoints
=================

POST  /api/v1/requests                  -- create a request (202, idempotent)
GET   /api/v1/requests/{id}             -- read a request
POST  /api/v1/requests/{id}/accept      -- atomic claim by a driver
POST  /api/v1/requests/{id}/decline     -- driver turns the offer down
POST  /api/v1/requests/{id}/status      -- ARRIVED / STARTED / COMPLETED / CANCELLED
PATCH /api/v1/requests/{id}/cancel      -- cancel with reason
PATCH /api/v1/requests/{id}/fare        -- renegotiate while SEARCHING
PATCH /api/v1/requests/{id}/pickup      -- sequence-guarded pickup edit

Domain errors propagate to the exception handlers in ``api.app``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from marketplace.api.dependencies import (
    get_acceptance,
    get_lifecycle,
    get_request_service,
)
from marketplace.api.middleware import limiter
from marketplace.api.schemas import (
    AcceptBody,
    AcceptResponse,
    CancelBody,
    DeclineBody,
    DeclineResponse,
    EditResponse,
    ErrorResponse,
    FareBody,
    PickupBody,
    RequestCreate,
    RequestResponse,
    StatusBody,
)
from marketplace.domain.entities import Coordinate
from marketplace.services.acceptance import AcceptanceCoordinator
from marketplace.services.lifecycle import LifecycleEngine
from marketplace.services.requests import RequestService

router = APIRouter(prefix="/requests", tags=["requests"])

_NOT_FOUND = {404: {"model": ErrorResponse}}
_CONFLICT = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=202,
    response_model=RequestResponse,
    summary="Create a ride request",
    responses={202: {"description": "Request is SEARCHING; drivers are notified async."}},
)
@limiter.limit("100/minute")
async def create_request(
    request: Request,
    body: RequestCreate,
    service: RequestService = Depends(get_request_service),
):
    outcome = await service.create(
        rider_id=body.rider_id,
        pickup=Coordinate(body.pickup_lat, body.pickup_lng),
        dropoff=Coordinate(body.dropoff_lat, body.dropoff_lng),
        vehicle_type=body.vehicle_type,
        fare=body.fare,
        payment_method=body.payment_method,
        pickup_address=body.pickup_address,
        dropoff_address=body.dropoff_address,
        target_driver_id=body.target_driver_id,
        idempotency_key=body.idempotency_key,
    )
    return RequestResponse.from_entity(outcome.request)


@router.get(
    "/{request_id}",
    response_model=RequestResponse,
    responses=_NOT_FOUND,
    summary="Get a request",
)
@limiter.limit("100/minute")
async def get_request(
    request: Request,
    request_id: int,
    service: RequestService = Depends(get_request_service),
):
    return RequestResponse.from_entity(await service.get(request_id))


@router.post(
    "/{request_id}/accept",
    response_model=AcceptResponse,
    responses=_CONFLICT,
    summary="Claim a request for a driver",
)
@limiter.limit("100/minute")
async def accept_request(
    request: Request,
    request_id: int,
    body: AcceptBody,
    coordinator: AcceptanceCoordinator = Depends(get_acceptance),
):
    outcome = await coordinator.accept(request_id, body.driver_id)
    return AcceptResponse(
        request=RequestResponse.from_entity(outcome.request),
        replayed=outcome.replayed,
    )


@router.post(
    "/{request_id}/decline",
    response_model=DeclineResponse,
    responses=_CONFLICT,
    summary="Decline an offered request",
)
@limiter.limit("100/minute")
async def decline_request(
    request: Request,
    request_id: int,
    body: DeclineBody,
    service: RequestService = Depends(get_request_service),
):
    outcome = await service.decline(request_id, body.driver_id, body.reason)
    return DeclineResponse(
        request_id=request_id,
        driver_id=body.driver_id,
        released_to_open_market=outcome.released,
    )


@router.post(
    "/{request_id}/status",
    response_model=RequestResponse,
    responses=_CONFLICT,
    summary="Advance the trip lifecycle",
)
@limiter.limit("100/minute")
async def update_status(
    request: Request,
    request_id: int,
    body: StatusBody,
    engine: LifecycleEngine = Depends(get_lifecycle),
):
    result = await engine.transition(request_id, body.status)
    return RequestResponse.from_entity(result.request)


@router.patch(
    "/{request_id}/cancel",
    response_model=RequestResponse,
    responses=_CONFLICT,
    summary="Cancel a request",
)
@limiter.limit("100/minute")
async def cancel_request(
    request: Request,
    request_id: int,
    body: Optional[CancelBody] = None,
    engine: LifecycleEngine = Depends(get_lifecycle),
):
    body = body or CancelBody()
    result = await engine.cancel(request_id, body.reason, body.cancelled_by)
    return RequestResponse.from_entity(result.request)


@router.patch(
    "/{request_id}/fare",
    response_model=EditResponse,
    responses=_CONFLICT,
    summary="Renegotiate the fare while searching",
)
@limiter.limit("100/minute")
async def renegotiate_fare(
    request: Request,
    request_id: int,
    body: FareBody,
    service: RequestService = Depends(get_request_service),
):
    outcome = await service.renegotiate_fare(request_id, body.amount)
    return EditResponse(
        request=RequestResponse.from_entity(outcome.request), changed=outcome.changed
    )


@router.patch(
    "/{request_id}/pickup",
    response_model=EditResponse,
    responses=_CONFLICT,
    summary="Move the pickup point",
)
@limiter.limit("100/minute")
async def move_pickup(
    request: Request,
    request_id: int,
    body: PickupBody,
    service: RequestService = Depends(get_request_service),
):
    outcome = await service.move_pickup(
        request_id, Coordinate(body.lat, body.lng), body.address, body.sequence
    )
    return EditResponse(
        request=RequestResponse.from_entity(outcome.request), changed=outcome.changed
    )
