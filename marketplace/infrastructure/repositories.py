"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Rows are mapped to the domain dataclasses
on the way out and written back from them on the way in.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .models import DriverModel, RequestDeclineModel, RideRequestModel
from marketplace.config import settings
from marketplace.domain.clock import as_utc, utcnow
from marketplace.domain.dispatch import pickup_cell, search_cells
from marketplace.domain.entities import (
    Coordinate,
    DriverPresence,
    DriverSnapshot,
    RideRequest,
)
from marketplace.domain.enums import RequestStatus, VehicleType


# ── mapping ───────────────────────────────────────────────────────────


def request_to_entity(model: RideRequestModel) -> RideRequest:
    snapshot = None
    if model.driver_id is not None:
        snapshot = DriverSnapshot(
            name=model.driver_name or "",
            phone=model.driver_phone,
            avatar_url=model.driver_avatar_url,
            vehicle_model=model.driver_vehicle_model,
            vehicle_number=model.driver_vehicle_number,
            rating=model.driver_rating,
        )
    return RideRequest(
        id=model.id,
        rider_id=model.rider_id,
        pickup=Coordinate(model.pickup_lat, model.pickup_lng),
        dropoff=Coordinate(model.dropoff_lat, model.dropoff_lng),
        pickup_address=model.pickup_address,
        dropoff_address=model.dropoff_address,
        vehicle_type=VehicleType(model.vehicle_type),
        fare=model.fare,
        payment_method=model.payment_method,
        status=RequestStatus(model.status),
        target_driver_id=model.target_driver_id,
        target_expires_at=as_utc(model.target_expires_at),
        driver_id=model.driver_id,
        driver=snapshot,
        version=model.version,
        pickup_sequence=model.pickup_sequence,
        idempotency_key=model.idempotency_key,
        cancellation_reason=model.cancellation_reason,
        cancelled_by=model.cancelled_by,
        created_at=as_utc(model.created_at),
        accepted_at=as_utc(model.accepted_at),
        arrived_at=as_utc(model.arrived_at),
        started_at=as_utc(model.started_at),
        completed_at=as_utc(model.completed_at),
        cancelled_at=as_utc(model.cancelled_at),
    )


def _request_values(request: RideRequest, resolution: int) -> dict:
    snap = request.driver
    values = {
        "rider_id": request.rider_id,
        "pickup_lat": request.pickup.lat,
        "pickup_lng": request.pickup.lng,
        "dropoff_lat": request.dropoff.lat,
        "dropoff_lng": request.dropoff.lng,
        "pickup_address": request.pickup_address,
        "dropoff_address": request.dropoff_address,
        "pickup_h3_cell": pickup_cell(request.pickup.lat, request.pickup.lng, resolution),
        "pickup_sequence": request.pickup_sequence,
        "vehicle_type": request.vehicle_type,
        "fare": request.fare,
        "payment_method": request.payment_method,
        "status": request.status,
        "target_driver_id": request.target_driver_id,
        "target_expires_at": request.target_expires_at,
        "driver_id": request.driver_id,
        "driver_name": snap.name if snap else None,
        "driver_phone": snap.phone if snap else None,
        "driver_avatar_url": snap.avatar_url if snap else None,
        "driver_vehicle_model": snap.vehicle_model if snap else None,
        "driver_vehicle_number": snap.vehicle_number if snap else None,
        "driver_rating": snap.rating if snap else None,
        "idempotency_key": request.idempotency_key,
        "cancellation_reason": request.cancellation_reason,
        "cancelled_by": request.cancelled_by,
        "accepted_at": request.accepted_at,
        "arrived_at": request.arrived_at,
        "started_at": request.started_at,
        "completed_at": request.completed_at,
        "cancelled_at": request.cancelled_at,
    }
    if request.created_at is not None:
        values["created_at"] = request.created_at
    return values


def _write_request(
    model: RideRequestModel, request: RideRequest, resolution: int
) -> None:
    # only touch columns that really changed: an unchanged row must not
    # flush, otherwise the version would bump on a no-op
    for name, value in _request_values(request, resolution).items():
        current = getattr(model, name)
        if isinstance(current, datetime):
            current = as_utc(current)
        if current != value:
            setattr(model, name, value)


def driver_to_entity(model: DriverModel) -> DriverPresence:
    location = None
    if model.current_lat is not None and model.current_lng is not None:
        location = Coordinate(model.current_lat, model.current_lng)
    return DriverPresence(
        id=model.id,
        name=model.name,
        vehicle_type=VehicleType(model.vehicle_type),
        is_online=bool(model.is_online),
        is_approved=bool(model.is_approved),
        current_location=location,
        last_location_at=as_utc(model.last_location_at),
        phone=model.phone,
        avatar_url=model.avatar_url,
        vehicle_model=model.vehicle_model,
        vehicle_number=model.vehicle_number,
        rating=model.rating,
    )


# ── repositories ──────────────────────────────────────────────────────


class RequestRepository:
    def __init__(
        self, session: AsyncSession, h3_resolution: int = settings.h3_resolution
    ):
        self.session = session
        self.h3_resolution = h3_resolution

    async def create(self, request: RideRequest) -> RideRequest:
        if request.created_at is None:
            request.created_at = utcnow()
        model = RideRequestModel()
        _write_request(model, request, self.h3_resolution)
        self.session.add(model)
        await self.session.flush()
        return request_to_entity(model)

    async def get(self, request_id: int) -> Optional[RideRequest]:
        model = await self.session.get(RideRequestModel, request_id)
        return request_to_entity(model) if model else None

    async def save(self, request: RideRequest) -> RideRequest:
        """
        Write *request* back onto its row.

        Raises ``StaleDataError`` when the row is no longer at the version
        *request* was read at: either it already moved on when the row is
        loaded here, or another transaction commits first and the flush's
        ``WHERE version = ?`` matches nothing.
        """
        model = await self.session.get(RideRequestModel, request.id)
        if model is None or model.version != request.version:
            raise StaleDataError(
                f"Request {request.id} changed since it was read "
                f"(read version {request.version}, "
                f"stored {model.version if model is not None else 'gone'})"
            )
        _write_request(model, request, self.h3_resolution)
        await self.session.flush()
        request.version = model.version
        return request

    async def get_by_idempotency_key(self, key: str) -> Optional[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel).where(RideRequestModel.idempotency_key == key)
        )
        model = result.scalar_one_or_none()
        return request_to_entity(model) if model else None

    async def open_for_driver(
        self, driver: DriverPresence, radius_km: float
    ) -> list[RideRequest]:
        """
        SEARCHING requests of the driver's vehicle type that could be
        visible to it: pinned to it, or unpinned with a pickup in the H3
        disk around the driver.
        """
        targeted = RideRequestModel.target_driver_id == driver.id
        if driver.current_location is not None:
            cells = search_cells(driver.current_location, radius_km, self.h3_resolution)
            visibility = or_(
                targeted,
                and_(
                    RideRequestModel.target_driver_id.is_(None),
                    RideRequestModel.pickup_h3_cell.in_(cells),
                ),
            )
        else:
            visibility = targeted

        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.status == RequestStatus.SEARCHING,
                RideRequestModel.vehicle_type == driver.vehicle_type,
                visibility,
            )
            .order_by(RideRequestModel.created_at, RideRequestModel.id)
        )
        return [request_to_entity(m) for m in result.scalars().all()]

    async def expired_targets(self, now: datetime) -> list[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel).where(
                RideRequestModel.status == RequestStatus.SEARCHING,
                RideRequestModel.target_driver_id.is_not(None),
                RideRequestModel.target_expires_at.is_not(None),
                RideRequestModel.target_expires_at <= now,
            )
        )
        return [request_to_entity(m) for m in result.scalars().all()]

    async def count_open_by_vehicle(self) -> dict[str, int]:
        result = await self.session.execute(
            select(RideRequestModel.vehicle_type, func.count())
            .where(RideRequestModel.status == RequestStatus.SEARCHING)
            .group_by(RideRequestModel.vehicle_type)
        )
        return {VehicleType(vt).value: n for vt, n in result.all()}


class DeclineRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, request_id: int, driver_id: int) -> bool:
        result = await self.session.execute(
            select(RequestDeclineModel.id).where(
                RequestDeclineModel.request_id == request_id,
                RequestDeclineModel.driver_id == driver_id,
            )
        )
        return result.first() is not None

    async def add(
        self, request_id: int, driver_id: int, reason: Optional[str] = None
    ) -> bool:
        """Record a decline.  Returns False when it was already recorded."""
        if await self.exists(request_id, driver_id):
            return False
        self.session.add(
            RequestDeclineModel(request_id=request_id, driver_id=driver_id, reason=reason)
        )
        await self.session.flush()
        return True

    async def open_declined_by(self, driver_id: int) -> set[int]:
        """Ids of still-SEARCHING requests this driver declined."""
        result = await self.session.execute(
            select(RequestDeclineModel.request_id)
            .join(RideRequestModel, RideRequestModel.id == RequestDeclineModel.request_id)
            .where(
                RequestDeclineModel.driver_id == driver_id,
                RideRequestModel.status == RequestStatus.SEARCHING,
            )
        )
        return set(result.scalars().all())


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, driver_id: int) -> Optional[DriverPresence]:
        model = await self.session.get(DriverModel, driver_id)
        return driver_to_entity(model) if model else None

    async def set_online(self, driver_id: int, online: bool) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_online=online)
        )
        return result.rowcount > 0

    async def update_location(
        self,
        driver_id: int,
        location: Coordinate,
        at: datetime,
        not_after: Optional[datetime] = None,
    ) -> bool:
        """
        Persist a position only while the driver is online and, when
        *not_after* is given, only if the previous fix is not newer than it.
        Both guards live in the UPDATE so a racing toggle or report wins
        cleanly.
        """
        stmt = update(DriverModel).where(
            DriverModel.id == driver_id, DriverModel.is_online.is_(True)
        )
        if not_after is not None:
            stmt = stmt.where(
                or_(
                    DriverModel.last_location_at.is_(None),
                    DriverModel.last_location_at <= not_after,
                )
            )
        result = await self.session.execute(
            stmt.values(
                current_lat=location.lat,
                current_lng=location.lng,
                last_location_at=at,
            )
        )
        return result.rowcount > 0
