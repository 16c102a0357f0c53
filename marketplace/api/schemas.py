"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from marketplace.domain.dispatch import Candidate
from marketplace.domain.entities import DriverPresence, RideRequest
from marketplace.domain.enums import CancelledBy, RequestStatus, VehicleType


# ── Requests ──────────────────────────────────────────────────────────


class RequestCreate(BaseModel):
    rider_id: int
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    pickup_address: str = Field("", max_length=512)
    dropoff_address: str = Field("", max_length=512)
    vehicle_type: VehicleType
    fare: float = Field(..., ge=0)
    payment_method: str = Field("CASH", max_length=16)
    target_driver_id: Optional[int] = Field(
        None, description="Offer the request to this driver only (until the pin expires)."
    )
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class AcceptBody(BaseModel):
    driver_id: int


class DeclineBody(BaseModel):
    driver_id: int
    reason: Optional[str] = Field(None, max_length=255)


class StatusBody(BaseModel):
    status: RequestStatus


class CancelBody(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)
    cancelled_by: CancelledBy = CancelledBy.RIDER


class FareBody(BaseModel):
    amount: float = Field(..., gt=0)


class PickupBody(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = Field("", max_length=512)
    sequence: int = Field(..., ge=1, description="Client counter; stale edits are ignored.")


class OnlineBody(BaseModel):
    online: bool


class LocationBody(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# ── Responses ─────────────────────────────────────────────────────────


class DriverSnapshotResponse(BaseModel):
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_number: Optional[str] = None
    rating: Optional[float] = None

    model_config = {"from_attributes": True}


class RequestResponse(BaseModel):
    id: int
    rider_id: int
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    pickup_address: str
    dropoff_address: str
    vehicle_type: str
    fare: float
    payment_method: str
    status: str
    version: int
    target_driver_id: Optional[int] = None
    target_expires_at: Optional[datetime] = None
    driver_id: Optional[int] = None
    driver: Optional[DriverSnapshotResponse] = None
    pickup_sequence: int = 0
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, r: RideRequest) -> "RequestResponse":
        return cls(
            id=r.id,
            rider_id=r.rider_id,
            pickup_lat=r.pickup.lat,
            pickup_lng=r.pickup.lng,
            dropoff_lat=r.dropoff.lat,
            dropoff_lng=r.dropoff.lng,
            pickup_address=r.pickup_address,
            dropoff_address=r.dropoff_address,
            vehicle_type=r.vehicle_type.value,
            fare=r.fare,
            payment_method=r.payment_method,
            status=r.status.value,
            version=r.version,
            target_driver_id=r.target_driver_id,
            target_expires_at=r.target_expires_at,
            driver_id=r.driver_id,
            driver=DriverSnapshotResponse.model_validate(r.driver) if r.driver else None,
            pickup_sequence=r.pickup_sequence,
            cancellation_reason=r.cancellation_reason,
            cancelled_by=r.cancelled_by.value if r.cancelled_by else None,
            created_at=r.created_at,
            accepted_at=r.accepted_at,
            arrived_at=r.arrived_at,
            started_at=r.started_at,
            completed_at=r.completed_at,
            cancelled_at=r.cancelled_at,
        )


class AcceptResponse(BaseModel):
    request: RequestResponse
    replayed: bool = False


class EditResponse(BaseModel):
    request: RequestResponse
    changed: bool


class DeclineResponse(BaseModel):
    request_id: int
    driver_id: int
    released_to_open_market: bool


class DriverResponse(BaseModel):
    id: int
    name: str
    vehicle_type: str
    is_online: bool
    is_approved: bool
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    last_location_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, d: DriverPresence) -> "DriverResponse":
        loc = d.current_location
        return cls(
            id=d.id,
            name=d.name,
            vehicle_type=d.vehicle_type.value,
            is_online=d.is_online,
            is_approved=d.is_approved,
            current_lat=loc.lat if loc else None,
            current_lng=loc.lng if loc else None,
            last_location_at=d.last_location_at,
        )


class LocationAckResponse(BaseModel):
    status: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    at: Optional[datetime] = None


class CandidateResponse(BaseModel):
    request: RequestResponse
    targeted: bool
    distance_km: Optional[float] = None

    @classmethod
    def from_candidate(cls, c: Candidate) -> "CandidateResponse":
        return cls(
            request=RequestResponse.from_entity(c.request),
            targeted=c.targeted,
            distance_km=c.distance_km,
        )


class OpenRequestsResponse(BaseModel):
    total: int
    by_vehicle_type: dict[str, int]


class ErrorResponse(BaseModel):
    detail: str
    code: str


class HealthResponse(BaseModel):
    status: str = "ok"
