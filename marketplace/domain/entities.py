"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``RideRequest``: enforces valid lifecycle transitions
  (SEARCHING -> ACCEPTED -> ARRIVED -> STARTED -> COMPLETED, CANCELLED from
  any non-terminal status).  Re-applying the current status is a no-op so
  retried network calls stay harmless.
- ``DriverSnapshot`` is the denormalised copy of the driver written onto a
  request at accept time.  It is a copy, never a live reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    TRANSITION_TIMESTAMPS,
    CancelledBy,
    RequestStatus,
    VehicleType,
)
from .errors import AlreadyTaken, IllegalTransition, RequestNotEditable

# Statuses in which the pickup point may still move
PICKUP_EDITABLE = frozenset(
    {RequestStatus.SEARCHING, RequestStatus.ACCEPTED, RequestStatus.ARRIVED}
)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def normalized(self, places: int = 6) -> "Coordinate":
        """Round to *places* decimals (6 places is ~0.11 m)."""
        return Coordinate(round(self.lat, places), round(self.lng, places))


@dataclass(frozen=True)
class DriverSnapshot:
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_number: Optional[str] = None
    rating: Optional[float] = None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class DriverPresence:
    id: int
    name: str = ""
    vehicle_type: VehicleType = VehicleType.MINI
    is_online: bool = False
    is_approved: bool = False
    current_location: Optional[Coordinate] = None
    last_location_at: Optional[datetime] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_number: Optional[str] = None
    rating: float = 5.0

    @property
    def is_dispatchable(self) -> bool:
        return self.is_online and self.is_approved

    def snapshot(self) -> DriverSnapshot:
        return DriverSnapshot(
            name=self.name,
            phone=self.phone,
            avatar_url=self.avatar_url,
            vehicle_model=self.vehicle_model,
            vehicle_number=self.vehicle_number,
            rating=self.rating,
        )


@dataclass
class RideRequest:
    id: Optional[int] = None
    rider_id: int = 0
    pickup: Coordinate = field(default_factory=lambda: Coordinate(0, 0))
    dropoff: Coordinate = field(default_factory=lambda: Coordinate(0, 0))
    pickup_address: str = ""
    dropoff_address: str = ""
    vehicle_type: VehicleType = VehicleType.MINI
    fare: float = 0.0
    payment_method: str = "CASH"
    status: RequestStatus = RequestStatus.SEARCHING
    target_driver_id: Optional[int] = None
    target_expires_at: Optional[datetime] = None
    driver_id: Optional[int] = None
    driver: Optional[DriverSnapshot] = None
    version: int = 0
    pickup_sequence: int = 0
    idempotency_key: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_targeted(self) -> bool:
        return self.target_driver_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_claimable_by(self, driver_id: int) -> bool:
        if self.status != RequestStatus.SEARCHING:
            return False
        return self.target_driver_id is None or self.target_driver_id == driver_id

    # ── lifecycle ─────────────────────────────────────────────────

    def transition_to(self, new_status: RequestStatus, at: datetime) -> bool:
        """
        Move to *new_status* if the transition is legal, else raise.

        Returns ``False`` when the request is already in *new_status*
        (idempotent re-apply, nothing touched) and ``True`` otherwise.
        """
        if new_status == self.status and new_status != RequestStatus.SEARCHING:
            return False
        allowed = REQUEST_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise IllegalTransition(self.status, new_status)
        self.status = new_status
        stamp = TRANSITION_TIMESTAMPS[new_status]
        if getattr(self, stamp) is None:
            setattr(self, stamp, at)
        return True

    def accept(
        self, driver_id: int, snapshot: DriverSnapshot, at: datetime
    ) -> bool:
        """
        Claim the request for *driver_id*.

        The same driver replaying its own successful claim gets ``False``
        back instead of an error.
        """
        if self.status == RequestStatus.ACCEPTED and self.driver_id == driver_id:
            return False
        if not self.is_claimable_by(driver_id):
            raise AlreadyTaken(
                f"Request {self.id} is {self.status.value}"
                + (f", pinned to driver {self.target_driver_id}" if self.is_targeted else "")
            )
        self.transition_to(RequestStatus.ACCEPTED, at)
        self.driver_id = driver_id
        self.driver = snapshot
        self.target_expires_at = None
        return True

    def cancel(
        self, reason: Optional[str], cancelled_by: CancelledBy, at: datetime
    ) -> bool:
        changed = self.transition_to(RequestStatus.CANCELLED, at)
        if changed:
            self.cancellation_reason = reason or "Cancelled"
            self.cancelled_by = cancelled_by
        return changed

    # ── edits while open ──────────────────────────────────────────

    def release_target(self) -> bool:
        """Drop the driver pin so the request falls back to open market."""
        if self.status != RequestStatus.SEARCHING or not self.is_targeted:
            return False
        self.target_driver_id = None
        self.target_expires_at = None
        return True

    def target_expired(self, now: datetime) -> bool:
        return (
            self.is_targeted
            and self.target_expires_at is not None
            and self.target_expires_at <= now
        )

    def renegotiate_fare(self, amount: float) -> bool:
        if self.status != RequestStatus.SEARCHING:
            raise RequestNotEditable(
                f"Fare of request {self.id} is locked ({self.status.value})"
            )
        if amount == self.fare:
            return False
        self.fare = amount
        return True

    def move_pickup(
        self, location: Coordinate, address: str, sequence: int
    ) -> bool:
        """Apply a pickup edit unless a newer one was already stored."""
        if self.status not in PICKUP_EDITABLE:
            raise RequestNotEditable(
                f"Pickup of request {self.id} cannot change ({self.status.value})"
            )
        if sequence <= self.pickup_sequence:
            return False
        self.pickup = location.normalized()
        self.pickup_address = address
        self.pickup_sequence = sequence
        return True
