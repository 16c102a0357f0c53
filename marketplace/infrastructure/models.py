"""
SQLAlchemy ORM models.

Tables
------
* ``riders``            -- passengers / customers placing requests
* ``drivers``           -- driver presence, profile and settlement balance
* ``ride_requests``     -- ride / delivery requests and their lifecycle
* ``request_declines``  -- (request, driver) pairs a driver turned down

Optimistic concurrency
----------------------
``ride_requests.version`` is the mapper ``version_id_col``: every UPDATE
is issued as ``... WHERE id = :id AND version = :read_version`` and bumps
the column.  A concurrent writer that committed first makes the update
match zero rows and SQLAlchemy raises ``StaleDataError``.

Indexes
-------
* ``(status, vehicle_type, pickup_h3_cell)`` -- open-market feed per driver
* ``(status, target_driver_id)``             -- targeted offers / expiry sweep
* ``driver_id``                               -- a driver's active trip
* ``(is_online, is_approved, vehicle_type)`` -- dispatchable drivers
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from .database import Base
from marketplace.domain.enums import CancelledBy, RequestStatus, VehicleType


class RiderModel(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    rating = Column(Float, default=5.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(32), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.MINI, nullable=False)
    vehicle_model = Column(String(120), nullable=True)
    vehicle_number = Column(String(32), nullable=True)
    rating = Column(Float, default=5.0, nullable=False)

    # Presence: written only by the location tracker and the online toggle
    is_online = Column(Boolean, default=False, nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    last_location_at = Column(DateTime(timezone=True), nullable=True)

    # Settlement
    wallet_balance = Column(Float, default=0.0, nullable=False)
    completed_trips = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_dispatchable", "is_online", "is_approved", "vehicle_type"),
    )


class RideRequestModel(Base):
    __tablename__ = "ride_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    pickup_address = Column(String(512), default="", nullable=False)
    dropoff_address = Column(String(512), default="", nullable=False)
    pickup_h3_cell = Column(String(20), nullable=False)
    pickup_sequence = Column(Integer, default=0, nullable=False)

    vehicle_type = Column(Enum(VehicleType), nullable=False)
    fare = Column(Float, default=0.0, nullable=False)
    payment_method = Column(String(16), default="CASH", nullable=False)
    status = Column(
        Enum(RequestStatus), default=RequestStatus.SEARCHING, nullable=False
    )

    # Pre-assignment (targeted offer)
    target_driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    target_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Assigned driver: denormalised snapshot taken at accept time
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    driver_name = Column(String(120), nullable=True)
    driver_phone = Column(String(32), nullable=True)
    driver_avatar_url = Column(String(512), nullable=True)
    driver_vehicle_model = Column(String(120), nullable=True)
    driver_vehicle_number = Column(String(32), nullable=True)
    driver_rating = Column(Float, nullable=True)

    version = Column(Integer, nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(Enum(CancelledBy), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_requests_open_cell", "status", "vehicle_type", "pickup_h3_cell"),
        Index("idx_requests_target", "status", "target_driver_id"),
        Index("idx_requests_driver", "driver_id"),
        Index("idx_requests_rider", "rider_id"),
    )


class RequestDeclineModel(Base):
    __tablename__ = "request_declines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("ride_requests.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("request_id", "driver_id", name="uq_decline_request_driver"),
        Index("idx_declines_driver", "driver_id"),
    )
