"""Domain enumerations and state-transition rules."""

import enum


class RequestStatus(str, enum.Enum):
    SEARCHING = "SEARCHING"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.SEARCHING: {RequestStatus.ACCEPTED, RequestStatus.CANCELLED},
    RequestStatus.ACCEPTED: {RequestStatus.ARRIVED, RequestStatus.CANCELLED},
    RequestStatus.ARRIVED: {RequestStatus.STARTED, RequestStatus.CANCELLED},
    RequestStatus.STARTED: {RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})

# Timestamp field stamped by each transition
TRANSITION_TIMESTAMPS: dict[RequestStatus, str] = {
    RequestStatus.ACCEPTED: "accepted_at",
    RequestStatus.ARRIVED: "arrived_at",
    RequestStatus.STARTED: "started_at",
    RequestStatus.COMPLETED: "completed_at",
    RequestStatus.CANCELLED: "cancelled_at",
}


class VehicleType(str, enum.Enum):
    BIKE = "BIKE"
    AUTO = "AUTO"
    MINI = "MINI"
    PRIME = "PRIME"
    PINK = "PINK"


class CancelledBy(str, enum.Enum):
    RIDER = "RIDER"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"
