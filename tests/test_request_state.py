"""Unit tests for request entity state transitions (State Pattern)."""

import itertools
from datetime import datetime, timezone

import pytest

from marketplace.domain.entities import Coordinate, DriverSnapshot, RideRequest
from marketplace.domain.enums import REQUEST_TRANSITIONS, CancelledBy, RequestStatus
from marketplace.domain.errors import AlreadyTaken, IllegalTransition, RequestNotEditable

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
T1 = datetime(2026, 3, 1, 8, 5, tzinfo=timezone.utc)
SNAP = DriverSnapshot(name="Ravi", phone="+918000000000", rating=4.8)

LEGAL_PAIRS = [
    (current, target)
    for current, target in itertools.product(RequestStatus, RequestStatus)
    if target in REQUEST_TRANSITIONS[current]
]
# re-applying the current status is a no-op success, except for SEARCHING
ILLEGAL_PAIRS = [
    (current, target)
    for current, target in itertools.product(RequestStatus, RequestStatus)
    if target not in REQUEST_TRANSITIONS[current]
    and (current != target or current == RequestStatus.SEARCHING)
]


def _pair_id(value):
    return value.value


class TestRequestStateMachine:
    def test_initial_status_is_searching(self):
        assert RideRequest().status == RequestStatus.SEARCHING

    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, target, stamp",
        [
            (RequestStatus.ACCEPTED, RequestStatus.ARRIVED, "arrived_at"),
            (RequestStatus.ARRIVED, RequestStatus.STARTED, "started_at"),
            (RequestStatus.STARTED, RequestStatus.COMPLETED, "completed_at"),
        ],
    )
    def test_forward_step_stamps_time(self, current, target, stamp):
        request = RideRequest(status=current)
        assert request.transition_to(target, T0) is True
        assert request.status == target
        assert getattr(request, stamp) == T0

    @pytest.mark.parametrize(
        "current",
        [
            RequestStatus.SEARCHING,
            RequestStatus.ACCEPTED,
            RequestStatus.ARRIVED,
            RequestStatus.STARTED,
        ],
    )
    def test_cancel_from_any_open_status(self, current):
        request = RideRequest(status=current)
        assert request.cancel("changed plans", CancelledBy.RIDER, T0) is True
        assert request.status == RequestStatus.CANCELLED
        assert request.cancelled_at == T0
        assert request.cancelled_by == CancelledBy.RIDER
        assert request.cancellation_reason == "changed plans"

    def test_cancel_without_reason_gets_default(self):
        request = RideRequest()
        request.cancel(None, CancelledBy.SYSTEM, T0)
        assert request.cancellation_reason == "Cancelled"

    # ── Idempotent re-apply ───────────────────────────────────────

    def test_reapplying_current_status_is_noop(self):
        request = RideRequest(status=RequestStatus.ARRIVED, arrived_at=T0)
        assert request.transition_to(RequestStatus.ARRIVED, T1) is False
        assert request.arrived_at == T0

    def test_recancel_keeps_first_reason(self):
        request = RideRequest()
        request.cancel("first", CancelledBy.RIDER, T0)
        assert request.cancel("second", CancelledBy.DRIVER, T1) is False
        assert request.cancellation_reason == "first"
        assert request.cancelled_at == T0

    # ── Invalid transitions ───────────────────────────────────────

    @pytest.mark.parametrize("current, target", ILLEGAL_PAIRS, ids=_pair_id)
    def test_illegal_pair_raises_and_leaves_status(self, current, target):
        request = RideRequest(status=current)
        with pytest.raises(IllegalTransition) as exc:
            request.transition_to(target, T0)
        assert request.status == current
        assert exc.value.current == current
        assert exc.value.target == target

    @pytest.mark.parametrize("current, target", LEGAL_PAIRS, ids=_pair_id)
    def test_every_table_pair_is_applied(self, current, target):
        request = RideRequest(status=current)
        assert request.transition_to(target, T0) is True
        assert request.status == target

    def test_pairs_cover_every_status_combination(self):
        noops = [(s, s) for s in RequestStatus if s != RequestStatus.SEARCHING]
        assert len(ILLEGAL_PAIRS) + len(LEGAL_PAIRS) + len(noops) == len(RequestStatus) ** 2


class TestAccept:
    def test_accept_writes_driver_and_snapshot(self):
        request = RideRequest(id=1)
        assert request.accept(7, SNAP, T0) is True
        assert request.status == RequestStatus.ACCEPTED
        assert request.driver_id == 7
        assert request.driver == SNAP
        assert request.accepted_at == T0

    def test_second_driver_is_rejected(self):
        request = RideRequest(id=1)
        request.accept(7, SNAP, T0)
        with pytest.raises(AlreadyTaken):
            request.accept(8, SNAP, T1)
        assert request.driver_id == 7

    def test_same_driver_replay_is_noop(self):
        request = RideRequest(id=1)
        request.accept(7, SNAP, T0)
        assert request.accept(7, SNAP, T1) is False
        assert request.accepted_at == T0

    def test_pinned_request_rejects_other_driver(self):
        request = RideRequest(id=1, target_driver_id=7)
        with pytest.raises(AlreadyTaken):
            request.accept(8, SNAP, T0)
        assert request.status == RequestStatus.SEARCHING

    def test_pinned_driver_accept_clears_expiry(self):
        request = RideRequest(id=1, target_driver_id=7, target_expires_at=T1)
        request.accept(7, SNAP, T0)
        assert request.target_expires_at is None

    def test_cancelled_request_cannot_be_accepted(self):
        request = RideRequest(id=1, status=RequestStatus.CANCELLED)
        with pytest.raises(AlreadyTaken):
            request.accept(7, SNAP, T0)


class TestEditsWhileOpen:
    def test_fare_change_while_searching(self):
        request = RideRequest(fare=200.0)
        assert request.renegotiate_fare(240.0) is True
        assert request.fare == 240.0

    def test_same_fare_is_noop(self):
        assert RideRequest(fare=200.0).renegotiate_fare(200.0) is False

    def test_fare_locked_after_accept(self):
        request = RideRequest(status=RequestStatus.ACCEPTED, fare=200.0)
        with pytest.raises(RequestNotEditable):
            request.renegotiate_fare(300.0)
        assert request.fare == 200.0

    def test_pickup_move_normalises_coordinates(self):
        request = RideRequest()
        assert request.move_pickup(Coordinate(12.97161234, 77.59469876), "Gate 2", 1)
        assert request.pickup == Coordinate(12.971612, 77.594699)
        assert request.pickup_sequence == 1

    def test_stale_pickup_sequence_is_ignored(self):
        request = RideRequest(pickup_sequence=3, pickup_address="Gate 1")
        assert request.move_pickup(Coordinate(1.0, 1.0), "Gate 9", 2) is False
        assert request.pickup_address == "Gate 1"

    def test_pickup_locked_once_started(self):
        request = RideRequest(status=RequestStatus.STARTED)
        with pytest.raises(RequestNotEditable):
            request.move_pickup(Coordinate(1.0, 1.0), "", 1)

    def test_release_target(self):
        request = RideRequest(target_driver_id=7, target_expires_at=T1)
        assert request.release_target() is True
        assert request.target_driver_id is None
        assert request.target_expires_at is None
        assert request.release_target() is False

    def test_target_expired(self):
        request = RideRequest(target_driver_id=7, target_expires_at=T1)
        assert not request.target_expired(T0)
        assert request.target_expired(T1)
