"""Unit tests for ride and booking state transitions (State Pattern)."""

from datetime import datetime, timezone

import pytest

from seatshare.domain.entities import Booking, Ride
from seatshare.domain.enums import BookingStatus, CancelledBy, RideStatus
from seatshare.domain.errors import InvalidTransition
from tests.conftest import AIRPORT, MG_ROAD, make_route


def _ride(**kw) -> Ride:
    return Ride(
        driver_id="d",
        route=make_route(),
        departure_at=datetime(2026, 11, 1, 9, tzinfo=timezone.utc),
        price_per_seat=100.0,
        total_seats=4,
        **kw,
    )


def _booking(**kw) -> Booking:
    return Booking(
        ride_id="r", passenger_id="p", seats_booked=1,
        pickup_point=MG_ROAD, dropoff_point=AIRPORT, **kw,
    )


class TestRideStateMachine:
    def test_initial_status_is_active_with_all_seats_free(self):
        ride = _ride()
        assert ride.status == RideStatus.ACTIVE
        assert ride.available_seats == 4

    # ── Valid transitions ─────────────────────────────────────────

    def test_active_to_in_progress(self):
        ride = _ride()
        ride.transition_to(RideStatus.IN_PROGRESS)
        assert ride.status == RideStatus.IN_PROGRESS

    def test_active_to_cancelled(self):
        ride = _ride()
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.is_terminal

    def test_in_progress_to_completed(self):
        ride = _ride(status=RideStatus.IN_PROGRESS)
        ride.transition_to(RideStatus.COMPLETED)
        assert ride.status == RideStatus.COMPLETED

    def test_in_progress_to_cancelled(self):
        ride = _ride(status=RideStatus.IN_PROGRESS)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED

    # ── Invalid transitions ───────────────────────────────────────

    def test_active_to_completed_invalid(self):
        with pytest.raises(InvalidTransition):
            _ride().transition_to(RideStatus.COMPLETED)

    def test_completed_is_terminal(self):
        ride = _ride(status=RideStatus.COMPLETED)
        for target in RideStatus:
            with pytest.raises(InvalidTransition):
                ride.transition_to(target)

    def test_cancelled_cannot_restart(self):
        with pytest.raises(InvalidTransition):
            _ride(status=RideStatus.CANCELLED).transition_to(RideStatus.IN_PROGRESS)

    def test_can_accommodate_only_when_active(self):
        ride = _ride(available_seats=2)
        assert ride.can_accommodate(2)
        assert not ride.can_accommodate(3)
        ride.transition_to(RideStatus.IN_PROGRESS)
        assert not ride.can_accommodate(1)


class TestBookingStateMachine:
    def test_happy_path(self):
        booking = _booking()
        for status in (
            BookingStatus.CONFIRMED,
            BookingStatus.PICKUP_PENDING,
            BookingStatus.PICKED_UP,
            BookingStatus.IN_TRANSIT,
            BookingStatus.DROPOFF_PENDING,
            BookingStatus.DROPPED_OFF,
            BookingStatus.COMPLETED,
        ):
            booking.transition_to(status)
        assert booking.is_terminal

    def test_picked_up_may_skip_transit(self):
        booking = _booking(status=BookingStatus.PICKED_UP)
        booking.transition_to(BookingStatus.DROPOFF_PENDING)
        assert booking.status == BookingStatus.DROPOFF_PENDING

    def test_pending_cannot_jump_to_pickup(self):
        with pytest.raises(InvalidTransition):
            _booking().transition_to(BookingStatus.PICKUP_PENDING)

    def test_rejected_is_terminal(self):
        booking = _booking(status=BookingStatus.REJECTED)
        with pytest.raises(InvalidTransition):
            booking.transition_to(BookingStatus.CONFIRMED)

    def test_dropped_off_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransition):
            _booking(status=BookingStatus.DROPPED_OFF).transition_to(BookingStatus.CANCELLED)

    @pytest.mark.parametrize(
        "status",
        [
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            BookingStatus.PICKUP_PENDING,
            BookingStatus.PICKED_UP,
            BookingStatus.IN_TRANSIT,
            BookingStatus.DROPOFF_PENDING,
        ],
    )
    def test_seat_holding_statuses(self, status):
        booking = _booking(status=status)
        assert booking.holds_seats
        booking.mark_cancelled(CancelledBy.DRIVER, "breakdown", datetime.now(timezone.utc))
        assert not booking.holds_seats
        assert booking.cancelled_by == CancelledBy.DRIVER
        assert booking.cancellation_reason == "breakdown"

    def test_dropped_off_holds_no_seat(self):
        assert not _booking(status=BookingStatus.DROPPED_OFF).holds_seats
