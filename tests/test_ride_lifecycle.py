"""Service-level tests for publishing, starting, completing and cancelling rides."""

from __future__ import annotations

from datetime import timedelta

import pytest

from seatshare.domain.entities import Booking, Ride, utcnow
from seatshare.domain.enums import BookingStatus, CancelledBy, Resolution, RideStatus
from seatshare.domain.errors import (
    InvalidTransition,
    InvariantViolation,
    RideAlreadyExists,
    RideNotFound,
)
from seatshare.domain.events import EventKind
from seatshare.domain.matching import ride_h3_cell
from tests.conftest import AIRPORT, MG_ROAD, make_route, publish_ride


async def _import_ride(services, status: RideStatus, booking_status: BookingStatus):
    """A legacy ride holding one 2-seat booking, registered as stored."""
    ride = await services.rides.register(
        Ride(
            driver_id="d1",
            route=make_route(),
            departure_at=utcnow() + timedelta(hours=1),
            price_per_seat=100.0,
            total_seats=4,
            available_seats=2,
            status=status,
        )
    )
    booking = await services.bookings.register(
        Booking(
            ride_id=ride.id, passenger_id="p1", seats_booked=2,
            pickup_point=MG_ROAD, dropoff_point=AIRPORT, status=booking_status,
        )
    )
    return ride, booking


async def _deliver(services, booking_id: str, passenger: str) -> None:
    _, code = await services.bookings.reveal_otp(booking_id, passenger)
    await services.bookings.confirm_pickup(booking_id, code)
    await services.bookings.request_dropoff(booking_id)
    _, code = await services.bookings.reveal_otp(booking_id, passenger)
    await services.bookings.confirm_dropoff(booking_id, code)


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_assigns_cells(self, services):
        ride = await publish_ride(services, total_seats=3)
        stored = await services.rides.get(ride.id)

        assert stored.status == RideStatus.ACTIVE
        assert stored.available_seats == 3
        assert stored.origin_cell == ride_h3_cell(MG_ROAD.latitude, MG_ROAD.longitude, 7)
        assert stored.destination_cell == ride_h3_cell(AIRPORT.latitude, AIRPORT.longitude, 7)

    @pytest.mark.asyncio
    async def test_invalid_seat_count(self, services):
        with pytest.raises(ValueError):
            await publish_ride(services, total_seats=0)

    @pytest.mark.asyncio
    async def test_register_refuses_existing_id(self, services):
        ride = await publish_ride(services, total_seats=4)
        await services.bookings.create(ride.id, "p1", 3)

        again = await services.rides.get(ride.id)
        again.available_seats = again.total_seats
        with pytest.raises(RideAlreadyExists):
            await services.rides.register(again)

        audited = await services.rides.audit(ride.id)
        assert audited.available_seats == 1

    @pytest.mark.asyncio
    async def test_unknown_ride(self, services):
        with pytest.raises(RideNotFound):
            await services.rides.get("missing")


class TestStart:
    @pytest.mark.asyncio
    async def test_requires_confirmed_booking(self, services):
        ride = await publish_ride(services)
        await services.bookings.create(ride.id, "p1", 1)  # still PENDING
        with pytest.raises(InvalidTransition, match="confirmed"):
            await services.rides.start(ride.id)
        assert (await services.rides.get(ride.id)).status == RideStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_start_issues_pickup_codes(self, services, events):
        ride = await publish_ride(services)
        confirmed = await services.bookings.create(ride.id, "p1", 1)
        await services.bookings.accept(confirmed.id)
        pending = await services.bookings.create(ride.id, "p2", 1)

        started = await services.rides.start(ride.id)
        assert started.status == RideStatus.IN_PROGRESS
        assert started.started_at is not None

        assert (await services.bookings.get(confirmed.id)).status == BookingStatus.PICKUP_PENDING
        assert (await services.bookings.get(pending.id)).status == BookingStatus.PENDING

        [issued] = events.of(EventKind.OTP_ISSUED)
        assert issued.recipient_id == "p1"
        assert issued.payload["phase"] == "pickup"
        assert len(issued.payload["otp"]) == 4
        [status] = events.of(EventKind.RIDE_STATUS_UPDATED)
        assert status.payload["status"] == "IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, services):
        ride = await publish_ride(services, instant_booking=True)
        await services.bookings.create(ride.id, "p1", 1)
        await services.rides.start(ride.id)
        with pytest.raises(InvalidTransition):
            await services.rides.start(ride.id)

    @pytest.mark.asyncio
    async def test_accept_after_start_is_refused(self, services):
        ride = await publish_ride(services)
        first = await services.bookings.create(ride.id, "p1", 1)
        late = await services.bookings.create(ride.id, "p2", 1)
        await services.bookings.accept(first.id)
        await services.rides.start(ride.id)
        with pytest.raises(InvalidTransition):
            await services.bookings.accept(late.id)


class TestComplete:
    @pytest.mark.asyncio
    async def test_blocked_while_passenger_on_board(self, services):
        ride = await publish_ride(services, instant_booking=True)
        await services.bookings.create(ride.id, "p1", 1)
        await services.rides.start(ride.id)
        with pytest.raises(InvalidTransition, match="not yet dropped off"):
            await services.rides.complete(ride.id)

    @pytest.mark.asyncio
    async def test_blocked_by_confirmed_booking_never_picked_up(self, services):
        ride, booking = await _import_ride(
            services, RideStatus.IN_PROGRESS, BookingStatus.CONFIRMED
        )
        with pytest.raises(InvalidTransition, match="not yet dropped off"):
            await services.rides.complete(ride.id)

        stored = await services.rides.get(ride.id)
        assert stored.status == RideStatus.IN_PROGRESS
        assert stored.available_seats == 2
        assert (await services.bookings.get(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_booking_on_completed_ride_cannot_be_cancelled(self, services):
        ride, booking = await _import_ride(
            services, RideStatus.COMPLETED, BookingStatus.CONFIRMED
        )
        with pytest.raises(InvalidTransition, match="COMPLETED"):
            await services.bookings.cancel(booking.id)
        assert (await services.rides.get(ride.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_requires_in_progress(self, services):
        ride = await publish_ride(services)
        with pytest.raises(InvalidTransition):
            await services.rides.complete(ride.id)

    @pytest.mark.asyncio
    async def test_complete_finalises_bookings(self, services, events):
        ride = await publish_ride(services, total_seats=4)
        rider = await services.bookings.create(ride.id, "p1", 2)
        waiting = await services.bookings.create(ride.id, "p2", 1)
        await services.bookings.accept(rider.id)
        await services.rides.start(ride.id)
        await _deliver(services, rider.id, "p1")

        done = await services.rides.complete(ride.id)
        assert done.status == RideStatus.COMPLETED
        assert done.completed_at is not None
        assert done.available_seats == 4

        assert (await services.bookings.get(rider.id)).status == BookingStatus.COMPLETED
        unanswered = await services.bookings.get(waiting.id)
        assert unanswered.status == BookingStatus.REJECTED
        assert unanswered.rejection_reason == "Ride completed"
        assert events.of(EventKind.RIDE_STATUS_UPDATED)[-1].payload["completed_booking_ids"] == [
            rider.id
        ]
        await services.rides.audit(ride.id)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_without_alternatives_refunds_everyone(self, services, events):
        ride = await publish_ride(services, total_seats=4)
        pending = await services.bookings.create(ride.id, "p1", 1)
        confirmed = await services.bookings.create(ride.id, "p2", 2)
        await services.bookings.accept(confirmed.id)

        cancelled = await services.rides.cancel(ride.id, "car broke down")
        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.cancellation_reason == "car broke down"
        assert cancelled.available_seats == 4

        for booking_id in (pending.id, confirmed.id):
            booking = await services.bookings.get(booking_id)
            assert booking.status == BookingStatus.CANCELLED
            assert booking.cancelled_by == CancelledBy.DRIVER
            assert booking.resolution == Resolution.REFUNDED
            assert booking.refund_amount == 0.0

        notices = events.of(EventKind.RIDE_CANCELLED)
        assert {e.recipient_id for e in notices} == {"p1", "p2"}
        assert all(e.payload["subtype"] == "no-alternative" for e in notices)

    @pytest.mark.asyncio
    async def test_every_live_booking_reaches_a_terminal_outcome(self, services):
        ride = await publish_ride(services, total_seats=4)
        a = await services.bookings.create(ride.id, "pa", 1)
        b = await services.bookings.create(ride.id, "pb", 1)
        c = await services.bookings.create(ride.id, "pc", 1)
        await services.bookings.accept(a.id)
        await services.bookings.accept(b.id)
        await services.rides.start(ride.id)
        await _deliver(services, a.id, "pa")

        await services.rides.cancel(ride.id, "emergency")

        outcomes = [await services.bookings.get(x.id) for x in (a, b, c)]
        assert all(o.is_terminal for o in outcomes)
        assert outcomes[0].status == BookingStatus.COMPLETED
        assert outcomes[0].resolution is None
        assert outcomes[1].resolution == Resolution.REFUNDED
        assert outcomes[1].pickup.otp is None
        assert outcomes[2].resolution == Resolution.REFUNDED
        await services.rides.audit(ride.id)

    @pytest.mark.asyncio
    async def test_cannot_cancel_twice(self, services):
        ride = await publish_ride(services)
        await services.rides.cancel(ride.id)
        with pytest.raises(InvalidTransition):
            await services.rides.cancel(ride.id)

    @pytest.mark.asyncio
    async def test_cannot_cancel_completed(self, services):
        ride = await publish_ride(services, instant_booking=True)
        booking = await services.bookings.create(ride.id, "p1", 1)
        await services.rides.start(ride.id)
        await _deliver(services, booking.id, "p1")
        await services.rides.complete(ride.id)
        with pytest.raises(InvalidTransition):
            await services.rides.cancel(ride.id)


class TestAudit:
    @pytest.mark.asyncio
    async def test_detects_drift(self, services, store):
        ride = await publish_ride(services, total_seats=4, route=make_route([]))
        await services.bookings.create(ride.id, "p1", 2)
        store.rides[ride.id].available_seats = 3
        with pytest.raises(InvariantViolation):
            await services.rides.audit(ride.id)
