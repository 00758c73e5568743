"""
Reassignment Coordinator
========================

Resolves bookings displaced by a ride cancellation.  By the time a booking
gets here its ride is CANCELLED, its seats are released and its status is
CANCELLED with ``resolution = AWAITING_REASSIGNMENT``; the passenger holds
no seats anywhere.

Algorithm per displaced booking
-------------------------------
1. Take the booking's lock (``booking:<id>``) so the cancel call and the
   background sweeper never resolve the same booking twice.
2. Search ACTIVE candidate rides (H3 ring pre-filter in the store, then
   departure window + route check in ``matching.rank_candidates``).
3. Take the best candidate's ride lock -- the only ride lock held -- and in
   one unit of work reserve seats, insert the new booking and mark the
   original REASSIGNED.
4. If the reservation loses a race, exclude that candidate and search
   again, at most ``max_attempts`` rounds.
5. Out of rounds or candidates: ``ReassignmentExhausted`` -> mark the
   original REFUNDED.

Events are published after each unit of work commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from seatshare.domain.entities import Booking, Ride, utcnow
from seatshare.domain.enums import PAID_STATUSES, BookingStatus, PaymentStatus, Resolution
from seatshare.domain.errors import (
    BookingNotAllowed,
    BookingNotFound,
    CapacityExceeded,
    InvalidTransition,
    LifecycleError,
    ReassignmentExhausted,
    RideNotFound,
)
from seatshare.domain.events import EventKind, LifecycleEvent, RideCancelledSubtype
from seatshare.domain.matching import RouteMatch, rank_candidates, ring_cells
from seatshare.domain.pricing import FullRefund
from seatshare.infrastructure.event_bus import EventPublisher
from seatshare.infrastructure.locks import booking_key
from seatshare.infrastructure.repositories import LifecycleStore

from .seat_allocator import SeatAllocator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReassignmentOutcome:
    booking_id: str
    resolution: Resolution
    new_booking_id: Optional[str] = None
    new_ride_id: Optional[str] = None
    refund_amount: Optional[float] = None


class ReassignmentCoordinator:
    def __init__(
        self,
        store: LifecycleStore,
        allocator: SeatAllocator,
        publisher: EventPublisher,
        max_attempts: int = 3,
        departure_window: timedelta = timedelta(hours=2),
        proximity_km: float = 5.0,
        ring_size: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.allocator = allocator
        self.publisher = publisher
        self.max_attempts = max_attempts
        self.departure_window = departure_window
        self.proximity_km = proximity_km
        self.ring_size = ring_size
        self.clock = clock
        self.refund_policy = FullRefund()

    # ── Public API ────────────────────────────────────────────────

    async def resolve_all(
        self, cancelled_ride: Ride, bookings: Iterable[Booking]
    ) -> list[ReassignmentOutcome]:
        """Resolve every displaced booking of *cancelled_ride*."""
        outcomes = []
        for booking in bookings:
            try:
                outcomes.append(await self.resolve(cancelled_ride, booking.id))
            except LifecycleError:
                # Still AWAITING_REASSIGNMENT; the sweeper picks it up.
                logger.exception(
                    "Could not resolve displaced booking %s of ride %s",
                    booking.id, cancelled_ride.id,
                )
        return outcomes

    async def resume(self, limit: int = 100) -> list[ReassignmentOutcome]:
        """Resolve bookings left AWAITING_REASSIGNMENT by an interrupted run."""
        async with self.store.unit_of_work() as uow:
            pending = await uow.list_awaiting_reassignment(limit)
            rides: dict[str, Ride] = {}
            for booking in pending:
                if booking.ride_id not in rides:
                    ride = await uow.get_ride(booking.ride_id)
                    if ride is None:
                        raise RideNotFound(f"Ride {booking.ride_id} not found")
                    rides[booking.ride_id] = ride

        outcomes = []
        for booking in pending:
            outcomes.extend(await self.resolve_all(rides[booking.ride_id], [booking]))
        if outcomes:
            logger.info("Resumed %d displaced booking(s)", len(outcomes))
        return outcomes

    async def resolve(self, cancelled_ride: Ride, booking_id: str) -> ReassignmentOutcome:
        async with self.allocator.locks.hold(booking_key(booking_id)):
            booking = await self._load(booking_id)
            if booking.resolution != Resolution.AWAITING_REASSIGNMENT:
                return self._outcome_of(booking)

            try:
                return await self._reassign(cancelled_ride, booking)
            except ReassignmentExhausted as exc:
                logger.info("%s; refunding booking %s", exc, booking.id)
                return await self._refund(cancelled_ride, booking.id, exc.attempts)

    # ── Internals ─────────────────────────────────────────────────

    async def _load(self, booking_id: str) -> Booking:
        async with self.store.unit_of_work() as uow:
            booking = await uow.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def _outcome_of(booking: Booking) -> ReassignmentOutcome:
        return ReassignmentOutcome(
            booking_id=booking.id,
            resolution=booking.resolution,
            new_booking_id=booking.reassigned_booking_id,
            refund_amount=booking.refund_amount,
        )

    async def _search(
        self, cancelled_ride: Ride, booking: Booking, excluded: set[str]
    ) -> list[RouteMatch]:
        origin_cells = destination_cells = None
        if cancelled_ride.origin_cell:
            origin_cells = ring_cells(cancelled_ride.origin_cell, self.ring_size)
        if cancelled_ride.destination_cell:
            destination_cells = ring_cells(cancelled_ride.destination_cell, self.ring_size)

        async with self.store.unit_of_work() as uow:
            rides = await uow.find_candidate_rides(
                exclude_ride_id=cancelled_ride.id,
                min_seats=booking.seats_booked,
                departure_from=cancelled_ride.departure_at - self.departure_window,
                departure_to=cancelled_ride.departure_at + self.departure_window,
                origin_cells=origin_cells,
                destination_cells=destination_cells,
            )
        return rank_candidates(
            booking,
            cancelled_ride,
            (r for r in rides if r.id not in excluded),
            proximity_km=self.proximity_km,
            window=self.departure_window,
        )

    async def _reassign(self, cancelled_ride: Ride, booking: Booking) -> ReassignmentOutcome:
        excluded: set[str] = set()
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            matches = await self._search(cancelled_ride, booking, excluded)
            if not matches:
                break
            candidate = matches[0].ride
            try:
                return await self._move(cancelled_ride, booking, candidate.id, attempt)
            except (CapacityExceeded, InvalidTransition, BookingNotAllowed) as exc:
                logger.warning(
                    "Reassignment of booking %s to ride %s failed (%s); searching again",
                    booking.id, candidate.id, exc,
                )
                excluded.add(candidate.id)

        raise ReassignmentExhausted.after(booking.id, attempt)

    async def _move(
        self, cancelled_ride: Ride, booking: Booking, candidate_id: str, attempt: int
    ) -> ReassignmentOutcome:
        async with self.allocator.guard(candidate_id):
            async with self.store.unit_of_work() as uow:
                candidate = await uow.get_ride(candidate_id, for_update=True)
                original = await uow.get_booking(booking.id)
                if candidate is None:
                    raise InvalidTransition(f"Candidate ride {candidate_id} disappeared")
                if candidate.driver_id == original.passenger_id:
                    raise BookingNotAllowed("Passenger drives the candidate ride")
                if await uow.find_live_booking(candidate.id, original.passenger_id):
                    raise BookingNotAllowed("Passenger already booked on the candidate ride")

                self.allocator.reserve(candidate, original.seats_booked)

                now = self.clock()
                moved = Booking(
                    ride_id=candidate.id,
                    passenger_id=original.passenger_id,
                    seats_booked=original.seats_booked,
                    pickup_point=original.pickup_point,
                    dropoff_point=original.dropoff_point,
                    total_price=original.total_price,
                    payment_status=original.payment_status,
                    is_reassignment=True,
                    original_booking_id=original.id,
                    original_ride_id=cancelled_ride.id,
                    reassignment_attempts=attempt,
                    created_at=now,
                )
                if candidate.instant_booking:
                    moved.transition_to(BookingStatus.CONFIRMED)
                    moved.responded_at = now
                candidate.booking_ids.append(moved.id)

                original.resolution = Resolution.REASSIGNED
                original.reassigned_booking_id = moved.id
                original.reassignment_attempts = attempt

                await uow.add_booking(moved)
                await uow.save_booking(original)
                await uow.save_ride(candidate)

        logger.info(
            "Booking %s reassigned from ride %s to ride %s as %s (attempt %d)",
            original.id, cancelled_ride.id, candidate.id, moved.id, attempt,
        )
        await self.publisher.publish(self._moved_events(cancelled_ride, original, moved, candidate))
        return ReassignmentOutcome(
            booking_id=original.id,
            resolution=Resolution.REASSIGNED,
            new_booking_id=moved.id,
            new_ride_id=candidate.id,
        )

    @staticmethod
    def _moved_events(
        cancelled_ride: Ride, original: Booking, moved: Booking, candidate: Ride
    ) -> list[LifecycleEvent]:
        return [
            LifecycleEvent(
                kind=EventKind.BOOKING_REASSIGNED,
                ride_id=candidate.id,
                booking_id=moved.id,
                recipient_id=moved.passenger_id,
                payload={
                    "original_booking_id": original.id,
                    "original_ride_id": cancelled_ride.id,
                    "new_booking_id": moved.id,
                    "new_ride_id": candidate.id,
                    "departure_at": candidate.departure_at.isoformat(),
                    "status": moved.status.value,
                },
            ),
            LifecycleEvent(
                kind=EventKind.NEW_BOOKING,
                ride_id=candidate.id,
                booking_id=moved.id,
                recipient_id=candidate.driver_id,
                payload={
                    "passenger_id": moved.passenger_id,
                    "seats": moved.seats_booked,
                    "status": moved.status.value,
                    "reassigned_from_ride_id": cancelled_ride.id,
                },
            ),
            LifecycleEvent(
                kind=EventKind.RIDE_CANCELLED,
                ride_id=cancelled_ride.id,
                booking_id=original.id,
                recipient_id=original.passenger_id,
                payload={
                    "subtype": RideCancelledSubtype.ALTERNATIVE_FOUND.value,
                    "reason": cancelled_ride.cancellation_reason,
                    "new_booking_id": moved.id,
                    "new_ride_id": candidate.id,
                },
            ),
        ]

    async def _refund(
        self, cancelled_ride: Ride, booking_id: str, attempts: int
    ) -> ReassignmentOutcome:
        async with self.store.unit_of_work() as uow:
            booking = await uow.get_booking(booking_id)
            if booking.payment_status in PAID_STATUSES:
                booking.refund_amount = self.refund_policy.refund(
                    booking.total_price, cancelled_ride.departure_at, self.clock()
                )
                booking.payment_status = PaymentStatus.REFUNDED
            else:
                booking.refund_amount = 0.0
            booking.resolution = Resolution.REFUNDED
            booking.reassignment_attempts = attempts
            await uow.save_booking(booking)

        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.RIDE_CANCELLED,
                    ride_id=cancelled_ride.id,
                    booking_id=booking.id,
                    recipient_id=booking.passenger_id,
                    payload={
                        "subtype": RideCancelledSubtype.NO_ALTERNATIVE.value,
                        "reason": cancelled_ride.cancellation_reason,
                        "refund_amount": booking.refund_amount,
                    },
                )
            ]
        )
        return ReassignmentOutcome(
            booking_id=booking.id,
            resolution=Resolution.REFUNDED,
            refund_amount=booking.refund_amount,
        )
