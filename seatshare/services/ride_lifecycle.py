"""
Ride state machine
==================

    ACTIVE ──start──▶ IN_PROGRESS ──complete──▶ COMPLETED
      │                   │
      └──────cancel───────┴──────────────────▶ CANCELLED

Starting a ride moves every CONFIRMED booking to PICKUP_PENDING and hands
each passenger a pickup code.  Cancelling a ride releases every held seat
and cancels the affected bookings in the same unit of work, then asks the
``ReassignmentCoordinator`` to find each passenger an alternative.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from seatshare.domain.entities import Booking, Ride, Route, utcnow
from seatshare.domain.enums import (
    BookingStatus,
    CancelledBy,
    OTPPhase,
    Resolution,
    RideStatus,
)
from seatshare.domain.errors import InvalidTransition, RideNotFound
from seatshare.domain.events import EventKind, LifecycleEvent
from seatshare.domain.matching import assign_cells
from seatshare.infrastructure.event_bus import EventPublisher
from seatshare.infrastructure.repositories import LifecycleStore

from .otp import OTPChallengeService
from .reassignment import ReassignmentCoordinator
from .seat_allocator import SeatAllocator

logger = logging.getLogger(__name__)


class RideLifecycle:
    def __init__(
        self,
        store: LifecycleStore,
        allocator: SeatAllocator,
        otp: OTPChallengeService,
        publisher: EventPublisher,
        coordinator: ReassignmentCoordinator,
        h3_resolution: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.allocator = allocator
        self.otp = otp
        self.publisher = publisher
        self.coordinator = coordinator
        self.h3_resolution = h3_resolution
        self.clock = clock

    async def get(self, ride_id: str) -> Ride:
        async with self.store.unit_of_work() as uow:
            ride = await uow.get_ride(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    async def publish(
        self,
        driver_id: str,
        route: Route,
        departure_at: datetime,
        price_per_seat: float,
        total_seats: int,
        instant_booking: bool = False,
    ) -> Ride:
        """Offer a new ride with all seats free."""
        if total_seats < 1:
            raise ValueError("total_seats must be >= 1")
        if price_per_seat < 0:
            raise ValueError("price_per_seat must be >= 0")

        ride = Ride(
            driver_id=driver_id,
            route=route,
            departure_at=departure_at,
            price_per_seat=price_per_seat,
            total_seats=total_seats,
            instant_booking=instant_booking,
            created_at=self.clock(),
        )
        return await self.register(ride)

    async def register(self, ride: Ride) -> Ride:
        """Persist an already-built ride (published or imported)."""
        assign_cells(ride, self.h3_resolution)
        async with self.store.unit_of_work() as uow:
            await uow.add_ride(ride)
        logger.info(
            "Ride %s published by %s: %d seat(s), departs %s",
            ride.id, ride.driver_id, ride.total_seats, ride.departure_at.isoformat(),
        )
        return ride

    def _status_event(self, ride: Ride, **extra) -> LifecycleEvent:
        return LifecycleEvent(
            kind=EventKind.RIDE_STATUS_UPDATED,
            ride_id=ride.id,
            payload={"status": ride.status.value, **extra},
        )

    async def start(self, ride_id: str) -> Ride:
        events: list[LifecycleEvent] = []
        async with self.allocator.guard(ride_id):
            async with self.store.unit_of_work() as uow:
                ride = await self._load_for_update(uow, ride_id)
                if ride.status != RideStatus.ACTIVE:
                    raise InvalidTransition(
                        f"Cannot start ride {ride.id} in status {ride.status.value}"
                    )
                confirmed = await uow.list_bookings(ride.id, [BookingStatus.CONFIRMED])
                if not confirmed:
                    raise InvalidTransition(
                        f"Cannot start ride {ride.id} until at least one booking is confirmed"
                    )

                ride.transition_to(RideStatus.IN_PROGRESS)
                ride.started_at = self.clock()
                for booking in confirmed:
                    booking.transition_to(BookingStatus.PICKUP_PENDING)
                    code = self.otp.issue(booking, OTPPhase.PICKUP)
                    await uow.save_booking(booking)
                    events.append(
                        LifecycleEvent(
                            kind=EventKind.OTP_ISSUED,
                            ride_id=ride.id,
                            booking_id=booking.id,
                            recipient_id=booking.passenger_id,
                            payload={"phase": OTPPhase.PICKUP.value, "otp": code},
                        )
                    )
                await uow.save_ride(ride)

        logger.info("Ride %s started with %d confirmed booking(s)", ride.id, len(confirmed))
        events.append(self._status_event(ride))
        await self.publisher.publish(events)
        return ride

    async def complete(self, ride_id: str) -> Ride:
        events: list[LifecycleEvent] = []
        async with self.allocator.guard(ride_id):
            async with self.store.unit_of_work() as uow:
                ride = await self._load_for_update(uow, ride_id)
                if ride.status != RideStatus.IN_PROGRESS:
                    raise InvalidTransition(
                        f"Cannot complete ride {ride.id} in status {ride.status.value}"
                    )
                bookings = await uow.list_bookings(ride.id)
                # PENDING bookings are rejected below; any other seat holder
                # (CONFIRMED or on board) has not been dropped off yet.
                unfinished = [
                    b for b in bookings if b.holds_seats and b.status != BookingStatus.PENDING
                ]
                if unfinished:
                    raise InvalidTransition(
                        f"Cannot complete ride {ride.id}: "
                        f"{len(unfinished)} booking(s) not yet dropped off"
                    )

                completed = []
                for booking in bookings:
                    if booking.status == BookingStatus.PENDING:
                        # Never answered by the driver.
                        self.allocator.release(ride, booking)
                        booking.transition_to(BookingStatus.REJECTED)
                        booking.rejection_reason = "Ride completed"
                        booking.responded_at = self.clock()
                        events.append(
                            LifecycleEvent(
                                kind=EventKind.BOOKING_REJECTED,
                                ride_id=ride.id,
                                booking_id=booking.id,
                                recipient_id=booking.passenger_id,
                                payload={"reason": booking.rejection_reason},
                            )
                        )
                    elif booking.status == BookingStatus.DROPPED_OFF:
                        booking.transition_to(BookingStatus.COMPLETED)
                        completed.append(booking.id)
                    else:
                        continue
                    await uow.save_booking(booking)

                ride.transition_to(RideStatus.COMPLETED)
                ride.completed_at = self.clock()
                await uow.save_ride(ride)

        logger.info("Ride %s completed (%d booking(s) completed)", ride.id, len(completed))
        events.append(self._status_event(ride, completed_booking_ids=completed))
        await self.publisher.publish(events)
        return ride

    async def cancel(self, ride_id: str, reason: Optional[str] = None) -> Ride:
        """
        Cancel *ride_id* and resolve every displaced booking.

        Seats are released and seat-holding bookings move to CANCELLED
        (``resolution = AWAITING_REASSIGNMENT``) before the ride turns
        terminal.  Reassignment runs afterwards, outside the ride lock; a
        booking it cannot resolve stays AWAITING_REASSIGNMENT for the sweeper.
        """
        displaced: list[Booking] = []
        async with self.allocator.guard(ride_id):
            async with self.store.unit_of_work() as uow:
                ride = await self._load_for_update(uow, ride_id)
                if ride.is_terminal:
                    raise InvalidTransition(
                        f"Cannot cancel ride {ride.id} in status {ride.status.value}"
                    )
                now = self.clock()
                for booking in await uow.list_bookings(ride.id):
                    if booking.holds_seats:
                        self.allocator.release(ride, booking)
                        booking.mark_cancelled(CancelledBy.DRIVER, reason, now)
                        booking.resolution = Resolution.AWAITING_REASSIGNMENT
                        booking.pickup.otp = None
                        booking.dropoff.otp = None
                        displaced.append(booking)
                    elif booking.status == BookingStatus.DROPPED_OFF:
                        booking.transition_to(BookingStatus.COMPLETED)
                    else:
                        continue
                    await uow.save_booking(booking)

                ride.transition_to(RideStatus.CANCELLED)
                ride.cancellation_reason = reason
                ride.cancelled_at = now
                await uow.save_ride(ride)

        logger.info(
            "Ride %s cancelled (%s); %d booking(s) displaced",
            ride.id, reason or "no reason", len(displaced),
        )
        await self.publisher.publish(
            [self._status_event(ride, reason=reason, displaced_booking_ids=[b.id for b in displaced])]
        )
        await self.coordinator.resolve_all(ride, displaced)
        return ride

    async def audit(self, ride_id: str) -> Ride:
        """Recompute the seat invariant from persisted bookings."""
        async with self.store.unit_of_work() as uow:
            ride = await uow.get_ride(ride_id)
            if ride is None:
                raise RideNotFound(f"Ride {ride_id} not found")
            self.allocator.check(ride, await uow.list_bookings(ride_id))
        return ride

    @staticmethod
    async def _load_for_update(uow, ride_id: str) -> Ride:
        ride = await uow.get_ride(ride_id, for_update=True)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride
