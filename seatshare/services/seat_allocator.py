"""
Seat arithmetic for a single ride.

Every method here mutates a ``Ride`` that the caller loaded inside a unit
of work while holding ``guard(ride.id)``.  That lock is what makes
``reserve`` atomic with respect to other callers on the same ride; rides
are independent of each other.

``release`` is keyed on the booking, not on a seat count: seats come back
only while the booking is still seat-holding, and the caller moves the
booking out of a seat-holding status in the same unit of work, so a second
release of the same booking is a no-op.
"""

from __future__ import annotations

import logging
from typing import AsyncContextManager, Iterable

from seatshare.domain.entities import Booking, Ride
from seatshare.domain.enums import RideStatus
from seatshare.domain.errors import CapacityExceeded, InvalidTransition, InvariantViolation
from seatshare.infrastructure.locks import LockManager, ride_key

logger = logging.getLogger(__name__)


class SeatAllocator:
    def __init__(self, locks: LockManager):
        self.locks = locks

    def guard(self, ride_id: str) -> AsyncContextManager[None]:
        """Per-ride mutual exclusion for seat and status changes."""
        return self.locks.hold(ride_key(ride_id))

    def reserve(self, ride: Ride, seats: int) -> None:
        if seats < 1:
            raise ValueError("seats must be >= 1")
        if ride.status != RideStatus.ACTIVE:
            raise InvalidTransition(
                f"Ride {ride.id} is {ride.status.value}; seats cannot be reserved"
            )
        if seats > ride.available_seats:
            raise CapacityExceeded(ride.id, seats, ride.available_seats)

        ride.available_seats -= seats
        self._check_bounds(ride)
        logger.debug("Reserved %d seat(s) on ride %s (%d left)", seats, ride.id, ride.available_seats)

    def release(self, ride: Ride, booking: Booking) -> bool:
        """Credit *booking*'s seats back to *ride*.  Returns False if nothing to release."""
        if not booking.holds_seats:
            return False
        if ride.is_terminal:
            raise InvalidTransition(
                f"Ride {ride.id} is {ride.status.value}; seats cannot be released"
            )
        if booking.ride_id != ride.id:
            raise InvariantViolation(
                f"Booking {booking.id} belongs to ride {booking.ride_id}, not {ride.id}"
            )

        ride.available_seats += booking.seats_booked
        self._check_bounds(ride)
        logger.debug(
            "Released %d seat(s) of booking %s on ride %s (%d left)",
            booking.seats_booked, booking.id, ride.id, ride.available_seats,
        )
        return True

    @staticmethod
    def _check_bounds(ride: Ride) -> None:
        if not 0 <= ride.available_seats <= ride.total_seats:
            raise InvariantViolation(
                f"Ride {ride.id}: available_seats={ride.available_seats} "
                f"outside [0, {ride.total_seats}]"
            )

    @staticmethod
    def held_seats(bookings: Iterable[Booking]) -> int:
        return sum(b.seats_booked for b in bookings if b.holds_seats)

    def check(self, ride: Ride, bookings: Iterable[Booking]) -> None:
        """Recompute the capacity invariant from *ride*'s bookings."""
        self._check_bounds(ride)
        expected = ride.total_seats - self.held_seats(bookings)
        if ride.available_seats != expected:
            raise InvariantViolation(
                f"Ride {ride.id}: available_seats={ride.available_seats}, "
                f"expected {expected} from bookings"
            )
