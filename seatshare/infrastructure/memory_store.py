"""
In-process ``LifecycleStore``.

Each unit of work reads deep copies of committed entities into its own
identity map and only writes back what it saved or added, and only when
the block exits cleanly.  Used in tests and single-process deployments.
"""

from __future__ import annotations

import copy
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional

from seatshare.domain.entities import Booking, Ride
from seatshare.domain.enums import TERMINAL_BOOKING_STATUSES, BookingStatus, Resolution, RideStatus
from seatshare.domain.errors import BookingAlreadyExists, DuplicateBookingRequest, RideAlreadyExists


class InMemoryStore:
    def __init__(self) -> None:
        self.rides: dict[str, Ride] = {}
        self.bookings: dict[str, Booking] = {}
        self.idempotency_index: dict[str, str] = {}

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["MemoryUnitOfWork"]:
        uow = MemoryUnitOfWork(self)
        yield uow
        uow.commit()


class MemoryUnitOfWork:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self._rides: dict[str, Ride] = {}
        self._bookings: dict[str, Booking] = {}
        self._dirty_rides: set[str] = set()
        self._dirty_bookings: set[str] = set()

    # ── identity map ──────────────────────────────────────────────

    def _ride(self, ride_id: str) -> Optional[Ride]:
        if ride_id not in self._rides:
            committed = self.store.rides.get(ride_id)
            if committed is None:
                return None
            self._rides[ride_id] = copy.deepcopy(committed)
        return self._rides[ride_id]

    def _booking(self, booking_id: str) -> Optional[Booking]:
        if booking_id not in self._bookings:
            committed = self.store.bookings.get(booking_id)
            if committed is None:
                return None
            self._bookings[booking_id] = copy.deepcopy(committed)
        return self._bookings[booking_id]

    def _all_bookings(self) -> list[Booking]:
        ids = list(self.store.bookings) + [
            b for b in self._bookings if b not in self.store.bookings
        ]
        return [self._booking(b) for b in ids]

    def _all_rides(self) -> list[Ride]:
        ids = list(self.store.rides) + [r for r in self._rides if r not in self.store.rides]
        return [self._ride(r) for r in ids]

    # ── rides ─────────────────────────────────────────────────────

    async def get_ride(self, ride_id: str, *, for_update: bool = False) -> Optional[Ride]:
        return self._ride(ride_id)

    async def add_ride(self, ride: Ride) -> None:
        if self._ride(ride.id) is not None:
            raise RideAlreadyExists(f"Ride {ride.id} already exists")
        self._rides[ride.id] = ride
        self._dirty_rides.add(ride.id)

    async def save_ride(self, ride: Ride) -> None:
        self._rides[ride.id] = ride
        self._dirty_rides.add(ride.id)

    async def find_candidate_rides(
        self,
        *,
        exclude_ride_id: str,
        min_seats: int,
        departure_from: datetime,
        departure_to: datetime,
        origin_cells: Optional[set[str]] = None,
        destination_cells: Optional[set[str]] = None,
    ) -> list[Ride]:
        found = [
            ride
            for ride in self._all_rides()
            if ride.status == RideStatus.ACTIVE
            and ride.id != exclude_ride_id
            and ride.available_seats >= min_seats
            and departure_from <= ride.departure_at <= departure_to
            and (origin_cells is None or ride.origin_cell in origin_cells)
            and (destination_cells is None or ride.destination_cell in destination_cells)
        ]
        return sorted(found, key=lambda r: r.departure_at)

    # ── bookings ──────────────────────────────────────────────────

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._booking(booking_id)

    async def get_booking_by_idempotency_key(self, key: str) -> Optional[Booking]:
        for booking in self._bookings.values():
            if booking.idempotency_key == key:
                return booking
        booking_id = self.store.idempotency_index.get(key)
        return self._booking(booking_id) if booking_id else None

    async def add_booking(self, booking: Booking) -> None:
        if self._booking(booking.id) is not None:
            raise BookingAlreadyExists(f"Booking {booking.id} already exists")
        key = booking.idempotency_key
        if key is not None:
            existing = await self.get_booking_by_idempotency_key(key)
            if existing is not None and existing.id != booking.id:
                raise DuplicateBookingRequest(f"Idempotency key {key!r} already used")
        self._bookings[booking.id] = booking
        self._dirty_bookings.add(booking.id)

    async def save_booking(self, booking: Booking) -> None:
        self._bookings[booking.id] = booking
        self._dirty_bookings.add(booking.id)

    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]:
        wanted = set(statuses) if statuses is not None else None
        found = [
            b
            for b in self._all_bookings()
            if b.ride_id == ride_id and (wanted is None or b.status in wanted)
        ]
        return sorted(found, key=lambda b: b.created_at)

    async def find_live_booking(self, ride_id: str, passenger_id: str) -> Optional[Booking]:
        for booking in self._all_bookings():
            if (
                booking.ride_id == ride_id
                and booking.passenger_id == passenger_id
                and booking.status not in TERMINAL_BOOKING_STATUSES
            ):
                return booking
        return None

    async def list_awaiting_reassignment(self, limit: int = 100) -> list[Booking]:
        found = [
            b
            for b in self._all_bookings()
            if b.resolution == Resolution.AWAITING_REASSIGNMENT
        ]
        return sorted(found, key=lambda b: b.cancelled_at or b.created_at)[:limit]

    # ── commit ────────────────────────────────────────────────────

    def commit(self) -> None:
        for ride_id in self._dirty_rides:
            self.store.rides[ride_id] = copy.deepcopy(self._rides[ride_id])
        for booking_id in self._dirty_bookings:
            booking = copy.deepcopy(self._bookings[booking_id])
            self.store.bookings[booking_id] = booking
            if booking.idempotency_key is not None:
                self.store.idempotency_index[booking.idempotency_key] = booking_id
