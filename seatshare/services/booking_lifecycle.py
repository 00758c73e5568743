"""
Booking state machine
=====================

    PENDING ──accept──▶ CONFIRMED ──ride start──▶ PICKUP_PENDING
       │                   │                          │ pickup code
       ├─reject─▶ REJECTED │                          ▼
       └─cancel─▶ CANCELLED◀┘                      PICKED_UP ─▶ IN_TRANSIT
                                                      │            │
                                                      ▼            ▼
                         COMPLETED ◀─ride complete─ DROPPED_OFF ◀─ DROPOFF_PENDING
                                                         dropoff code

Every mutation runs under the ride's lock, inside one unit of work, and
publishes its events only after that unit of work committed.  Failures are
raised as typed ``LifecycleError`` subclasses.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from seatshare.domain.entities import Booking, Location, Ride, utcnow
from seatshare.domain.enums import (
    PAID_STATUSES,
    USER_CANCELLABLE_STATUSES,
    BookingStatus,
    CancelledBy,
    OTPPhase,
    PaymentStatus,
    RideStatus,
)
from seatshare.domain.errors import (
    BookingNotAllowed,
    BookingNotFound,
    DuplicateBookingRequest,
    InvalidTransition,
    NotBookingHolder,
    OTPMismatch,
    RideNotFound,
)
from seatshare.domain.events import EventKind, LifecycleEvent
from seatshare.domain.pricing import RefundPolicy, TieredRefund, booking_total
from seatshare.infrastructure.event_bus import EventPublisher
from seatshare.infrastructure.locks import idempotency_key as idempotency_lock
from seatshare.infrastructure.repositories import LifecycleStore, UnitOfWork

from .otp import OTPChallengeService
from .seat_allocator import SeatAllocator

logger = logging.getLogger(__name__)


class BookingLifecycle:
    def __init__(
        self,
        store: LifecycleStore,
        allocator: SeatAllocator,
        otp: OTPChallengeService,
        publisher: EventPublisher,
        platform_commission: float = 0.0,
        refund_policy: Optional[RefundPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.allocator = allocator
        self.otp = otp
        self.publisher = publisher
        self.platform_commission = platform_commission
        self.refund_policy = refund_policy or TieredRefund()
        self.clock = clock

    # ── Queries ───────────────────────────────────────────────────

    async def get(self, booking_id: str) -> Booking:
        async with self.store.unit_of_work() as uow:
            booking = await uow.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    async def list_for_ride(self, ride_id: str) -> list[Booking]:
        async with self.store.unit_of_work() as uow:
            if await uow.get_ride(ride_id) is None:
                raise RideNotFound(f"Ride {ride_id} not found")
            return await uow.list_bookings(ride_id)

    async def reveal_otp(self, booking_id: str, passenger_id: str) -> tuple[OTPPhase, str]:
        """Return the live code, to the passenger holding the booking only."""
        booking = await self.get(booking_id)
        if booking.passenger_id != passenger_id:
            raise NotBookingHolder(f"Booking {booking_id} belongs to another passenger")
        if booking.status == BookingStatus.PICKUP_PENDING:
            phase = OTPPhase.PICKUP
        elif booking.status == BookingStatus.DROPOFF_PENDING:
            phase = OTPPhase.DROPOFF
        else:
            raise InvalidTransition(
                f"Booking {booking_id} has no live code in status {booking.status.value}"
            )
        code = booking.handoff(phase).otp
        if code is None:
            raise InvalidTransition(f"{phase.value.capitalize()} code already used")
        return phase, code

    # ── Creation ──────────────────────────────────────────────────

    async def create(
        self,
        ride_id: str,
        passenger_id: str,
        seats: int,
        idempotency_key: Optional[str] = None,
        pickup_point: Optional[Location] = None,
        dropoff_point: Optional[Location] = None,
    ) -> Booking:
        """
        Reserve *seats* on *ride_id* for *passenger_id*.

        Replaying an *idempotency_key* returns the booking it created; the
        key lookup, the reservation and the insert are one atomic unit.
        """
        if seats < 1:
            raise BookingNotAllowed("At least one seat must be booked")

        async with AsyncExitStack() as stack:
            # Fixed order: idempotency key first, then the ride.
            if idempotency_key:
                await stack.enter_async_context(
                    self.allocator.locks.hold(idempotency_lock(idempotency_key))
                )
            await stack.enter_async_context(self.allocator.guard(ride_id))

            async with self.store.unit_of_work() as uow:
                if idempotency_key:
                    existing = await uow.get_booking_by_idempotency_key(idempotency_key)
                    if existing is not None:
                        self._check_replay(
                            existing, ride_id, passenger_id, seats, pickup_point, dropoff_point
                        )
                        logger.info("Replayed booking %s for key %s", existing.id, idempotency_key)
                        return existing

                ride = await uow.get_ride(ride_id, for_update=True)
                if ride is None:
                    raise RideNotFound(f"Ride {ride_id} not found")
                if ride.status != RideStatus.ACTIVE:
                    raise InvalidTransition(
                        f"Ride {ride_id} is {ride.status.value}; not open for booking"
                    )
                if ride.driver_id == passenger_id:
                    raise BookingNotAllowed("Cannot book your own ride")
                if await uow.find_live_booking(ride_id, passenger_id) is not None:
                    raise BookingNotAllowed("You already have a booking for this ride")

                self.allocator.reserve(ride, seats)

                now = self.clock()
                booking = Booking(
                    ride_id=ride.id,
                    passenger_id=passenger_id,
                    seats_booked=seats,
                    pickup_point=pickup_point or ride.route.start,
                    dropoff_point=dropoff_point or ride.route.destination,
                    total_price=booking_total(
                        ride.price_per_seat, seats, self.platform_commission
                    ),
                    idempotency_key=idempotency_key,
                    created_at=now,
                )
                if ride.instant_booking:
                    booking.transition_to(BookingStatus.CONFIRMED)
                    booking.responded_at = now
                ride.booking_ids.append(booking.id)

                await uow.add_booking(booking)
                await uow.save_ride(ride)

        logger.info(
            "Booking %s created on ride %s: %d seat(s), %s (%d left)",
            booking.id, ride.id, seats, booking.status.value, ride.available_seats,
        )
        await self.publisher.publish(self._creation_events(ride, booking))
        return booking

    async def register(self, booking: Booking) -> Booking:
        """
        Attach an already-existing booking (legacy import) to its ride.

        The ride's seat count is taken as-is from the same import, so no
        seats are reserved here; ``RideLifecycle.audit`` cross-checks both.
        """
        async with self.allocator.guard(booking.ride_id):
            async with self.store.unit_of_work() as uow:
                ride = await uow.get_ride(booking.ride_id, for_update=True)
                if ride is None:
                    raise RideNotFound(f"Ride {booking.ride_id} not found")
                await uow.add_booking(booking)
                if booking.id not in ride.booking_ids:
                    ride.booking_ids.append(booking.id)
                    await uow.save_ride(ride)
        logger.info("Imported booking %s on ride %s (%s)", booking.id, ride.id, booking.status.value)
        return booking

    @staticmethod
    def _check_replay(
        existing: Booking,
        ride_id: str,
        passenger_id: str,
        seats: int,
        pickup_point: Optional[Location],
        dropoff_point: Optional[Location],
    ) -> None:
        """Omitted handoff points match whatever the original booking stored."""
        if (
            existing.ride_id != ride_id
            or existing.passenger_id != passenger_id
            or existing.seats_booked != seats
            or (pickup_point is not None and pickup_point != existing.pickup_point)
            or (dropoff_point is not None and dropoff_point != existing.dropoff_point)
        ):
            raise DuplicateBookingRequest(
                f"Idempotency key {existing.idempotency_key!r} was used for a different request"
            )

    @staticmethod
    def _creation_events(ride: Ride, booking: Booking) -> list[LifecycleEvent]:
        payload = {
            "passenger_id": booking.passenger_id,
            "seats": booking.seats_booked,
            "status": booking.status.value,
            "total_price": booking.total_price,
        }
        if booking.status == BookingStatus.CONFIRMED:
            return [
                LifecycleEvent(
                    kind=EventKind.BOOKING_CONFIRMED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=recipient,
                    payload={**payload, "auto_accepted": True},
                )
                for recipient in (booking.passenger_id, ride.driver_id)
            ]
        return [
            LifecycleEvent(
                kind=EventKind.NEW_BOOKING_REQUEST,
                ride_id=ride.id,
                booking_id=booking.id,
                recipient_id=ride.driver_id,
                payload=payload,
            )
        ]

    # ── Driver decision ───────────────────────────────────────────

    @asynccontextmanager
    async def _locked(self, booking_id: str) -> AsyncIterator[tuple[UnitOfWork, Ride, Booking]]:
        """Load *booking_id* and its ride under the ride's lock."""
        ride_id = (await self.get(booking_id)).ride_id
        async with self.allocator.guard(ride_id):
            async with self.store.unit_of_work() as uow:
                ride = await uow.get_ride(ride_id, for_update=True)
                booking = await uow.get_booking(booking_id)
                if ride is None:
                    raise RideNotFound(f"Ride {ride_id} not found")
                yield uow, ride, booking

    @staticmethod
    def _require(booking: Booking, action: str, *statuses: BookingStatus) -> None:
        if booking.status not in statuses:
            raise InvalidTransition(
                f"Cannot {action} booking {booking.id} in status {booking.status.value}"
            )

    async def accept(self, booking_id: str) -> Booking:
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(booking, "accept", BookingStatus.PENDING)
            if ride.status != RideStatus.ACTIVE:
                raise InvalidTransition(
                    f"Ride {ride.id} is {ride.status.value}; bookings can no longer be accepted"
                )
            # Seats are already held since PENDING.
            booking.transition_to(BookingStatus.CONFIRMED)
            booking.responded_at = self.clock()
            await uow.save_booking(booking)

        logger.info("Booking %s confirmed", booking.id)
        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.BOOKING_CONFIRMED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=booking.passenger_id,
                    payload={"seats": booking.seats_booked, "status": booking.status.value},
                )
            ]
        )
        return booking

    async def reject(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(booking, "reject", BookingStatus.PENDING)
            self.allocator.release(ride, booking)
            booking.transition_to(BookingStatus.REJECTED)
            booking.rejection_reason = reason
            booking.responded_at = self.clock()
            await uow.save_booking(booking)
            await uow.save_ride(ride)

        logger.info("Booking %s rejected (%s)", booking.id, reason or "no reason")
        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.BOOKING_REJECTED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=booking.passenger_id,
                    payload={"reason": reason},
                )
            ]
        )
        return booking

    # ── Passenger withdrawal ──────────────────────────────────────

    async def cancel(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        async with self._locked(booking_id) as (uow, ride, booking):
            if booking.status not in USER_CANCELLABLE_STATUSES:
                raise InvalidTransition(
                    f"Cannot cancel booking {booking.id} in status {booking.status.value}"
                )
            if ride.is_terminal:
                raise InvalidTransition(
                    f"Cannot cancel booking {booking.id}: ride {ride.id} is {ride.status.value}"
                )
            now = self.clock()
            self.allocator.release(ride, booking)
            booking.mark_cancelled(CancelledBy.PASSENGER, reason, now)
            if booking.payment_status in PAID_STATUSES:
                booking.refund_amount = self.refund_policy.refund(
                    booking.total_price, ride.departure_at, now
                )
                if booking.refund_amount > 0:
                    booking.payment_status = PaymentStatus.REFUNDED
            await uow.save_booking(booking)
            await uow.save_ride(ride)

        logger.info(
            "Booking %s cancelled by passenger; ride %s has %d seat(s) left",
            booking.id, ride.id, ride.available_seats,
        )
        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.BOOKING_CANCELLED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=ride.driver_id,
                    payload={
                        "passenger_id": booking.passenger_id,
                        "seats": booking.seats_booked,
                        "reason": reason,
                        "refund_amount": booking.refund_amount,
                    },
                )
            ]
        )
        return booking

    # ── Handoffs ──────────────────────────────────────────────────

    async def confirm_pickup(self, booking_id: str, otp: str) -> Booking:
        failure: Optional[OTPMismatch] = None
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(booking, "confirm pickup for", BookingStatus.PICKUP_PENDING)
            try:
                self.otp.verify(booking, OTPPhase.PICKUP, otp)
            except OTPMismatch as exc:
                # Keep the attempt count, leave the status alone.
                failure = exc
            else:
                booking.transition_to(BookingStatus.PICKED_UP)
            await uow.save_booking(booking)

        if failure is not None:
            raise failure
        logger.info("Booking %s picked up", booking.id)
        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.PICKUP_CONFIRMED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=booking.passenger_id,
                    payload={"verified_at": booking.pickup.verified_at.isoformat()},
                )
            ]
        )
        return booking

    async def begin_transit(self, booking_id: str) -> Booking:
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(booking, "start transit for", BookingStatus.PICKED_UP)
            booking.transition_to(BookingStatus.IN_TRANSIT)
            await uow.save_booking(booking)
        return booking

    async def request_dropoff(self, booking_id: str) -> Booking:
        """Driver starts the dropoff handoff; the passenger gets a fresh code."""
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(
                booking, "request dropoff for", BookingStatus.PICKED_UP, BookingStatus.IN_TRANSIT
            )
            booking.transition_to(BookingStatus.DROPOFF_PENDING)
            code = self.otp.issue(booking, OTPPhase.DROPOFF)
            await uow.save_booking(booking)

        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.OTP_ISSUED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=booking.passenger_id,
                    payload={"phase": OTPPhase.DROPOFF.value, "otp": code},
                )
            ]
        )
        return booking

    async def confirm_dropoff(self, booking_id: str, otp: str) -> Booking:
        failure: Optional[OTPMismatch] = None
        async with self._locked(booking_id) as (uow, ride, booking):
            self._require(booking, "confirm dropoff for", BookingStatus.DROPOFF_PENDING)
            try:
                self.otp.verify(booking, OTPPhase.DROPOFF, otp)
            except OTPMismatch as exc:
                failure = exc
            else:
                # Passenger is out of the car; the seat stops counting.
                self.allocator.release(ride, booking)
                booking.transition_to(BookingStatus.DROPPED_OFF)
                await uow.save_ride(ride)
            await uow.save_booking(booking)

        if failure is not None:
            raise failure
        logger.info("Booking %s dropped off", booking.id)
        await self.publisher.publish(
            [
                LifecycleEvent(
                    kind=EventKind.DROPOFF_CONFIRMED,
                    ride_id=ride.id,
                    booking_id=booking.id,
                    recipient_id=recipient,
                    payload={"verified_at": booking.dropoff.verified_at.isoformat()},
                )
                for recipient in (booking.passenger_id, ride.driver_id)
            ]
        )
        return booking
