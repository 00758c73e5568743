"""
Repository Pattern -- abstracts storage so lifecycle logic stays DB-agnostic.

A ``LifecycleStore`` hands out units of work.  Everything read or written
inside one ``unit_of_work()`` block commits together on a clean exit and is
discarded when the block raises.

``SqlAlchemyStore`` maps ORM rows to the canonical domain entities; rows
never leave this module.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncContextManager, AsyncIterator, Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import BookingModel, RideModel
from seatshare.domain.entities import Booking, Handoff, Location, Ride, Route
from seatshare.domain.enums import TERMINAL_BOOKING_STATUSES, BookingStatus, Resolution, RideStatus
from seatshare.domain.errors import BookingAlreadyExists, DuplicateBookingRequest, RideAlreadyExists


class UnitOfWork(Protocol):
    async def get_ride(self, ride_id: str, *, for_update: bool = False) -> Optional[Ride]: ...

    async def add_ride(self, ride: Ride) -> None: ...

    async def save_ride(self, ride: Ride) -> None: ...

    async def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    async def get_booking_by_idempotency_key(self, key: str) -> Optional[Booking]: ...

    async def add_booking(self, booking: Booking) -> None: ...

    async def save_booking(self, booking: Booking) -> None: ...

    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]: ...

    async def find_live_booking(self, ride_id: str, passenger_id: str) -> Optional[Booking]: ...

    async def find_candidate_rides(
        self,
        *,
        exclude_ride_id: str,
        min_seats: int,
        departure_from: datetime,
        departure_to: datetime,
        origin_cells: Optional[set[str]] = None,
        destination_cells: Optional[set[str]] = None,
    ) -> list[Ride]: ...

    async def list_awaiting_reassignment(self, limit: int = 100) -> list[Booking]: ...


class LifecycleStore(Protocol):
    def unit_of_work(self) -> AsyncContextManager[UnitOfWork]: ...


# ── Row <-> entity mapping ────────────────────────────────────────────


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _location_dict(loc: Location) -> dict:
    return {
        "lat": loc.latitude,
        "lng": loc.longitude,
        "name": loc.name,
        "address": loc.address,
    }


def ride_to_entity(row: RideModel, booking_ids: list[str]) -> Ride:
    return Ride(
        id=row.id,
        driver_id=row.driver_id,
        route=Route(
            start=Location(row.start_lat, row.start_lng, row.start_name, row.start_address),
            destination=Location(row.dest_lat, row.dest_lng, row.dest_name, row.dest_address),
            stops=[
                Location(s["lat"], s["lng"], s.get("name"), s.get("address"))
                for s in row.stops or []
            ],
            distance_km=row.distance_km,
            duration_minutes=row.duration_minutes,
        ),
        departure_at=_aware(row.departure_at),
        price_per_seat=row.price_per_seat,
        total_seats=row.total_seats,
        available_seats=row.available_seats,
        status=RideStatus(row.status),
        instant_booking=row.instant_booking,
        origin_cell=row.origin_cell,
        destination_cell=row.destination_cell,
        booking_ids=booking_ids,
        cancellation_reason=row.cancellation_reason,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        cancelled_at=_aware(row.cancelled_at),
    )


def ride_to_row(ride: Ride, row: Optional[RideModel] = None) -> RideModel:
    row = row or RideModel(id=ride.id)
    route = ride.route
    row.driver_id = ride.driver_id
    row.start_lat, row.start_lng = route.start.latitude, route.start.longitude
    row.start_name, row.start_address = route.start.name, route.start.address
    row.dest_lat, row.dest_lng = route.destination.latitude, route.destination.longitude
    row.dest_name, row.dest_address = route.destination.name, route.destination.address
    row.stops = [_location_dict(s) for s in route.stops]
    row.distance_km = route.distance_km
    row.duration_minutes = route.duration_minutes
    row.origin_cell = ride.origin_cell
    row.destination_cell = ride.destination_cell
    row.departure_at = ride.departure_at
    row.price_per_seat = ride.price_per_seat
    row.total_seats = ride.total_seats
    row.available_seats = ride.available_seats
    row.instant_booking = ride.instant_booking
    row.status = ride.status
    row.cancellation_reason = ride.cancellation_reason
    row.created_at = ride.created_at
    row.started_at = ride.started_at
    row.completed_at = ride.completed_at
    row.cancelled_at = ride.cancelled_at
    return row


def booking_to_entity(row: BookingModel) -> Booking:
    return Booking(
        id=row.id,
        ride_id=row.ride_id,
        passenger_id=row.passenger_id,
        seats_booked=row.seats_booked,
        pickup_point=Location(row.pickup_lat, row.pickup_lng, row.pickup_name, row.pickup_address),
        dropoff_point=Location(
            row.dropoff_lat, row.dropoff_lng, row.dropoff_name, row.dropoff_address
        ),
        total_price=row.total_price,
        status=BookingStatus(row.status),
        payment_status=row.payment_status,
        idempotency_key=row.idempotency_key,
        pickup=Handoff(
            otp=row.pickup_otp,
            issued_at=_aware(row.pickup_issued_at),
            verified_at=_aware(row.pickup_verified_at),
            failed_attempts=row.pickup_failed_attempts or 0,
        ),
        dropoff=Handoff(
            otp=row.dropoff_otp,
            issued_at=_aware(row.dropoff_issued_at),
            verified_at=_aware(row.dropoff_verified_at),
            failed_attempts=row.dropoff_failed_attempts or 0,
        ),
        is_reassignment=row.is_reassignment,
        original_booking_id=row.original_booking_id,
        original_ride_id=row.original_ride_id,
        reassigned_booking_id=row.reassigned_booking_id,
        resolution=row.resolution,
        reassignment_attempts=row.reassignment_attempts or 0,
        refund_amount=row.refund_amount,
        cancelled_by=row.cancelled_by,
        cancellation_reason=row.cancellation_reason,
        rejection_reason=row.rejection_reason,
        cancelled_at=_aware(row.cancelled_at),
        responded_at=_aware(row.responded_at),
        created_at=_aware(row.created_at),
    )


def booking_to_row(booking: Booking, row: Optional[BookingModel] = None) -> BookingModel:
    row = row or BookingModel(id=booking.id)
    row.ride_id = booking.ride_id
    row.passenger_id = booking.passenger_id
    row.seats_booked = booking.seats_booked
    p, d = booking.pickup_point, booking.dropoff_point
    row.pickup_lat, row.pickup_lng, row.pickup_name, row.pickup_address = (
        p.latitude, p.longitude, p.name, p.address,
    )
    row.dropoff_lat, row.dropoff_lng, row.dropoff_name, row.dropoff_address = (
        d.latitude, d.longitude, d.name, d.address,
    )
    row.total_price = booking.total_price
    row.status = booking.status
    row.payment_status = booking.payment_status
    row.idempotency_key = booking.idempotency_key
    row.pickup_otp = booking.pickup.otp
    row.pickup_issued_at = booking.pickup.issued_at
    row.pickup_verified_at = booking.pickup.verified_at
    row.pickup_failed_attempts = booking.pickup.failed_attempts
    row.dropoff_otp = booking.dropoff.otp
    row.dropoff_issued_at = booking.dropoff.issued_at
    row.dropoff_verified_at = booking.dropoff.verified_at
    row.dropoff_failed_attempts = booking.dropoff.failed_attempts
    row.is_reassignment = booking.is_reassignment
    row.original_booking_id = booking.original_booking_id
    row.original_ride_id = booking.original_ride_id
    row.reassigned_booking_id = booking.reassigned_booking_id
    row.resolution = booking.resolution
    row.reassignment_attempts = booking.reassignment_attempts
    row.refund_amount = booking.refund_amount
    row.cancelled_by = booking.cancelled_by
    row.cancellation_reason = booking.cancellation_reason
    row.rejection_reason = booking.rejection_reason
    row.cancelled_at = booking.cancelled_at
    row.responded_at = booking.responded_at
    row.created_at = booking.created_at
    return row


# ── SQL unit of work ──────────────────────────────────────────────────


class SqlUnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _booking_ids(self, ride_id: str) -> list[str]:
        result = await self.session.execute(
            select(BookingModel.id)
            .where(BookingModel.ride_id == ride_id)
            .order_by(BookingModel.created_at)
        )
        return list(result.scalars().all())

    async def get_ride(self, ride_id: str, *, for_update: bool = False) -> Optional[Ride]:
        query = select(RideModel).where(RideModel.id == ride_id)
        if for_update:
            # SELECT ... FOR UPDATE to prevent concurrent seat modifications
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        if row is None:
            return None
        return ride_to_entity(row, await self._booking_ids(ride_id))

    async def add_ride(self, ride: Ride) -> None:
        if await self.session.get(RideModel, ride.id) is not None:
            raise RideAlreadyExists(f"Ride {ride.id} already exists")
        self.session.add(ride_to_row(ride))
        await self.session.flush()

    async def save_ride(self, ride: Ride) -> None:
        row = await self.session.get(RideModel, ride.id)
        ride_to_row(ride, row)
        await self.session.flush()

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        row = await self.session.get(BookingModel, booking_id)
        return booking_to_entity(row) if row else None

    async def get_booking_by_idempotency_key(self, key: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.idempotency_key == key)
        )
        row = result.scalar_one_or_none()
        return booking_to_entity(row) if row else None

    async def add_booking(self, booking: Booking) -> None:
        if await self.session.get(BookingModel, booking.id) is not None:
            raise BookingAlreadyExists(f"Booking {booking.id} already exists")
        self.session.add(booking_to_row(booking))
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise DuplicateBookingRequest(
                f"Idempotency key {booking.idempotency_key!r} already used"
            ) from exc

    async def save_booking(self, booking: Booking) -> None:
        row = await self.session.get(BookingModel, booking.id)
        booking_to_row(booking, row)
        await self.session.flush()

    async def list_bookings(
        self, ride_id: str, statuses: Optional[Iterable[BookingStatus]] = None
    ) -> list[Booking]:
        query = select(BookingModel).where(BookingModel.ride_id == ride_id)
        if statuses is not None:
            query = query.where(BookingModel.status.in_(list(statuses)))
        result = await self.session.execute(query.order_by(BookingModel.created_at))
        return [booking_to_entity(row) for row in result.scalars().all()]

    async def find_live_booking(self, ride_id: str, passenger_id: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
            )
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return booking_to_entity(row) if row else None

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
        query = select(RideModel).where(
            RideModel.status == RideStatus.ACTIVE,
            RideModel.id != exclude_ride_id,
            RideModel.available_seats >= min_seats,
            RideModel.departure_at >= departure_from,
            RideModel.departure_at <= departure_to,
        )
        if origin_cells is not None:
            query = query.where(RideModel.origin_cell.in_(list(origin_cells)))
        if destination_cells is not None:
            query = query.where(RideModel.destination_cell.in_(list(destination_cells)))
        result = await self.session.execute(query.order_by(RideModel.departure_at))
        return [
            ride_to_entity(row, await self._booking_ids(row.id))
            for row in result.scalars().all()
        ]

    async def list_awaiting_reassignment(self, limit: int = 100) -> list[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.resolution == Resolution.AWAITING_REASSIGNMENT)
            .order_by(BookingModel.cancelled_at)
            .limit(limit)
        )
        return [booking_to_entity(row) for row in result.scalars().all()]


class SqlAlchemyStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlUnitOfWork]:
        """Yield a unit of work; commit on success, rollback on error."""
        async with self.session_factory() as session:
            async with session.begin():
                yield SqlUnitOfWork(session)
