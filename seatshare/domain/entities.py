"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride`` and ``Booking``: ``transition_to`` enforces
  the lifecycle tables in ``enums``.
- ``Ride.can_accommodate`` encapsulates the seat-capacity invariant.

These are the canonical shapes; anything arriving in another shape goes
through ``adapters`` first.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .enums import (
    BOOKING_TRANSITIONS,
    RIDE_TRANSITIONS,
    SEAT_HOLDING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    TERMINAL_RIDE_STATUSES,
    BookingStatus,
    CancelledBy,
    OTPPhase,
    PaymentStatus,
    Resolution,
    RideStatus,
)
from .errors import InvalidTransition


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass
class Route:
    start: Location
    destination: Location
    stops: list[Location] = field(default_factory=list)
    distance_km: Optional[float] = None
    duration_minutes: Optional[int] = None

    def waypoints(self) -> list[Location]:
        """Start, intermediate stops in order, destination."""
        return [self.start, *self.stops, self.destination]


@dataclass
class Handoff:
    """One-time-code state for a single pickup or dropoff."""

    otp: Optional[str] = None
    issued_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    failed_attempts: int = 0

    @property
    def verified(self) -> bool:
        return self.verified_at is not None


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    driver_id: str
    route: Route
    departure_at: datetime
    price_per_seat: float
    total_seats: int
    available_seats: Optional[int] = None
    id: str = field(default_factory=new_id)
    status: RideStatus = RideStatus.ACTIVE
    instant_booking: bool = False
    origin_cell: Optional[str] = None
    destination_cell: Optional[str] = None
    booking_ids: list[str] = field(default_factory=list)
    cancellation_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.available_seats is None:
            self.available_seats = self.total_seats

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RIDE_STATUSES

    def can_accommodate(self, seats: int) -> bool:
        return self.status == RideStatus.ACTIVE and seats <= self.available_seats

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Ride {self.id}: cannot transition from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status


@dataclass
class Booking:
    ride_id: str
    passenger_id: str
    seats_booked: int
    pickup_point: Location
    dropoff_point: Location
    total_price: float = 0.0
    id: str = field(default_factory=new_id)
    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    idempotency_key: Optional[str] = None
    pickup: Handoff = field(default_factory=Handoff)
    dropoff: Handoff = field(default_factory=Handoff)

    # Reassignment bookkeeping
    is_reassignment: bool = False
    original_booking_id: Optional[str] = None
    original_ride_id: Optional[str] = None
    reassigned_booking_id: Optional[str] = None
    resolution: Optional[Resolution] = None
    reassignment_attempts: int = 0
    refund_amount: Optional[float] = None

    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def holds_seats(self) -> bool:
        return self.status in SEAT_HOLDING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    def handoff(self, phase: OTPPhase) -> Handoff:
        return self.pickup if phase == OTPPhase.PICKUP else self.dropoff

    def transition_to(self, new_status: BookingStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = BOOKING_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Booking {self.id}: cannot transition from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def mark_cancelled(
        self, by: CancelledBy, reason: Optional[str], at: datetime
    ) -> None:
        self.transition_to(BookingStatus.CANCELLED)
        self.cancelled_by = by
        self.cancellation_reason = reason
        self.cancelled_at = at
