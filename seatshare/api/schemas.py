"""Pydantic request / response schemas for the REST API.

One-time codes never appear in a booking response; the holder fetches the
live code from ``GET /bookings/{id}/otp``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from seatshare.domain.entities import Booking, Location, Ride, Route


# ── Shared ────────────────────────────────────────────────────────────


class LocationSchema(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: Optional[str] = None
    address: Optional[str] = None

    def to_entity(self) -> Location:
        return Location(self.latitude, self.longitude, self.name, self.address)

    @classmethod
    def from_entity(cls, loc: Location) -> "LocationSchema":
        return cls(
            latitude=loc.latitude, longitude=loc.longitude, name=loc.name, address=loc.address
        )


# ── Requests ──────────────────────────────────────────────────────────


class RidePublishRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    start: LocationSchema
    destination: LocationSchema
    stops: list[LocationSchema] = []
    departure_at: datetime
    price_per_seat: float = Field(..., ge=0)
    total_seats: int = Field(..., ge=1, le=8)
    instant_booking: bool = False
    distance_km: Optional[float] = Field(None, ge=0)
    duration_minutes: Optional[int] = Field(None, ge=0)

    def to_route(self) -> Route:
        return Route(
            start=self.start.to_entity(),
            destination=self.destination.to_entity(),
            stops=[s.to_entity() for s in self.stops],
            distance_km=self.distance_km,
            duration_minutes=self.duration_minutes,
        )


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingCreateRequest(BaseModel):
    ride_id: str
    passenger_id: str = Field(..., min_length=1)
    seats: int = Field(1, ge=1, le=8)
    pickup_point: Optional[LocationSchema] = None
    dropoff_point: Optional[LocationSchema] = None
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated key; the Idempotency-Key header takes precedence.",
    )


class OTPSubmitRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=12)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: str
    driver_id: str
    status: str
    start: LocationSchema
    destination: LocationSchema
    stops: list[LocationSchema] = []
    departure_at: datetime
    price_per_seat: float
    total_seats: int
    available_seats: int
    instant_booking: bool
    booking_ids: list[str] = []
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, ride: Ride) -> "RideResponse":
        return cls(
            id=ride.id,
            driver_id=ride.driver_id,
            status=ride.status.value,
            start=LocationSchema.from_entity(ride.route.start),
            destination=LocationSchema.from_entity(ride.route.destination),
            stops=[LocationSchema.from_entity(s) for s in ride.route.stops],
            departure_at=ride.departure_at,
            price_per_seat=ride.price_per_seat,
            total_seats=ride.total_seats,
            available_seats=ride.available_seats,
            instant_booking=ride.instant_booking,
            booking_ids=list(ride.booking_ids),
            cancellation_reason=ride.cancellation_reason,
            created_at=ride.created_at,
            started_at=ride.started_at,
            completed_at=ride.completed_at,
            cancelled_at=ride.cancelled_at,
        )


class BookingResponse(BaseModel):
    id: str
    ride_id: str
    passenger_id: str
    seats_booked: int
    status: str
    payment_status: str
    total_price: float
    pickup_point: LocationSchema
    dropoff_point: LocationSchema
    pickup_verified_at: Optional[datetime] = None
    dropoff_verified_at: Optional[datetime] = None
    is_reassignment: bool = False
    original_booking_id: Optional[str] = None
    original_ride_id: Optional[str] = None
    reassigned_booking_id: Optional[str] = None
    resolution: Optional[str] = None
    refund_amount: Optional[float] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            ride_id=booking.ride_id,
            passenger_id=booking.passenger_id,
            seats_booked=booking.seats_booked,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            total_price=booking.total_price,
            pickup_point=LocationSchema.from_entity(booking.pickup_point),
            dropoff_point=LocationSchema.from_entity(booking.dropoff_point),
            pickup_verified_at=booking.pickup.verified_at,
            dropoff_verified_at=booking.dropoff.verified_at,
            is_reassignment=booking.is_reassignment,
            original_booking_id=booking.original_booking_id,
            original_ride_id=booking.original_ride_id,
            reassigned_booking_id=booking.reassigned_booking_id,
            resolution=booking.resolution.value if booking.resolution else None,
            refund_amount=booking.refund_amount,
            cancelled_by=booking.cancelled_by.value if booking.cancelled_by else None,
            cancellation_reason=booking.cancellation_reason,
            rejection_reason=booking.rejection_reason,
            created_at=booking.created_at,
        )


class OTPRevealResponse(BaseModel):
    booking_id: str
    phase: str
    otp: str


class ImportRequest(BaseModel):
    rides: list[dict[str, Any]] = Field(..., min_length=1)
    bookings: list[dict[str, Any]] = []


class ImportResponse(BaseModel):
    imported: list[RideResponse]
    imported_bookings: list[BookingResponse] = []
    errors: list[str] = []


class AuditResponse(BaseModel):
    ride_id: str
    total_seats: int
    available_seats: int
    consistent: bool = True
    detail: Optional[str] = None


class SweepResponse(BaseModel):
    resolved: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
