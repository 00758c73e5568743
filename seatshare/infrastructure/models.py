"""
SQLAlchemy ORM models.

Tables
------
* ``rides``     -- published rides with their seat inventory
* ``bookings``  -- seat requests against a ride, incl. OTP handoff state

Indexes
-------
* **B-Tree** on ``status``, ``driver_id``, ``departure_at`` and the H3
  ``origin_cell`` / ``destination_cell`` columns for candidate search.
* **Unique** ``bookings.idempotency_key`` as the storage-level backstop
  for replayed creation requests.

A CHECK constraint keeps ``0 <= available_seats <= total_seats`` even if a
caller bypasses the allocator.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from .database import Base
from seatshare.domain.enums import (
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    Resolution,
    RideStatus,
)


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(String(64), primary_key=True)
    driver_id = Column(String(64), nullable=False)

    start_lat = Column(Float, nullable=False)
    start_lng = Column(Float, nullable=False)
    start_name = Column(String(255), nullable=True)
    start_address = Column(String(512), nullable=True)
    dest_lat = Column(Float, nullable=False)
    dest_lng = Column(Float, nullable=False)
    dest_name = Column(String(255), nullable=True)
    dest_address = Column(String(512), nullable=True)
    stops = Column(JSON, nullable=False, default=list)
    distance_km = Column(Float, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    # H3 cells of start / destination, used to pre-filter candidates
    origin_cell = Column(String(20), nullable=True)
    destination_cell = Column(String(20), nullable=True)

    departure_at = Column(DateTime(timezone=True), nullable=False)
    price_per_seat = Column(Float, nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    instant_booking = Column(Boolean, default=False, nullable=False)

    status = Column(Enum(RideStatus), default=RideStatus.ACTIVE, nullable=False)
    cancellation_reason = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
        Index("idx_rides_status", "status"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_departure", "departure_at"),
        Index("idx_rides_origin_cell", "origin_cell"),
        Index("idx_rides_destination_cell", "destination_cell"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True)
    ride_id = Column(String(64), ForeignKey("rides.id"), nullable=False)
    passenger_id = Column(String(64), nullable=False)
    seats_booked = Column(Integer, nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_name = Column(String(255), nullable=True)
    pickup_address = Column(String(512), nullable=True)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_name = Column(String(255), nullable=True)
    dropoff_address = Column(String(512), nullable=True)

    total_price = Column(Float, nullable=False, default=0.0)
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    idempotency_key = Column(String(128), unique=True, nullable=True)

    # One-time codes
    pickup_otp = Column(String(12), nullable=True)
    pickup_issued_at = Column(DateTime(timezone=True), nullable=True)
    pickup_verified_at = Column(DateTime(timezone=True), nullable=True)
    pickup_failed_attempts = Column(Integer, default=0, nullable=False)
    dropoff_otp = Column(String(12), nullable=True)
    dropoff_issued_at = Column(DateTime(timezone=True), nullable=True)
    dropoff_verified_at = Column(DateTime(timezone=True), nullable=True)
    dropoff_failed_attempts = Column(Integer, default=0, nullable=False)

    # Reassignment
    is_reassignment = Column(Boolean, default=False, nullable=False)
    original_booking_id = Column(String(64), nullable=True)
    original_ride_id = Column(String(64), nullable=True)
    reassigned_booking_id = Column(String(64), nullable=True)
    resolution = Column(Enum(Resolution), nullable=True)
    reassignment_attempts = Column(Integer, default=0, nullable=False)
    refund_amount = Column(Float, nullable=True)

    cancelled_by = Column(Enum(CancelledBy), nullable=True)
    cancellation_reason = Column(String(512), nullable=True)
    rejection_reason = Column(String(512), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("seats_booked >= 1", name="ck_bookings_seats_positive"),
        Index("idx_bookings_ride_status", "ride_id", "status"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_resolution", "resolution"),
    )
