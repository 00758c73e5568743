"""Initial schema: rides and bookings.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUS = ("ACTIVE", "IN_PROGRESS", "COMPLETED", "CANCELLED")
BOOKING_STATUS = (
    "PENDING",
    "CONFIRMED",
    "PICKUP_PENDING",
    "PICKED_UP",
    "IN_TRANSIT",
    "DROPOFF_PENDING",
    "DROPPED_OFF",
    "COMPLETED",
    "CANCELLED",
    "REJECTED",
)
PAYMENT_STATUS = ("PENDING", "PAID", "PAYMENT_CONFIRMED", "REFUNDED", "FAILED")
RESOLUTION = ("AWAITING_REASSIGNMENT", "REASSIGNED", "REFUNDED")
CANCELLED_BY = ("PASSENGER", "DRIVER", "SYSTEM")


def _location(prefix: str) -> list[sa.Column]:
    return [
        sa.Column(f"{prefix}_lat", sa.Float, nullable=False),
        sa.Column(f"{prefix}_lng", sa.Float, nullable=False),
        sa.Column(f"{prefix}_name", sa.String(255), nullable=True),
        sa.Column(f"{prefix}_address", sa.String(512), nullable=True),
    ]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("driver_id", sa.String(64), nullable=False),
        *_location("start"),
        *_location("dest"),
        sa.Column("stops", sa.JSON, nullable=False),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("origin_cell", sa.String(20), nullable=True),
        sa.Column("destination_cell", sa.String(20), nullable=True),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price_per_seat", sa.Float, nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("instant_booking", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUS, name="ridestatus"),
            nullable=False,
            server_default="ACTIVE",
        ),
        sa.Column("cancellation_reason", sa.String(512), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_seat_bounds",
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_departure", "rides", ["departure_at"])
    op.create_index("idx_rides_origin_cell", "rides", ["origin_cell"])
    op.create_index("idx_rides_destination_cell", "rides", ["destination_cell"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("ride_id", sa.String(64), sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("passenger_id", sa.String(64), nullable=False),
        sa.Column("seats_booked", sa.Integer, nullable=False),
        *_location("pickup"),
        *_location("dropoff"),
        sa.Column("total_price", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(*BOOKING_STATUS, name="bookingstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column(
            "payment_status",
            sa.Enum(*PAYMENT_STATUS, name="paymentstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("idempotency_key", sa.String(128), unique=True, nullable=True),
        sa.Column("pickup_otp", sa.String(12), nullable=True),
        sa.Column("pickup_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pickup_failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("dropoff_otp", sa.String(12), nullable=True),
        sa.Column("dropoff_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dropoff_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dropoff_failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_reassignment", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("original_booking_id", sa.String(64), nullable=True),
        sa.Column("original_ride_id", sa.String(64), nullable=True),
        sa.Column("reassigned_booking_id", sa.String(64), nullable=True),
        sa.Column("resolution", sa.Enum(*RESOLUTION, name="resolution"), nullable=True),
        sa.Column("reassignment_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("refund_amount", sa.Float, nullable=True),
        sa.Column("cancelled_by", sa.Enum(*CANCELLED_BY, name="cancelledby"), nullable=True),
        sa.Column("cancellation_reason", sa.String(512), nullable=True),
        sa.Column("rejection_reason", sa.String(512), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("seats_booked >= 1", name="ck_bookings_seats_positive"),
    )
    op.create_index("idx_bookings_ride_status", "bookings", ["ride_id", "status"])
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index("idx_bookings_resolution", "bookings", ["resolution"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("rides")
    for name in ("cancelledby", "resolution", "paymentstatus", "bookingstatus", "ridestatus"):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
