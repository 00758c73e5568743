"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.ACTIVE: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_RIDE_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PICKUP_PENDING = "PICKUP_PENDING"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DROPOFF_PENDING = "DROPOFF_PENDING"
    DROPPED_OFF = "DROPPED_OFF"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


# In-progress bookings may only reach CANCELLED through a ride cancellation.
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {BookingStatus.PICKUP_PENDING, BookingStatus.CANCELLED},
    BookingStatus.PICKUP_PENDING: {BookingStatus.PICKED_UP, BookingStatus.CANCELLED},
    BookingStatus.PICKED_UP: {
        BookingStatus.IN_TRANSIT,
        BookingStatus.DROPOFF_PENDING,
        BookingStatus.CANCELLED,
    },
    BookingStatus.IN_TRANSIT: {BookingStatus.DROPOFF_PENDING, BookingStatus.CANCELLED},
    BookingStatus.DROPOFF_PENDING: {BookingStatus.DROPPED_OFF, BookingStatus.CANCELLED},
    BookingStatus.DROPPED_OFF: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

SEAT_HOLDING_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.PICKUP_PENDING,
        BookingStatus.PICKED_UP,
        BookingStatus.IN_TRANSIT,
        BookingStatus.DROPOFF_PENDING,
    }
)

USER_CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


PAID_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PAYMENT_CONFIRMED})


class CancelledBy(str, enum.Enum):
    PASSENGER = "PASSENGER"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"


class Resolution(str, enum.Enum):
    """Outcome of a booking displaced by a ride cancellation."""

    AWAITING_REASSIGNMENT = "AWAITING_REASSIGNMENT"
    REASSIGNED = "REASSIGNED"
    REFUNDED = "REFUNDED"


class OTPPhase(str, enum.Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"
