"""
Lifecycle events emitted by the engine.

Each state transition produces one typed event.  Delivery is
fire-and-forget and at-least-once, so every event carries a unique
``event_id`` that consumers use to drop duplicates.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventKind(str, enum.Enum):
    NEW_BOOKING_REQUEST = "new-booking-request"
    BOOKING_CONFIRMED = "booking-confirmed"
    BOOKING_REJECTED = "booking-rejected"
    BOOKING_CANCELLED = "booking-cancelled"
    OTP_ISSUED = "otp-issued"
    PICKUP_CONFIRMED = "pickup-confirmed"
    DROPOFF_CONFIRMED = "dropoff-confirmed"
    RIDE_STATUS_UPDATED = "ride-status-updated"
    BOOKING_REASSIGNED = "booking-reassigned"
    RIDE_CANCELLED = "ride-cancelled"
    NEW_BOOKING = "new-booking"


class RideCancelledSubtype(str, enum.Enum):
    ALTERNATIVE_FOUND = "alternative-found"
    NO_ALTERNATIVE = "no-alternative"


class LifecycleEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: EventKind
    ride_id: Optional[str] = None
    booking_id: Optional[str] = None
    recipient_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: dict[str, Any] = Field(default_factory=dict)
