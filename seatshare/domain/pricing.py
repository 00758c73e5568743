"""
Booking totals and refund policies  (Strategy Pattern)
======================================================

Fare calculation itself belongs to an external service; the ride arrives
with a fixed ``price_per_seat``.  This module only derives what the
lifecycle needs to record on a booking.

Formula
-------
Total  = Price_Per_Seat x Seats + Platform_Commission

Refund (passenger cancels a paid booking), by hours until departure:

* > 24 h  -> 100 %
* > 12 h  ->  75 %
* >  6 h  ->  50 %
* >  2 h  ->  25 %
* else    ->   0 %

A driver-side cancellation refunds a paid booking in full.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime


def booking_total(price_per_seat: float, seats: int, commission: float = 0.0) -> float:
    return round(price_per_seat * seats + commission, 2)


# ── Strategy hierarchy ────────────────────────────────────────────────


class RefundPolicy(ABC):
    @abstractmethod
    def refund(self, total_price: float, departure_at: datetime, now: datetime) -> float: ...


class FullRefund(RefundPolicy):
    def refund(self, total_price: float, departure_at: datetime, now: datetime) -> float:
        return round(total_price, 2)


class TieredRefund(RefundPolicy):
    """Share of the price returned shrinks as departure approaches."""

    # (minimum hours before departure, share refunded), checked in order
    TIERS = ((24, 1.0), (12, 0.75), (6, 0.50), (2, 0.25))

    def refund(self, total_price: float, departure_at: datetime, now: datetime) -> float:
        hours_left = (departure_at - now).total_seconds() / 3600
        for min_hours, share in self.TIERS:
            if hours_left > min_hours:
                return round(total_price * share, 2)
        return 0.0
