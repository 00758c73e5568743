"""
Boundary adapters from legacy document shapes to canonical entities.

Older clients and the previous document store produced rides in two
shapes:

* nested -- ``route.start`` / ``route.destination`` / ``route.intermediateStops``,
  ``schedule.departureDateTime``, ``pricing.pricePerSeat``,
  ``preferences.autoAcceptBookings``, ``rider``
* flat   -- ``source`` / ``destination``, ``pricePerSeat``, ``totalSeats``,
  ``availableSeats``, ``driver``, ``date`` + ``time``

Points are GeoJSON-style ``coordinates: [lng, lat]`` or explicit
``lat``/``lng`` (``latitude``/``longitude``) keys.  Nothing past this module
should ever look at a raw document.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .entities import Booking, Location, Ride, Route
from .enums import BookingStatus, PaymentStatus, RideStatus


class AdapterError(ValueError):
    """Document cannot be mapped onto a canonical entity."""


def _first(doc: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if doc.get(key) is not None:
            return doc[key]
    return None


def _ref(value: Any) -> Optional[str]:
    """Populated sub-document or bare id -> id string."""
    if isinstance(value, Mapping):
        value = _first(value, "_id", "id")
    return str(value) if value is not None else None


def location_from_document(doc: Any) -> Location:
    if isinstance(doc, Location):
        return doc
    if not isinstance(doc, Mapping):
        raise AdapterError(f"Unsupported location shape: {doc!r}")

    coords = doc.get("coordinates")
    if isinstance(coords, Mapping):
        coords = coords.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        lng, lat = coords[0], coords[1]
    else:
        lat = _first(doc, "lat", "latitude")
        lng = _first(doc, "lng", "lon", "longitude")
    if lat is None or lng is None:
        raise AdapterError(f"Location has no coordinates: {doc!r}")

    return Location(
        latitude=float(lat),
        longitude=float(lng),
        name=doc.get("name"),
        address=doc.get("address"),
    )


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise AdapterError(f"Unsupported timestamp: {value!r}")
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _departure(doc: Mapping[str, Any]) -> datetime:
    schedule = doc.get("schedule") or {}
    value = _first(schedule, "departureDateTime") or _first(
        doc, "departureAt", "departure_at", "departureDateTime"
    )
    if value is not None:
        return parse_timestamp(value)
    date, time = _first(schedule, "date") or doc.get("date"), (
        _first(schedule, "time") or doc.get("time")
    )
    if date is None:
        raise AdapterError("Ride document has no departure time")
    if time and isinstance(date, str) and "T" not in date:
        return parse_timestamp(f"{date}T{time}")
    return parse_timestamp(date)


def ride_from_document(doc: Mapping[str, Any]) -> Ride:
    route_doc = doc.get("route") or {}
    start = _first(route_doc, "start", "startLocation") or _first(
        doc, "source", "origin", "start"
    )
    dest = _first(route_doc, "destination", "endLocation") or _first(
        doc, "destination"
    )
    if start is None or dest is None:
        raise AdapterError("Ride document has no start/destination")
    stops = _first(route_doc, "intermediateStops", "stops") or doc.get("stops") or []

    pricing = doc.get("pricing") or {}
    price = _first(pricing, "pricePerSeat") or _first(doc, "pricePerSeat", "price")
    total = _first(pricing, "totalSeats") or _first(doc, "totalSeats")
    available = _first(pricing, "availableSeats")
    if available is None:
        available = doc.get("availableSeats")
    if total is None:
        total = available
    if price is None or total is None:
        raise AdapterError("Ride document has no pricing/seat inventory")

    preferences = doc.get("preferences") or {}
    ride = Ride(
        driver_id=_ref(_first(doc, "rider", "driver", "driverId")) or "",
        route=Route(
            start=location_from_document(start),
            destination=location_from_document(dest),
            stops=[location_from_document(s) for s in stops],
            distance_km=_first(route_doc, "distance") or doc.get("distance"),
            duration_minutes=_first(route_doc, "duration") or doc.get("duration"),
        ),
        departure_at=_departure(doc),
        price_per_seat=float(price),
        total_seats=int(total),
        available_seats=int(available) if available is not None else None,
        instant_booking=bool(
            _first(preferences, "autoAcceptBookings") or doc.get("instantBooking")
        ),
        status=RideStatus(doc.get("status", RideStatus.ACTIVE.value)),
    )
    legacy_id = _ref(_first(doc, "_id", "id"))
    if legacy_id:
        ride.id = legacy_id
    ride.booking_ids = [_ref(b) for b in doc.get("bookings") or []]
    return ride


def booking_from_document(doc: Mapping[str, Any]) -> Booking:
    payment = doc.get("payment") or {}
    reassignment = doc.get("reassignment") or {}
    seats = _first(doc, "seatsBooked", "seats")
    if seats is None:
        raise AdapterError("Booking document has no seat count")

    booking = Booking(
        ride_id=_ref(doc.get("ride")) or "",
        passenger_id=_ref(doc.get("passenger")) or "",
        seats_booked=int(seats),
        pickup_point=location_from_document(doc["pickupPoint"]),
        dropoff_point=location_from_document(doc["dropoffPoint"]),
        total_price=float(_first(doc, "totalPrice") or payment.get("totalAmount") or 0),
        status=BookingStatus(doc.get("status", BookingStatus.PENDING.value)),
        payment_status=PaymentStatus(payment.get("status", PaymentStatus.PENDING.value)),
        idempotency_key=_first(doc, "idempotencyKey", "idempotency_key"),
        is_reassignment=bool(
            _first(doc, "isReassignment") or reassignment.get("isReassigned")
        ),
        original_booking_id=_ref(
            _first(doc, "originalBookingId") or reassignment.get("originalBooking")
        ),
        original_ride_id=_ref(reassignment.get("originalRide")),
        refund_amount=payment.get("refundAmount"),
    )
    legacy_id = _ref(_first(doc, "_id", "id"))
    if legacy_id:
        booking.id = legacy_id
    return booking
